from fastapi import APIRouter, Depends, HTTPException, status
from typing import List

from budgee.api.deps import get_current_user, get_gateway
from budgee.database.gateway import StorageGateway
from budgee.database.models import User
from budgee.models.schemas import TransactionResponse, TransactionUpdate

router = APIRouter(prefix="/transactions", tags=["transactions"])


def _transaction_not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail="Transaction not found"
    )


@router.get("/account/{account_id}", response_model=List[TransactionResponse])
async def list_account_transactions(
    account_id: str,
    current_user: User = Depends(get_current_user),
    gateway: StorageGateway = Depends(get_gateway),
):
    if not gateway.owns_account(current_user.id, account_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Account not found"
        )
    return gateway.get_account_transactions(current_user.id, account_id)


@router.get("/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(
    transaction_id: str,
    current_user: User = Depends(get_current_user),
    gateway: StorageGateway = Depends(get_gateway),
):
    transaction = gateway.get_transaction(current_user.id, transaction_id)
    if transaction is None:
        raise _transaction_not_found()
    return transaction


@router.put("/{transaction_id}", response_model=TransactionResponse)
async def update_transaction(
    transaction_id: str,
    update: TransactionUpdate,
    current_user: User = Depends(get_current_user),
    gateway: StorageGateway = Depends(get_gateway),
):
    """
    Edit a transaction; expense/income flags are re-derived from the new values
    """
    transaction = gateway.update_transaction(
        current_user.id, transaction_id, update.model_dump(exclude_unset=True)
    )
    if transaction is None:
        raise _transaction_not_found()
    gateway.commit()
    return transaction


@router.post("/{transaction_id}/recategorize", response_model=TransactionResponse)
async def recategorize_transaction(
    transaction_id: str,
    current_user: User = Depends(get_current_user),
    gateway: StorageGateway = Depends(get_gateway),
):
    if gateway.recategorize_transaction(current_user.id, transaction_id) is None:
        raise _transaction_not_found()
    gateway.commit()
    return gateway.get_transaction(current_user.id, transaction_id)


@router.delete("/{transaction_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_transaction(
    transaction_id: str,
    current_user: User = Depends(get_current_user),
    gateway: StorageGateway = Depends(get_gateway),
):
    if not gateway.delete_transaction(current_user.id, transaction_id):
        raise _transaction_not_found()
    gateway.commit()
