"""
Plaid API Endpoints

Linking, unlinking and syncing Plaid items, plus the Plaid webhook receiver.
"""
from fastapi import APIRouter, Depends, HTTPException, Request, status
from typing import List
import json
import logging

from budgee.api.deps import get_current_user, get_gateway
from budgee.database.gateway import StorageGateway
from budgee.database.models import User
from budgee.models.schemas import (
    ExchangeTokenRequest,
    LinkedItemResponse,
    LinkTokenResponse,
    PlaidAccountResponse,
    PlaidItemResponse,
    SyncResponse,
    WebhookResponse,
)
from budgee.services.job_queue import enqueue_plaid_sync_job, get_job_info
from budgee.services.plaid_client import plaid_client
from budgee.services.webhook_verifier import WebhookVerificationError, webhook_verifier
from budgee.tasks.plaid_sync import webhook_requires_sync
from budgee.config import settings

router = APIRouter(prefix="/plaid", tags=["plaid"])
logger = logging.getLogger(__name__)


def _require_plaid():
    if not plaid_client._is_enabled():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Plaid is not configured. Please set PLAID_CLIENT_ID and PLAID_SECRET."
        )


@router.post("/link-token", response_model=LinkTokenResponse)
async def create_link_token(current_user: User = Depends(get_current_user)):
    """
    Create a Plaid Link token for initializing Plaid Link in the frontend
    """
    _require_plaid()
    result = plaid_client.create_link_token(user_id=current_user.id)
    if not result:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to create link token"
        )
    return LinkTokenResponse(**result)


@router.post("/exchange-token", response_model=LinkedItemResponse, status_code=status.HTTP_201_CREATED)
async def exchange_public_token(
    request: ExchangeTokenRequest,
    current_user: User = Depends(get_current_user),
    gateway: StorageGateway = Depends(get_gateway),
):
    """
    Exchange a public token from Plaid Link, store the item and its accounts,
    and queue the initial full-history sync
    """
    _require_plaid()
    logger.info(f"Starting Plaid token exchange for user {current_user.id}")

    exchange_result = plaid_client.exchange_public_token(request.public_token)
    if not exchange_result:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to exchange public token"
        )
    access_token = exchange_result["access_token"]

    metadata = plaid_client.get_item_metadata(access_token) or {}
    accounts_result = plaid_client.get_accounts(access_token)
    if not accounts_result:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to retrieve accounts from Plaid"
        )

    item = gateway.save_item(
        user_id=current_user.id,
        access_token=access_token,
        plaid_item_id=exchange_result["item_id"],
        institution_id=metadata.get("institution_id"),
        institution_name=metadata.get("institution_name"),
    )
    if item.user_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Plaid item is linked to another user"
        )
    accounts_saved = gateway.save_accounts(item, accounts_result["accounts"])
    gateway.commit()

    job = enqueue_plaid_sync_job(item.id, trigger="link", user_id=current_user.id)
    logger.info(f"Linked Plaid item {item.id} ({item.institution_name}) with {accounts_saved} new accounts")

    return LinkedItemResponse(
        **gateway.item_to_dict(item),
        accounts_saved=accounts_saved,
        job_id=job.id,
    )


@router.get("/items", response_model=List[PlaidItemResponse])
async def list_items(
    current_user: User = Depends(get_current_user),
    gateway: StorageGateway = Depends(get_gateway),
):
    return gateway.get_user_items(current_user.id)


@router.get("/items/{item_id}/accounts", response_model=List[PlaidAccountResponse])
async def list_item_accounts(
    item_id: str,
    current_user: User = Depends(get_current_user),
    gateway: StorageGateway = Depends(get_gateway),
):
    if gateway.get_item(current_user.id, item_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Plaid item not found"
        )
    return gateway.get_item_accounts(current_user.id, item_id)


@router.delete("/items/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unlink_item(
    item_id: str,
    current_user: User = Depends(get_current_user),
    gateway: StorageGateway = Depends(get_gateway),
):
    """
    Disconnect an item at Plaid and delete it with its accounts and transactions
    """
    item = gateway.get_item(current_user.id, item_id)
    if item is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Plaid item not found"
        )

    if not plaid_client.remove_item(gateway.get_access_token(item)):
        logger.warning(f"Failed to remove item {item_id} at Plaid, continuing with local deletion")

    gateway.delete_item(current_user.id, item_id)
    gateway.commit()


@router.post("/sync/{item_id}", response_model=SyncResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_sync(
    item_id: str,
    current_user: User = Depends(get_current_user),
    gateway: StorageGateway = Depends(get_gateway),
):
    """
    Queue a transaction sync for a Plaid item
    """
    if gateway.get_item(current_user.id, item_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Plaid item not found"
        )

    job = enqueue_plaid_sync_job(item_id, trigger="manual", user_id=current_user.id)
    return SyncResponse(job_id=job.id, status="queued")


@router.get("/sync-status/{job_id}")
async def get_sync_status(
    job_id: str,
    current_user: User = Depends(get_current_user),
):
    """
    Get the status of a Plaid sync job
    """
    try:
        job_info = get_job_info(job_id)
    except Exception as e:
        logger.error(f"Error fetching job info: {e}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found"
        )

    if job_info.get("meta", {}).get("user_id") != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied"
        )
    return job_info


@router.post("/webhook", response_model=WebhookResponse)
async def receive_webhook(
    request: Request,
    gateway: StorageGateway = Depends(get_gateway),
):
    """
    Plaid webhook receiver.

    The sync runs on the worker; this endpoint only verifies the webhook and
    queues the job.
    """
    body = await request.body()
    if settings.PLAID_WEBHOOK_VERIFY:
        try:
            webhook_verifier.verify(body, request.headers.get("Plaid-Verification"))
        except WebhookVerificationError as e:
            logger.warning(f"Rejected Plaid webhook: {e}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid webhook signature"
            )

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook body must be JSON"
        )

    webhook_type = payload.get("webhook_type")
    webhook_code = payload.get("webhook_code")
    logger.info(f"Received Plaid webhook {webhook_type}/{webhook_code} for item {payload.get('item_id')}")

    if not webhook_requires_sync(webhook_type, webhook_code):
        return WebhookResponse(received=True)

    item = gateway.get_item_by_plaid_id(payload.get("item_id") or "")
    if item is None:
        logger.warning(f"Webhook for unknown Plaid item {payload.get('item_id')}")
        return WebhookResponse(received=True)

    job = enqueue_plaid_sync_job(item.id, trigger="webhook", user_id=item.user_id)
    return WebhookResponse(received=True, job_id=job.id)
