from fastapi import APIRouter, Depends, HTTPException, status
from typing import List
import logging

from budgee.api.deps import get_current_user, get_gateway
from budgee.database.gateway import StorageGateway
from budgee.database.models import User
from budgee.models.schemas import (
    RuleApplicationResponse,
    TransactionRule,
    TransactionRuleCreate,
    TransactionRuleUpdate,
)
from budgee.services.conditions import InvalidConditionError
from budgee.services.rule_engine import apply_rules

router = APIRouter(prefix="/rules", tags=["rules"])
logger = logging.getLogger(__name__)


def _invalid_conditions(error: InvalidConditionError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=f"Invalid rule conditions: {error}"
    )


def _rule_not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail="Rule not found"
    )


@router.get("", response_model=List[TransactionRule])
async def list_rules(
    current_user: User = Depends(get_current_user),
    gateway: StorageGateway = Depends(get_gateway),
):
    return gateway.list_rules(current_user.id)


@router.post("", response_model=TransactionRule, status_code=status.HTTP_201_CREATED)
async def create_rule(
    rule: TransactionRuleCreate,
    current_user: User = Depends(get_current_user),
    gateway: StorageGateway = Depends(get_gateway),
):
    try:
        created = gateway.create_rule(
            current_user.id, rule.name, rule.conditions, rule.personal_finance_category
        )
    except InvalidConditionError as e:
        raise _invalid_conditions(e)
    gateway.commit()
    return created


@router.get("/{rule_id}", response_model=TransactionRule)
async def get_rule(
    rule_id: int,
    current_user: User = Depends(get_current_user),
    gateway: StorageGateway = Depends(get_gateway),
):
    rule = gateway.get_rule(current_user.id, rule_id)
    if rule is None:
        raise _rule_not_found()
    return rule


@router.put("/{rule_id}", response_model=TransactionRule)
async def update_rule(
    rule_id: int,
    rule_update: TransactionRuleUpdate,
    current_user: User = Depends(get_current_user),
    gateway: StorageGateway = Depends(get_gateway),
):
    try:
        rule = gateway.update_rule(
            current_user.id,
            rule_id,
            name=rule_update.name,
            conditions=rule_update.conditions,
            category=rule_update.personal_finance_category,
        )
    except InvalidConditionError as e:
        raise _invalid_conditions(e)
    if rule is None:
        raise _rule_not_found()
    gateway.commit()
    return rule


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(
    rule_id: int,
    current_user: User = Depends(get_current_user),
    gateway: StorageGateway = Depends(get_gateway),
):
    if not gateway.delete_rule(current_user.id, rule_id):
        raise _rule_not_found()
    gateway.commit()


@router.post("/apply", response_model=RuleApplicationResponse)
async def apply_user_rules(
    current_user: User = Depends(get_current_user),
    gateway: StorageGateway = Depends(get_gateway),
):
    """
    Re-run the user's rules over all of their transactions
    """
    try:
        result = apply_rules(gateway, current_user.id)
        gateway.commit()
    except Exception as e:
        gateway.session.rollback()
        logger.error(f"Applying rules for user {current_user.id} failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to apply transaction rules"
        )
    return result.to_dict()
