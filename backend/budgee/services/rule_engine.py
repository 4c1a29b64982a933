"""
Transaction Rule Engine

Re-categorizes a user's transactions from their rules. Rules run in creation
order and the first matching rule decides a transaction's category. Every run
rescans all of the user's transactions, so re-running is always safe.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from budgee.database.gateway import StorageGateway
from budgee.services.conditions import (
    Condition,
    InvalidConditionError,
    TransactionSnapshot,
    evaluate,
    parse_condition,
)

logger = logging.getLogger(__name__)


@dataclass
class CategoryChange:
    transaction_id: str
    rule_id: int
    old_category: Optional[str]
    new_category: str


@dataclass
class RuleApplicationResult:
    rules_loaded: int = 0
    rules_skipped: int = 0
    transactions_scanned: int = 0
    changes: List[CategoryChange] = field(default_factory=list)

    @property
    def changed(self) -> int:
        return len(self.changes)

    def to_dict(self) -> dict:
        return {
            "rules_loaded": self.rules_loaded,
            "rules_skipped": self.rules_skipped,
            "transactions_scanned": self.transactions_scanned,
            "changed": self.changed,
        }


def load_rules(gateway: StorageGateway, user_id: str) -> Tuple[List[Tuple[int, Condition, str]], int]:
    """Parse the user's rules in creation order; malformed ones are skipped."""
    compiled = []
    skipped = 0
    for rule in gateway.list_rules(user_id):
        try:
            compiled.append((rule.id, parse_condition(rule.conditions), rule.personal_finance_category))
        except InvalidConditionError as e:
            skipped += 1
            logger.warning(f"Skipping rule {rule.id} ({rule.name}) for user {user_id}: {e}")
    return compiled, skipped


def match_category(rules: List[Tuple[int, Condition, str]], snapshot: TransactionSnapshot) -> Optional[Tuple[int, str]]:
    for rule_id, condition, category in rules:
        if evaluate(condition, snapshot):
            return rule_id, category
    return None


def apply_rules(gateway: StorageGateway, user_id: str) -> RuleApplicationResult:
    """
    Apply a user's rules to all of their transactions.

    Only transactions whose category actually changes are written, and the
    transactions cache is invalidated once for the whole pass.
    """
    rules, skipped = load_rules(gateway, user_id)
    result = RuleApplicationResult(rules_loaded=len(rules), rules_skipped=skipped)
    if not rules:
        logger.info(f"No applicable transaction rules for user {user_id}")
        return result

    pending: Dict[str, str] = {}
    for candidate in gateway.get_rule_candidates(user_id):
        result.transactions_scanned += 1
        snapshot = TransactionSnapshot(
            name=candidate["name"],
            merchant_name=candidate["merchant_name"],
            amount=candidate["amount"],
            account=candidate["account"],
        )
        matched = match_category(rules, snapshot)
        if matched is None:
            continue

        rule_id, category = matched
        if candidate["primary_category"] == category:
            continue

        pending[candidate["id"]] = category
        result.changes.append(CategoryChange(
            transaction_id=candidate["id"],
            rule_id=rule_id,
            old_category=candidate["primary_category"],
            new_category=category,
        ))

    if pending:
        gateway.apply_category_changes(pending)
        for change in result.changes:
            logger.info(
                f"Rule {change.rule_id} moved transaction {change.transaction_id} "
                f"from {change.old_category} to {change.new_category}"
            )

    logger.info(
        f"Applied {len(rules)} rules for user {user_id}: "
        f"{result.changed} of {result.transactions_scanned} transactions changed"
    )
    return result
