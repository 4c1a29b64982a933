"""
Storage Gateway - Plaid mirror persistence

All reads and writes of items, accounts, transactions and rules go through
StorageGateway. Reads that back API responses are served through the query
cache; every mutating call invalidates the cache keys or domains it affects
before returning, and again after ``commit()`` so that a reader racing the
open transaction cannot leave a pre-commit result cached.
"""
from typing import List, Optional, Dict, Any, Iterable, Tuple
from datetime import datetime, date
import uuid
import logging

from sqlalchemy import select, delete
from sqlalchemy.orm import Session
from sqlalchemy.dialects import postgresql, sqlite

from budgee.database.models import (
    PlaidItem as PlaidItemModel,
    Account as AccountModel,
    Transaction as TransactionModel,
    TransactionRule as TransactionRuleModel,
)
from budgee.services.cache import (
    CacheDomain,
    CacheRegistry,
    get_cache_registry,
    items_user_key,
    accounts_item_user_key,
    transactions_account_user_key,
)
from budgee.services.conditions import parse_condition
from budgee.services.encryption import encryption_service
from budgee.services.transaction_classifier import transaction_classifier

logger = logging.getLogger(__name__)

BATCH_SIZE = 100

EDITABLE_TRANSACTION_FIELDS = (
    "amount",
    "primary_category",
    "detailed_category",
    "merchant_name",
    "date",
    "payment_channel",
    "personal_finance_category_icon_url",
)

# Fields a modified-delta from Plaid may change on an existing row
SYNCED_TRANSACTION_FIELDS = (
    "amount",
    "date",
    "name",
    "merchant_name",
    "primary_category",
    "detailed_category",
    "payment_channel",
    "type",
    "currency",
    "pending",
    "account_owner",
    "personal_finance_category_icon_url",
)


def _chunks(values: List[Any], size: int = BATCH_SIZE) -> Iterable[List[Any]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


def _normalize_date(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.strftime("%Y-%m-%d")
    return str(value)


class StorageGateway:
    """Relational store access for the Plaid mirror."""

    def __init__(self, session: Session, cache: Optional[CacheRegistry] = None):
        if session is None:
            raise ValueError("Session is required")
        self.session = session
        self.cache = cache if cache is not None else get_cache_registry()
        self._pending_keys: set = set()
        self._pending_domains: set = set()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _model_to_dict(self, model_instance, exclude: Tuple[str, ...] = ()) -> Optional[Dict[str, Any]]:
        """Convert SQLAlchemy model instance to a JSON-friendly dictionary."""
        if model_instance is None:
            return None

        result = {}
        for column in model_instance.__table__.columns:
            if column.name in exclude:
                continue
            value = getattr(model_instance, column.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            result[column.name] = value
        return result

    def _insert(self, model_class):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(model_class)
        if dialect == "sqlite":
            return sqlite.insert(model_class)
        raise RuntimeError(f"Unsupported database dialect for upserts: {dialect}")

    def _invalidate(self, domain: CacheDomain, key: str) -> None:
        self.cache.invalidate(domain, key)
        self._pending_keys.add((domain, key))

    def _invalidate_all(self, domain: CacheDomain) -> None:
        self.cache.invalidate_all(domain)
        self._pending_domains.add(domain)

    def commit(self) -> None:
        """Commit the session, then repeat every invalidation made since the last commit."""
        self.session.commit()
        keys, domains = self._pending_keys, self._pending_domains
        self._pending_keys, self._pending_domains = set(), set()
        for domain in domains:
            self.cache.invalidate_all(domain)
        for domain, key in keys:
            if domain not in domains:
                self.cache.invalidate(domain, key)

    def _user_account_scope(self, user_id: str):
        """Subquery of account primary keys owned by the user."""
        return (
            select(AccountModel.id)
            .join(PlaidItemModel, AccountModel.item_id == PlaidItemModel.id)
            .where(PlaidItemModel.user_id == user_id)
        )

    def _accounts_by_plaid_id(self, item: PlaidItemModel) -> Dict[str, AccountModel]:
        """Map Plaid account ids to the user's accounts, preferring the item's own."""
        rows = (
            self.session.query(AccountModel)
            .join(PlaidItemModel, AccountModel.item_id == PlaidItemModel.id)
            .filter(PlaidItemModel.user_id == item.user_id)
            .all()
        )
        mapping = {}
        for account in sorted(rows, key=lambda acc: acc.item_id == item.id):
            mapping[account.account_id] = account
        return mapping

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def get_item(self, user_id: str, item_id: str) -> Optional[PlaidItemModel]:
        return (
            self.session.query(PlaidItemModel)
            .filter(PlaidItemModel.id == item_id, PlaidItemModel.user_id == user_id)
            .first()
        )

    def get_item_by_id(self, item_id: str) -> Optional[PlaidItemModel]:
        return self.session.get(PlaidItemModel, item_id)

    def get_item_by_plaid_id(self, plaid_item_id: str) -> Optional[PlaidItemModel]:
        return (
            self.session.query(PlaidItemModel)
            .filter(PlaidItemModel.item_id == plaid_item_id)
            .first()
        )

    def lock_item(self, item_id: str) -> Optional[PlaidItemModel]:
        """Load an item with a row lock held until the transaction ends."""
        return (
            self.session.query(PlaidItemModel)
            .filter(PlaidItemModel.id == item_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def list_item_ids(self) -> List[str]:
        rows = self.session.query(PlaidItemModel.id).order_by(PlaidItemModel.created_at).all()
        return [row[0] for row in rows]

    def get_user_items(self, user_id: str) -> List[Dict[str, Any]]:
        key = items_user_key(user_id)
        cached = self.cache.get(CacheDomain.ITEMS, key)
        if cached is not None:
            return cached

        items = (
            self.session.query(PlaidItemModel)
            .filter(PlaidItemModel.user_id == user_id)
            .order_by(PlaidItemModel.created_at)
            .all()
        )
        result = [self.item_to_dict(item) for item in items]
        self.cache.set(CacheDomain.ITEMS, key, result)
        return result

    def item_to_dict(self, item: PlaidItemModel) -> Dict[str, Any]:
        return self._model_to_dict(item, exclude=("access_token",))

    def get_access_token(self, item: PlaidItemModel) -> str:
        return encryption_service.decrypt(item.access_token)

    def save_item(
        self,
        user_id: str,
        access_token: str,
        plaid_item_id: str,
        institution_id: Optional[str],
        institution_name: Optional[str],
    ) -> PlaidItemModel:
        """Store a newly linked item; an item id that already exists is left as is."""
        now = datetime.utcnow()
        stmt = self._insert(PlaidItemModel).values(
            id=str(uuid.uuid4()),
            user_id=user_id,
            access_token=encryption_service.encrypt(access_token),
            item_id=plaid_item_id,
            institution_id=institution_id,
            institution_name=institution_name,
            status="active",
            created_at=now,
            updated_at=now,
        ).on_conflict_do_nothing(index_elements=["item_id"])
        result = self.session.execute(stmt)
        if result.rowcount == 0:
            logger.info(f"Plaid item {plaid_item_id} already linked, keeping existing row")

        self._invalidate(CacheDomain.ITEMS, items_user_key(user_id))
        return self.get_item_by_plaid_id(plaid_item_id)

    def set_item_status(self, item: PlaidItemModel, status: str, error_message: Optional[str] = None) -> None:
        item.status = status
        item.error_message = error_message
        self.session.flush()
        self._invalidate(CacheDomain.ITEMS, items_user_key(item.user_id))

    def delete_item(self, user_id: str, item_id: str) -> bool:
        """Delete an item with its accounts and transactions."""
        item = self.get_item(user_id, item_id)
        if item is None:
            return False

        self.session.delete(item)
        self.session.flush()

        self._invalidate(CacheDomain.ITEMS, items_user_key(user_id))
        self._invalidate_all(CacheDomain.ACCOUNTS)
        self._invalidate_all(CacheDomain.TRANSACTIONS)
        logger.info(f"Deleted Plaid item {item_id} for user {user_id}")
        return True

    # ------------------------------------------------------------------
    # Sync cursor
    # ------------------------------------------------------------------

    def get_cursor(self, item_id: str) -> str:
        row = self.session.query(PlaidItemModel.sync_cursor).filter(PlaidItemModel.id == item_id).first()
        if row is None:
            raise LookupError(f"Plaid item {item_id} not found")
        return row[0] or ""

    def update_cursor(self, item: PlaidItemModel, cursor: str) -> None:
        """Persist the cursor of a completed sync and mark the item healthy."""
        item.sync_cursor = cursor
        item.last_synced = datetime.utcnow()
        item.status = "active"
        item.error_message = None
        self.session.flush()
        self._invalidate(CacheDomain.ITEMS, items_user_key(item.user_id))

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def unknown_account_ids(self, item: PlaidItemModel, plaid_account_ids: Iterable[str]) -> set:
        """Plaid account ids that have no stored account for the item's user."""
        known = self._accounts_by_plaid_id(item)
        return {account_id for account_id in plaid_account_ids if account_id and account_id not in known}

    def get_item_accounts(self, user_id: str, item_id: str) -> List[Dict[str, Any]]:
        key = accounts_item_user_key(user_id, item_id)
        cached = self.cache.get(CacheDomain.ACCOUNTS, key)
        if cached is not None:
            return cached

        accounts = (
            self.session.query(AccountModel)
            .join(PlaidItemModel, AccountModel.item_id == PlaidItemModel.id)
            .filter(AccountModel.item_id == item_id, PlaidItemModel.user_id == user_id)
            .order_by(AccountModel.name)
            .all()
        )
        result = [self._model_to_dict(account) for account in accounts]
        self.cache.set(CacheDomain.ACCOUNTS, key, result)
        return result

    def save_accounts(self, item: PlaidItemModel, accounts: List[Dict[str, Any]]) -> int:
        """Insert accounts that are not stored yet; existing (item, account) pairs are untouched."""
        if not accounts:
            return 0

        now = datetime.utcnow()
        rows = []
        for account in accounts:
            balances = account.get("balances") or {}
            rows.append({
                "id": str(uuid.uuid4()),
                "item_id": item.id,
                "account_id": account["account_id"],
                "name": account.get("name") or account.get("official_name") or "Account",
                "official_name": account.get("official_name"),
                "mask": account.get("mask"),
                "type": account.get("type") or "other",
                "subtype": account.get("subtype"),
                "current_balance": balances.get("current"),
                "available_balance": balances.get("available"),
                "created_at": now,
                "updated_at": now,
            })

        stmt = self._insert(AccountModel).values(rows).on_conflict_do_nothing(
            index_elements=["item_id", "account_id"]
        )
        inserted = self.session.execute(stmt).rowcount or 0

        self._invalidate(CacheDomain.ACCOUNTS, accounts_item_user_key(item.user_id, item.id))
        logger.info(f"Saved {inserted} new accounts for item {item.id} ({len(rows) - inserted} already present)")
        return inserted

    def update_account_balance(
        self,
        item: PlaidItemModel,
        plaid_account_id: str,
        current_balance: Optional[float],
        available_balance: Optional[float],
    ) -> bool:
        """Write balances only when they differ from the stored snapshot."""
        account = (
            self.session.query(AccountModel)
            .filter(AccountModel.item_id == item.id, AccountModel.account_id == plaid_account_id)
            .first()
        )
        if account is None:
            return False
        if account.current_balance == current_balance and account.available_balance == available_balance:
            return False

        account.current_balance = current_balance
        account.available_balance = available_balance
        account.updated_at = datetime.utcnow()
        self.session.flush()

        self._invalidate(CacheDomain.ACCOUNTS, accounts_item_user_key(item.user_id, item.id))
        return True

    # ------------------------------------------------------------------
    # Transactions - sync deltas
    # ------------------------------------------------------------------

    def _transaction_row(self, transaction: Dict[str, Any], account: AccountModel, now: datetime) -> Dict[str, Any]:
        is_expense, is_income = transaction_classifier.classify(
            account.type, transaction.get("amount"), transaction.get("primary_category")
        )
        return {
            "id": str(uuid.uuid4()),
            "account_id": account.id,
            "transaction_id": transaction["transaction_id"],
            "amount": transaction.get("amount") or 0.0,
            "date": _normalize_date(transaction.get("date")),
            "name": transaction.get("name"),
            "merchant_name": transaction.get("merchant_name"),
            "primary_category": transaction.get("primary_category"),
            "detailed_category": transaction.get("detailed_category"),
            "payment_channel": transaction.get("payment_channel"),
            "type": transaction.get("type"),
            "currency": transaction.get("currency"),
            "pending": bool(transaction.get("pending", False)),
            "account_owner": transaction.get("account_owner"),
            "personal_finance_category_icon_url": transaction.get("personal_finance_category_icon_url"),
            "expense": is_expense,
            "income": is_income,
            "created_at": now,
            "updated_at": now,
        }

    def save_transactions(self, item: PlaidItemModel, transactions: List[Dict[str, Any]]) -> int:
        """
        Insert added transactions for accounts owned by the item's user.

        A transaction id that already exists is a no-op, so replaying the same
        delta is harmless. Returns the number of rows actually inserted.
        """
        if not transactions:
            return 0

        accounts = self._accounts_by_plaid_id(item)
        now = datetime.utcnow()
        rows = []
        seen = set()
        for transaction in transactions:
            transaction_id = transaction.get("transaction_id")
            if not transaction_id or transaction_id in seen:
                continue
            seen.add(transaction_id)

            account = accounts.get(transaction.get("account_id"))
            if account is None:
                logger.warning(
                    f"Skipping transaction {transaction_id}: account {transaction.get('account_id')} "
                    f"not linked for user {item.user_id}"
                )
                continue
            rows.append(self._transaction_row(transaction, account, now))

        inserted = 0
        for chunk in _chunks(rows):
            stmt = self._insert(TransactionModel).values(chunk).on_conflict_do_nothing(
                index_elements=["transaction_id"]
            )
            inserted += self.session.execute(stmt).rowcount or 0

        self._invalidate_all(CacheDomain.TRANSACTIONS)
        logger.info(f"Inserted {inserted} of {len(rows)} added transactions for item {item.id}")
        return inserted

    def update_transactions(self, item: PlaidItemModel, transactions: List[Dict[str, Any]]) -> int:
        """Apply modified transactions by Plaid id, scoped to the item user's accounts."""
        if not transactions:
            return 0

        latest: Dict[str, Dict[str, Any]] = {}
        for transaction in transactions:
            if transaction.get("transaction_id"):
                latest[transaction["transaction_id"]] = transaction

        scope = self._user_account_scope(item.user_id)
        now = datetime.utcnow()
        updated = 0
        for chunk in _chunks(list(latest)):
            rows = (
                self.session.query(TransactionModel, AccountModel.type)
                .join(AccountModel, TransactionModel.account_id == AccountModel.id)
                .filter(
                    TransactionModel.transaction_id.in_(chunk),
                    TransactionModel.account_id.in_(scope),
                )
                .all()
            )
            for row, account_type in rows:
                transaction = latest[row.transaction_id]
                for field in SYNCED_TRANSACTION_FIELDS:
                    if field not in transaction:
                        continue
                    value = transaction[field]
                    if field == "date":
                        value = _normalize_date(value)
                    elif field == "pending":
                        value = bool(value)
                    setattr(row, field, value)
                row.expense, row.income = transaction_classifier.classify(
                    account_type, row.amount, row.primary_category
                )
                row.updated_at = now
                updated += 1

        self.session.flush()
        missing = len(latest) - updated
        if missing:
            logger.warning(f"{missing} modified transactions for item {item.id} were not found locally")

        self._invalidate_all(CacheDomain.TRANSACTIONS)
        return updated

    def remove_transactions(self, item: PlaidItemModel, transaction_ids: List[str]) -> int:
        """Delete removed transactions by Plaid id, scoped to the item user's accounts."""
        ids = [transaction_id for transaction_id in dict.fromkeys(transaction_ids) if transaction_id]
        if not ids:
            return 0

        scope = self._user_account_scope(item.user_id)
        removed = 0
        for chunk in _chunks(ids):
            stmt = (
                delete(TransactionModel)
                .where(
                    TransactionModel.transaction_id.in_(chunk),
                    TransactionModel.account_id.in_(scope),
                )
                .execution_options(synchronize_session=False)
            )
            removed += self.session.execute(stmt).rowcount or 0

        self._invalidate_all(CacheDomain.TRANSACTIONS)
        return removed

    # ------------------------------------------------------------------
    # Transactions - reads and point edits
    # ------------------------------------------------------------------

    def _get_owned_transaction(self, user_id: str, transaction_id: str) -> Optional[Tuple[TransactionModel, str]]:
        return (
            self.session.query(TransactionModel, AccountModel.type)
            .join(AccountModel, TransactionModel.account_id == AccountModel.id)
            .join(PlaidItemModel, AccountModel.item_id == PlaidItemModel.id)
            .filter(TransactionModel.id == transaction_id, PlaidItemModel.user_id == user_id)
            .first()
        )

    def owns_account(self, user_id: str, account_id: str) -> bool:
        return (
            self.session.query(AccountModel.id)
            .join(PlaidItemModel, AccountModel.item_id == PlaidItemModel.id)
            .filter(AccountModel.id == account_id, PlaidItemModel.user_id == user_id)
            .first()
        ) is not None

    def get_account_transactions(self, user_id: str, account_id: str) -> List[Dict[str, Any]]:
        key = transactions_account_user_key(user_id, account_id)
        cached = self.cache.get(CacheDomain.TRANSACTIONS, key)
        if cached is not None:
            return cached

        transactions = (
            self.session.query(TransactionModel)
            .filter(
                TransactionModel.account_id == account_id,
                TransactionModel.account_id.in_(self._user_account_scope(user_id)),
            )
            .order_by(TransactionModel.date.desc(), TransactionModel.created_at.desc())
            .all()
        )
        result = [self._model_to_dict(transaction) for transaction in transactions]
        self.cache.set(CacheDomain.TRANSACTIONS, key, result)
        return result

    def get_transaction(self, user_id: str, transaction_id: str) -> Optional[Dict[str, Any]]:
        owned = self._get_owned_transaction(user_id, transaction_id)
        return self._model_to_dict(owned[0]) if owned else None

    def update_transaction(self, user_id: str, transaction_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Edit a user's transaction; returns None when the user does not own it."""
        owned = self._get_owned_transaction(user_id, transaction_id)
        if owned is None:
            return None
        transaction, account_type = owned

        for field in EDITABLE_TRANSACTION_FIELDS:
            if field in changes:
                value = changes[field]
                setattr(transaction, field, _normalize_date(value) if field == "date" else value)
        transaction.expense, transaction.income = transaction_classifier.classify(
            account_type, transaction.amount, transaction.primary_category
        )
        transaction.updated_at = datetime.utcnow()
        self.session.flush()

        self._invalidate(
            CacheDomain.TRANSACTIONS, transactions_account_user_key(user_id, transaction.account_id)
        )
        return self._model_to_dict(transaction)

    def delete_transaction(self, user_id: str, transaction_id: str) -> bool:
        owned = self._get_owned_transaction(user_id, transaction_id)
        if owned is None:
            return False
        transaction = owned[0]
        account_id = transaction.account_id

        self.session.delete(transaction)
        self.session.flush()

        self._invalidate(CacheDomain.TRANSACTIONS, transactions_account_user_key(user_id, account_id))
        return True

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def recategorize_transactions(self) -> int:
        """Re-derive expense/income for every stored transaction; returns rows changed."""
        rows = (
            self.session.query(TransactionModel, AccountModel.type)
            .join(AccountModel, TransactionModel.account_id == AccountModel.id)
            .all()
        )
        changed = 0
        now = datetime.utcnow()
        for transaction, account_type in rows:
            flags = transaction_classifier.classify(account_type, transaction.amount, transaction.primary_category)
            if flags != (transaction.expense, transaction.income):
                transaction.expense, transaction.income = flags
                transaction.updated_at = now
                changed += 1

        self.session.flush()
        self._invalidate_all(CacheDomain.TRANSACTIONS)
        logger.info(f"Recategorized {changed} transactions")
        return changed

    def recategorize_transaction(self, user_id: str, transaction_id: str) -> Optional[bool]:
        """Re-derive flags for one transaction; None when not owned, else whether it changed."""
        owned = self._get_owned_transaction(user_id, transaction_id)
        if owned is None:
            return None
        transaction, account_type = owned

        flags = transaction_classifier.classify(account_type, transaction.amount, transaction.primary_category)
        if flags == (transaction.expense, transaction.income):
            return False

        transaction.expense, transaction.income = flags
        transaction.updated_at = datetime.utcnow()
        self.session.flush()
        self._invalidate(
            CacheDomain.TRANSACTIONS, transactions_account_user_key(user_id, transaction.account_id)
        )
        return True

    # ------------------------------------------------------------------
    # Rule application support
    # ------------------------------------------------------------------

    def get_rule_candidates(self, user_id: str) -> List[Dict[str, Any]]:
        """Every transaction of the user with the fields rule conditions can reference."""
        rows = (
            self.session.query(
                TransactionModel.id,
                TransactionModel.name,
                TransactionModel.merchant_name,
                TransactionModel.amount,
                AccountModel.name,
                TransactionModel.primary_category,
            )
            .join(AccountModel, TransactionModel.account_id == AccountModel.id)
            .join(PlaidItemModel, AccountModel.item_id == PlaidItemModel.id)
            .filter(PlaidItemModel.user_id == user_id)
            .order_by(TransactionModel.date, TransactionModel.id)
            .all()
        )
        return [
            {
                "id": row[0],
                "name": row[1],
                "merchant_name": row[2],
                "amount": row[3],
                "account": row[4],
                "primary_category": row[5],
            }
            for row in rows
        ]

    def apply_category_changes(self, changes: Dict[str, str]) -> int:
        """
        Write new primary categories keyed by transaction primary key.

        The transactions domain is invalidated once for the whole batch.
        """
        if not changes:
            return 0

        now = datetime.utcnow()
        written = 0
        for chunk in _chunks(list(changes)):
            for transaction in self.session.query(TransactionModel).filter(TransactionModel.id.in_(chunk)):
                transaction.primary_category = changes[transaction.id]
                transaction.updated_at = now
                written += 1

        self.session.flush()
        self._invalidate_all(CacheDomain.TRANSACTIONS)
        return written

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def list_rules(self, user_id: str) -> List[TransactionRuleModel]:
        return (
            self.session.query(TransactionRuleModel)
            .filter(TransactionRuleModel.user_id == user_id)
            .order_by(TransactionRuleModel.id)
            .all()
        )

    def get_rule(self, user_id: str, rule_id: int) -> Optional[TransactionRuleModel]:
        return (
            self.session.query(TransactionRuleModel)
            .filter(TransactionRuleModel.id == rule_id, TransactionRuleModel.user_id == user_id)
            .first()
        )

    def create_rule(self, user_id: str, name: str, conditions: Dict[str, Any], category: str) -> TransactionRuleModel:
        """
        Raises:
            InvalidConditionError: if ``conditions`` is not a valid condition tree
        """
        parse_condition(conditions)
        now = datetime.utcnow()
        rule = TransactionRuleModel(
            user_id=user_id,
            name=name,
            conditions=conditions,
            personal_finance_category=category,
            created_at=now,
            updated_at=now,
        )
        self.session.add(rule)
        self.session.flush()
        logger.info(f"Created transaction rule {rule.id} for user {user_id}")
        return rule

    def update_rule(
        self,
        user_id: str,
        rule_id: int,
        name: Optional[str] = None,
        conditions: Optional[Dict[str, Any]] = None,
        category: Optional[str] = None,
    ) -> Optional[TransactionRuleModel]:
        rule = self.get_rule(user_id, rule_id)
        if rule is None:
            return None

        if conditions is not None:
            parse_condition(conditions)
            rule.conditions = conditions
        if name is not None:
            rule.name = name
        if category is not None:
            rule.personal_finance_category = category
        rule.updated_at = datetime.utcnow()
        self.session.flush()
        return rule

    def delete_rule(self, user_id: str, rule_id: int) -> bool:
        rule = self.get_rule(user_id, rule_id)
        if rule is None:
            return False
        self.session.delete(rule)
        self.session.flush()
        return True

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def clear_cache(self, name: str) -> CacheDomain:
        """Raises ValueError for a name other than items, accounts or transactions."""
        return self.cache.clear(name)
