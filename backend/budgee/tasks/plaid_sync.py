"""
Plaid Transaction Sync Background Task

Reconciles the local mirror of an item with Plaid's /transactions/sync feed.

A run pages through the feed from the item's stored cursor and buffers every
page. Nothing is written until the last page has arrived; then the added,
modified and removed records and the new cursor are committed in a single
database transaction. A failed page therefore leaves the stored cursor where
it was, and the next run (daily schedule, webhook or manual trigger) simply
starts over from it.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from rq import get_current_job

from budgee.config import settings
from budgee.database.gateway import StorageGateway
from budgee.database.postgres_db import get_db_context
from budgee.services.rule_engine import apply_rules

logger = logging.getLogger(__name__)

# Restarts allowed when Plaid reports the feed changed while paging
MAX_PAGINATION_RESTARTS = 1

SYNC_WEBHOOK_CODES = {
    "SYNC_UPDATES_AVAILABLE",
    "DEFAULT_UPDATE",
    "INITIAL_UPDATE",
    "HISTORICAL_UPDATE",
}


class SyncError(Exception):
    """A reconciliation run could not complete; the stored cursor is unchanged."""


class LoginRequiredError(SyncError):
    """Plaid needs the user to re-authenticate the item."""


class CursorConflictError(SyncError):
    """Another run advanced the item's cursor while this run was paging."""


@dataclass
class SyncDelta:
    added: List[Dict[str, Any]] = field(default_factory=list)
    modified: List[Dict[str, Any]] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    next_cursor: str = ""
    pages: int = 0


@dataclass
class SyncResult:
    added: int = 0
    modified: int = 0
    removed: int = 0
    cursor: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"added": self.added, "modified": self.modified, "removed": self.removed}


def _default_aggregator():
    from budgee.services.plaid_client import plaid_client
    return plaid_client


def webhook_requires_sync(webhook_type: Optional[str], webhook_code: Optional[str]) -> bool:
    return (webhook_type or "").upper() == "TRANSACTIONS" and (webhook_code or "").upper() in SYNC_WEBHOOK_CODES


def _page_through(aggregator, access_token: str, cursor: str, page_size: int) -> Optional[SyncDelta]:
    """Collect every page from ``cursor``; None when Plaid asks for a restart."""
    delta = SyncDelta(next_cursor=cursor)
    while True:
        page = aggregator.sync_transactions(access_token, delta.next_cursor or None, page_size)
        if page is None:
            raise SyncError(f"transactions sync failed on page {delta.pages + 1}")
        if page.get("login_required"):
            raise LoginRequiredError(page.get("error_code") or "ITEM_LOGIN_REQUIRED")
        if page.get("cursor_reset_required"):
            return None

        delta.pages += 1
        delta.added.extend(page.get("added") or [])
        delta.modified.extend(page.get("modified") or [])
        delta.removed.extend(page.get("removed") or [])
        delta.next_cursor = page.get("next_cursor") or delta.next_cursor

        if not page.get("has_more"):
            return delta


def fetch_delta(aggregator, access_token: str, cursor: str, page_size: Optional[int] = None) -> SyncDelta:
    """
    Page through /transactions/sync starting at ``cursor``.

    Raises:
        SyncError: when a page fails or the feed keeps changing under us
    """
    page_size = page_size or settings.PLAID_SYNC_PAGE_SIZE
    for attempt in range(MAX_PAGINATION_RESTARTS + 1):
        delta = _page_through(aggregator, access_token, cursor, page_size)
        if delta is not None:
            return delta
        logger.warning(f"Transactions changed during pagination, restarting from stored cursor (attempt {attempt + 1})")
    raise SyncError("transactions kept changing during pagination")


def _link_new_accounts(item_id: str, access_token: str, delta: SyncDelta, aggregator, cache) -> None:
    """Store accounts that appear in the delta but are not linked locally yet."""
    referenced = {txn.get("account_id") for txn in delta.added + delta.modified}
    with get_db_context() as db:
        gateway = StorageGateway(db, cache)
        item = gateway.get_item_by_id(item_id)
        if item is None or not gateway.unknown_account_ids(item, referenced):
            return

    accounts = aggregator.get_accounts(access_token)
    if accounts is None:
        raise SyncError("failed to fetch accounts for new account ids")

    with get_db_context() as db:
        gateway = StorageGateway(db, cache)
        item = gateway.get_item_by_id(item_id)
        gateway.save_accounts(item, accounts["accounts"])
        gateway.commit()


def _mark_login_required(item_id: str, message: str, cache) -> None:
    with get_db_context() as db:
        gateway = StorageGateway(db, cache)
        item = gateway.get_item_by_id(item_id)
        if item is not None:
            gateway.set_item_status(item, "login_required", message)
            gateway.commit()


def refresh_balances(item_id: str, access_token: str, aggregator=None, cache=None) -> int:
    """Pull current balances for an item's accounts; returns how many changed."""
    aggregator = aggregator or _default_aggregator()
    accounts = aggregator.get_accounts(access_token)
    if accounts is None:
        raise SyncError(f"failed to fetch balances for item {item_id}")

    changed = 0
    with get_db_context() as db:
        gateway = StorageGateway(db, cache)
        item = gateway.get_item_by_id(item_id)
        if item is None:
            return 0
        gateway.save_accounts(item, accounts["accounts"])
        for account in accounts["accounts"]:
            balances = account.get("balances") or {}
            if gateway.update_account_balance(item, account["account_id"], balances.get("current"), balances.get("available")):
                changed += 1
        gateway.commit()

    logger.info(f"Refreshed balances for item {item_id}: {changed} accounts changed")
    return changed


def _run_post_sync_steps(item_id: str, user_id: str, access_token: str, aggregator, cache) -> None:
    # The sync is already committed; these only log on failure
    try:
        with get_db_context() as db:
            gateway = StorageGateway(db, cache)
            apply_rules(gateway, user_id)
            gateway.commit()
    except Exception:
        logger.exception(f"Applying transaction rules after sync of item {item_id} failed")

    try:
        refresh_balances(item_id, access_token, aggregator, cache)
    except Exception:
        logger.exception(f"Balance refresh after sync of item {item_id} failed")


def sync_item(item_id: str, aggregator=None, cache=None) -> SyncResult:
    """
    Reconcile one item with Plaid.

    Returns:
        SyncResult with the number of rows inserted, updated and deleted

    Raises:
        SyncError: upstream failure, login required or a concurrent run won
        SQLAlchemyError: storage failure; the whole delta is rolled back
    """
    aggregator = aggregator or _default_aggregator()

    with get_db_context() as db:
        gateway = StorageGateway(db, cache)
        item = gateway.get_item_by_id(item_id)
        if item is None:
            raise SyncError(f"Plaid item {item_id} not found")
        user_id = item.user_id
        start_cursor = gateway.get_cursor(item.id)
        access_token = gateway.get_access_token(item)

    logger.info(
        f"Starting sync for item {item_id} "
        f"({'incremental' if start_cursor else 'full history'})"
    )

    try:
        delta = fetch_delta(aggregator, access_token, start_cursor)
    except LoginRequiredError as e:
        _mark_login_required(item_id, f"Plaid login required: {e}", cache)
        raise

    if delta.added or delta.modified:
        _link_new_accounts(item_id, access_token, delta, aggregator, cache)

    result = SyncResult(cursor=delta.next_cursor)
    with get_db_context() as db:
        gateway = StorageGateway(db, cache)
        item = gateway.lock_item(item_id)
        if item is None:
            raise SyncError(f"Plaid item {item_id} was removed during sync")
        if (item.sync_cursor or "") != start_cursor:
            raise CursorConflictError(f"cursor for item {item_id} advanced by a concurrent sync")

        result.added = gateway.save_transactions(item, delta.added)
        result.modified = gateway.update_transactions(item, delta.modified)
        result.removed = gateway.remove_transactions(item, delta.removed)
        gateway.update_cursor(item, delta.next_cursor)
        gateway.commit()

    logger.info(
        f"Synced item {item_id} over {delta.pages} pages: "
        f"{result.added} added, {result.modified} modified, {result.removed} removed"
    )

    _run_post_sync_steps(item_id, user_id, access_token, aggregator, cache)
    return result


def sync_all_items(aggregator=None, cache=None) -> Dict[str, Dict[str, Any]]:
    """Sync every linked item; one item failing does not stop the others."""
    with get_db_context() as db:
        item_ids = StorageGateway(db, cache).list_item_ids()

    results: Dict[str, Dict[str, Any]] = {}
    for item_id in item_ids:
        try:
            result = sync_item(item_id, aggregator, cache)
            results[item_id] = {"status": "synced", **result.to_dict()}
        except Exception as e:
            logger.exception(f"Daily sync of item {item_id} failed")
            results[item_id] = {"status": "failed", "error": str(e)}

    failed = sum(1 for outcome in results.values() if outcome["status"] == "failed")
    logger.info(f"Daily sync finished: {len(results) - failed} synced, {failed} failed")
    return results


def run_plaid_sync_job(item_id: str, trigger: str = "manual"):
    """
    Background job to sync one item from Plaid

    Args:
        item_id: Internal Plaid item ID
        trigger: What started the run (manual, webhook, link)

    Returns:
        Dictionary with sync counts
    """
    job = get_current_job()

    def update_stage(stage: str, progress: dict = None):
        if job:
            job.meta["stage"] = stage
            if progress:
                job.meta["progress"] = progress
            job.save_meta()
            logger.info(f"Plaid sync job {job.id} stage: {stage} progress: {progress}")

    update_stage("syncing", {"message": f"Syncing item {item_id} ({trigger})"})
    try:
        result = sync_item(item_id)
    except Exception as e:
        update_stage("failed", {"message": str(e)})
        logger.error(f"Plaid sync job for item {item_id} failed: {e}")
        raise

    update_stage("completed", result.to_dict())
    return result.to_dict()


def run_daily_sync_job(reschedule: bool = True):
    """Sync all items; a recurring run schedules the next one even if this one fails."""
    from budgee.services.job_queue import enqueue_daily_sync_job

    job = get_current_job()
    try:
        results = sync_all_items()
        if job:
            job.meta["stage"] = "completed"
            job.meta["progress"] = {
                "items": len(results),
                "failed": sum(1 for outcome in results.values() if outcome["status"] == "failed"),
            }
            job.save_meta()
        return results
    finally:
        if reschedule:
            enqueue_daily_sync_job(delay=timedelta(hours=settings.DAILY_SYNC_INTERVAL_HOURS))
