from datetime import timedelta
from types import SimpleNamespace

from budgee.services import job_queue


class FakeQueue:
    def __init__(self):
        self.enqueued = []
        self.scheduled = []

    def _job(self, meta=None):
        job = SimpleNamespace(id=f"job-{len(self.enqueued) + len(self.scheduled) + 1}", meta=meta or {})
        job.save_meta = lambda: None
        return job

    def enqueue(self, func, *args, **kwargs):
        job = self._job(kwargs.get("meta"))
        self.enqueued.append((func.__name__, args, job))
        return job

    def enqueue_in(self, delay, func, *args, **kwargs):
        job = self._job(kwargs.get("meta"))
        self.scheduled.append((delay, func.__name__, args, job))
        return job


def test_item_sync_job_carries_owner_meta(monkeypatch):
    queue = FakeQueue()
    monkeypatch.setattr(job_queue, "get_plaid_queue", lambda: queue)

    job = job_queue.enqueue_plaid_sync_job("item-1", trigger="webhook", user_id="user-1")

    name, args, _ = queue.enqueued[0]
    assert name == "run_plaid_sync_job"
    assert args == ("item-1", "webhook")
    assert job.meta == {"user_id": "user-1", "item_id": "item-1", "trigger": "webhook"}


def test_daily_sync_immediate_or_delayed(monkeypatch):
    queue = FakeQueue()
    monkeypatch.setattr(job_queue, "get_plaid_queue", lambda: queue)

    now_job = job_queue.enqueue_daily_sync_job()
    later_job = job_queue.enqueue_daily_sync_job(delay=timedelta(hours=24))
    one_off = job_queue.enqueue_daily_sync_job(reschedule=False)

    assert now_job.meta["job_type"] == job_queue.DAILY_SYNC_JOB_TYPE
    assert queue.scheduled[0][0] == timedelta(hours=24)
    assert later_job.meta["job_type"] == job_queue.DAILY_SYNC_JOB_TYPE
    assert one_off.meta["job_type"] != job_queue.DAILY_SYNC_JOB_TYPE
    assert queue.enqueued[1][1] == (False,)


def test_ensure_daily_sync_scheduled_only_once(monkeypatch):
    queue = FakeQueue()
    monkeypatch.setattr(job_queue, "get_plaid_queue", lambda: queue)

    existing = SimpleNamespace(id="pending")
    monkeypatch.setattr(job_queue, "find_pending_daily_sync", lambda: existing)
    assert job_queue.ensure_daily_sync_scheduled() is existing
    assert queue.enqueued == []

    monkeypatch.setattr(job_queue, "find_pending_daily_sync", lambda: None)
    job_queue.ensure_daily_sync_scheduled()
    assert [entry[0] for entry in queue.enqueued] == ["run_daily_sync_job"]
