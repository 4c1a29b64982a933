import logging
from datetime import timedelta
from typing import Optional, Dict, Any

from redis import Redis
from rq import Queue
from rq.job import Job

from budgee.config import settings

logger = logging.getLogger(__name__)

_redis_connection: Optional[Redis] = None
_plaid_queue: Optional[Queue] = None

DAILY_SYNC_JOB_TYPE = "plaid_daily_sync"


def get_redis_connection() -> Redis:
    global _redis_connection
    if _redis_connection is None:
        _redis_connection = Redis.from_url(settings.REDIS_URL)
    return _redis_connection


def get_plaid_queue() -> Queue:
    global _plaid_queue
    if _plaid_queue is None:
        _plaid_queue = Queue(
            settings.PLAID_QUEUE_NAME,
            connection=get_redis_connection(),
            default_timeout=settings.PLAID_JOB_TIMEOUT,
        )
    return _plaid_queue


def enqueue_plaid_sync_job(item_id: str, trigger: str = "manual", user_id: Optional[str] = None) -> Job:
    """Queue a reconciliation run for one item (trigger: manual, webhook, link)."""
    from budgee.tasks.plaid_sync import run_plaid_sync_job

    queue = get_plaid_queue()
    job = queue.enqueue(
        run_plaid_sync_job,
        item_id,
        trigger,
        job_timeout=settings.PLAID_JOB_TIMEOUT,
    )
    job.meta = job.meta or {}
    job.meta.update(
        {
            "user_id": user_id,
            "item_id": item_id,
            "trigger": trigger,
        }
    )
    job.save_meta()
    logger.info("Enqueued Plaid sync job %s for item %s (trigger=%s)", job.id, item_id, trigger)
    return job


def enqueue_daily_sync_job(delay: Optional[timedelta] = None, reschedule: bool = True) -> Job:
    """
    Queue the all-items sync, immediately or after ``delay``.

    Jobs with ``reschedule`` set form the recurring daily cycle: each run
    queues the next one. One-off runs leave the cycle alone.
    """
    from budgee.tasks.plaid_sync import run_daily_sync_job

    queue = get_plaid_queue()
    meta = {"job_type": DAILY_SYNC_JOB_TYPE if reschedule else "plaid_sync_all"}
    if delay is None:
        job = queue.enqueue(
            run_daily_sync_job,
            reschedule,
            job_timeout=settings.PLAID_JOB_TIMEOUT,
            meta=meta,
        )
    else:
        job = queue.enqueue_in(
            delay,
            run_daily_sync_job,
            reschedule,
            job_timeout=settings.PLAID_JOB_TIMEOUT,
            meta=meta,
        )
    logger.info("Enqueued daily Plaid sync job %s (delay=%s, reschedule=%s)", job.id, delay, reschedule)
    return job


def find_pending_daily_sync() -> Optional[Job]:
    """Return a queued or scheduled daily sync job, if there is one."""
    queue = get_plaid_queue()
    job_ids = list(queue.scheduled_job_registry.get_job_ids()) + list(queue.get_job_ids())
    for job in Job.fetch_many(job_ids, connection=get_redis_connection()):
        if job is not None and (job.meta or {}).get("job_type") == DAILY_SYNC_JOB_TYPE:
            return job
    return None


def ensure_daily_sync_scheduled() -> Job:
    """Start the daily sync cycle unless a run is already waiting."""
    existing = find_pending_daily_sync()
    if existing is not None:
        logger.info("Daily Plaid sync already pending as job %s", existing.id)
        return existing
    return enqueue_daily_sync_job()


def get_job_info(job_id: str) -> Dict[str, Any]:
    job = Job.fetch(job_id, connection=get_redis_connection())
    info = {
        "job_id": job.id,
        "status": job.get_status(),
        "enqueued_at": job.enqueued_at.isoformat() if job.enqueued_at else None,
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "ended_at": job.ended_at.isoformat() if job.ended_at else None,
        "meta": job.meta or {},
    }

    if job.is_finished:
        info["result"] = job.result
    elif job.is_failed:
        info["error"] = job.exc_info

    return info
