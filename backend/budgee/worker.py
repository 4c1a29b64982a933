import logging
import os
import signal
import sys

from rq import Worker, Queue

from budgee.config import settings
from budgee.services.job_queue import ensure_daily_sync_scheduled, get_redis_connection

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully"""
    logger.info(f"Received signal {signum}, shutting down worker gracefully...")
    sys.exit(0)


def main():
    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    redis_conn = get_redis_connection()
    queue_list = os.getenv("QUEUE_LIST")
    if queue_list:
        listen = [q.strip() for q in queue_list.split(",") if q.strip()]
    else:
        listen = [settings.PLAID_QUEUE_NAME]

    # Deduplicate while preserving order
    seen = set()
    listen = [q for q in listen if not (q in seen or seen.add(q))]

    if settings.PLAID_QUEUE_NAME in listen:
        ensure_daily_sync_scheduled()

    logger.info(f"Worker starting, listening to queues: {', '.join(listen)}")

    worker = Worker(
        [Queue(name, connection=redis_conn) for name in listen],
        connection=redis_conn,
        log_job_description=True,
        job_monitoring_interval=5,
    )

    logger.info("Worker started and ready to process jobs")

    # The scheduler moves the delayed daily sync onto the queue when due
    worker.work(
        logging_level=logging.INFO,
        with_scheduler=True,
    )


if __name__ == "__main__":
    main()
