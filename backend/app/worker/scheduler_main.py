"""Dedicated APScheduler worker that prunes stale tasks."""
from __future__ import annotations

import logging
import signal
import threading

from apscheduler.schedulers.background import BackgroundScheduler

from app.core.clock import local_now
from app.core.config import settings
from app.core.errors import TaskStoreError
from app.core.logging import configure_logging
from app.db.session import SessionLocal, init_db
from app.services.task_cleanup import CleanupResult, clean_stale_tasks
from app.services.task_store import TaskStore

logger = logging.getLogger(__name__)

CLEANUP_JOB_ID = "stale_task_cleanup"


def main() -> None:
    configure_logging(log_level=settings.log_level)
    logger.info("Cleanup worker starting (enabled=%s)", settings.cleanup_job_enabled)
    init_db()

    scheduler = BackgroundScheduler(timezone=settings.scheduler_timezone)

    if settings.cleanup_job_enabled:
        register_jobs(scheduler)
        scheduler.start()
        if settings.jobs_run_on_startup:
            logger.info("Running cleanup once on startup")
            run_cleanup_job()
    else:
        logger.warning("Cleanup job disabled via config; worker will idle")

    stop_event = threading.Event()

    def shutdown(signum, frame):  # pragma: no cover - signal handler
        logger.info("Cleanup worker shutting down (signal=%s)", signum)
        if scheduler.running:
            scheduler.shutdown(wait=False)
        stop_event.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        stop_event.wait()
    except KeyboardInterrupt:  # pragma: no cover - manual stop
        shutdown(signal.SIGINT, None)


def register_jobs(scheduler: BackgroundScheduler) -> None:
    scheduler.add_job(
        run_cleanup_job,
        trigger="interval",
        minutes=settings.cleanup_interval_minutes,
        id=CLEANUP_JOB_ID,
        replace_existing=True,
    )
    logger.info(
        "Registered cleanup job (every %s min, %s)",
        settings.cleanup_interval_minutes,
        settings.scheduler_timezone,
    )


def run_cleanup_job(session_factory=SessionLocal) -> CleanupResult | None:
    session = session_factory()
    try:
        result = clean_stale_tasks(TaskStore(session), local_now())
        logger.info(
            "Cleanup job complete: completed=%s, expired=%s",
            result.completed_deleted,
            result.expired_deleted,
        )
        return result
    except TaskStoreError:
        logger.exception("Cleanup job failed")
        return None
    finally:
        session.close()


if __name__ == "__main__":  # pragma: no cover - manual launch
    main()
