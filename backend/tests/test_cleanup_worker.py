from __future__ import annotations

from datetime import timedelta

from apscheduler.schedulers.background import BackgroundScheduler

from app.core.clock import local_now
from app.core.config import settings
from app.core.errors import TaskStoreError
from app.services.task_drafts import TaskDraft
from app.services.task_store import TaskStore
from app.worker import scheduler_main
from app.worker.scheduler_main import CLEANUP_JOB_ID, register_jobs, run_cleanup_job


def test_register_jobs_adds_interval_cleanup() -> None:
    scheduler = BackgroundScheduler(timezone=settings.scheduler_timezone)

    register_jobs(scheduler)

    job = scheduler.get_job(CLEANUP_JOB_ID)
    assert job is not None
    assert job.trigger.interval == timedelta(minutes=settings.cleanup_interval_minutes)


def test_run_cleanup_job_uses_fresh_session(session_factory) -> None:
    seed = session_factory()
    store = TaskStore(seed)
    store.create(TaskDraft(title="Expired errand", deadline=local_now() - timedelta(days=1)))
    store.create(TaskDraft(title="Upcoming exam", deadline=local_now() + timedelta(days=3)))
    seed.close()

    result = run_cleanup_job(session_factory)

    assert result is not None
    assert result.expired_deleted == 1
    check = session_factory()
    try:
        assert [task.title for task in TaskStore(check).list_all()] == ["Upcoming exam"]
    finally:
        check.close()


def test_run_cleanup_job_swallows_store_errors(session_factory, monkeypatch) -> None:
    def broken(store, now):
        raise TaskStoreError("database unavailable")

    monkeypatch.setattr(scheduler_main, "clean_stale_tasks", broken)

    assert run_cleanup_job(session_factory) is None
