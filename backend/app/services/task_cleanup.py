"""Removal of completed and expired tasks."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from app.observability.metrics import log_metric
from app.services.task_store import TaskStore

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    completed_deleted: int = 0
    expired_deleted: int = 0

    @property
    def total(self) -> int:
        return self.completed_deleted + self.expired_deleted


def clean_stale_tasks(store: TaskStore, now: datetime) -> CleanupResult:
    """Delete completed tasks and incomplete tasks whose deadline has passed.

    Store errors propagate; callers decide whether a failed cleanup blocks them.
    """
    result = CleanupResult(
        completed_deleted=store.delete_completed(),
        expired_deleted=store.delete_expired(now),
    )
    if result.total:
        logger.info(
            "Cleanup removed %s completed and %s expired task(s)",
            result.completed_deleted,
            result.expired_deleted,
        )
    log_metric("cleanup.deleted", result.total, {"completed": result.completed_deleted, "expired": result.expired_deleted})
    return result
