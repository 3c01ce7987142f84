"""SQLAlchemy-backed task store used by the scheduling services."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple
from uuid import UUID

from sqlalchemy import asc, desc, nulls_last
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import TaskStoreError
from app.db.models.task import Task, TaskType, _utcnow
from app.services.task_drafts import TaskDraft

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "type",
        "is_completed",
        "scheduled_time",
        "is_fixed_time",
        "deadline",
        "estimated_duration",
        "is_required",
    }
)


def as_task_id(value: Any) -> Optional[UUID]:
    """Coerce a task identifier; malformed ids resolve to None."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


def task_interval(task: Task) -> Optional[Tuple[datetime, datetime]]:
    if task.scheduled_time is None or not task.estimated_duration:
        return None
    return task.scheduled_time, task.scheduled_time + timedelta(minutes=task.estimated_duration)


class TaskStore:
    """Task persistence over one SQLAlchemy session. Every write commits or rolls back."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def list_all(self) -> List[Task]:
        try:
            return self.db.query(Task).order_by(desc(Task.created_at)).all()
        except SQLAlchemyError as exc:
            raise TaskStoreError(f"failed to list tasks: {exc}") from exc

    def list_required_incomplete(self) -> List[Task]:
        try:
            return (
                self.db.query(Task)
                .filter(Task.is_required.is_(True), Task.is_completed.is_(False))
                .order_by(nulls_last(asc(Task.deadline)), asc(Task.created_at))
                .all()
            )
        except SQLAlchemyError as exc:
            raise TaskStoreError(f"failed to list required tasks: {exc}") from exc

    def get(self, task_id: Any) -> Optional[Task]:
        key = as_task_id(task_id)
        if key is None:
            return None
        try:
            return self.db.get(Task, key)
        except SQLAlchemyError as exc:
            raise TaskStoreError(f"failed to load task {task_id}: {exc}") from exc

    def create(self, draft: TaskDraft) -> Task:
        task = Task(
            title=draft.title,
            description=draft.description,
            type=draft.type,
            is_completed=False,
            scheduled_time=draft.scheduled_time,
            is_fixed_time=draft.is_fixed_time,
            deadline=draft.deadline,
            estimated_duration=draft.estimated_duration,
            is_required=draft.is_required,
        )
        self.db.add(task)
        self._commit("create task")
        self.db.refresh(task)
        logger.info("Created task %s (%s)", task.id, task.title)
        return task

    def update(self, task_id: Any, changes: Mapping[str, Any]) -> Optional[Task]:
        """Apply ``changes`` to a task; returns None when the task does not exist."""
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise TaskStoreError(f"unsupported task fields: {sorted(unknown)}")
        task = self.get(task_id)
        if task is None:
            return None
        for field, value in changes.items():
            if field == "type" and value is not None:
                value = TaskType(value)
            setattr(task, field, value)
        task.last_adjusted_at = _utcnow()
        self._commit(f"update task {task_id}")
        self.db.refresh(task)
        return task

    def apply_schedule(self, assignments: Mapping[Any, datetime]) -> int:
        """Set scheduled times for several tasks in one transaction, all or nothing."""
        if not assignments:
            return 0
        now = _utcnow()
        try:
            for task_id, scheduled_time in assignments.items():
                key = as_task_id(task_id)
                task = self.db.get(Task, key) if key is not None else None
                if task is None:
                    raise TaskStoreError(f"task {task_id} not found while applying schedule")
                task.scheduled_time = scheduled_time
                task.last_adjusted_at = now
            self.db.commit()
        except TaskStoreError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise TaskStoreError(f"failed to apply schedule: {exc}") from exc
        return len(assignments)

    def delete(self, task_id: Any) -> bool:
        """Delete a task. Deleting a missing task is not an error and returns False."""
        task = self.get(task_id)
        if task is None:
            return False
        self.db.delete(task)
        self._commit(f"delete task {task_id}")
        return True

    def delete_completed(self) -> int:
        return self._delete_where(Task.is_completed.is_(True), label="completed")

    def delete_expired(self, now: datetime) -> int:
        return self._delete_where(
            Task.is_completed.is_(False),
            Task.deadline.is_not(None),
            Task.deadline < now,
            label="expired",
        )

    def find_time_conflicts(
        self,
        start: datetime,
        duration: Optional[int],
        exclude_id: Any = None,
    ) -> List[Task]:
        """Incomplete tasks whose scheduled interval overlaps ``[start, start + duration)``."""
        end = start + timedelta(minutes=duration or 0)
        excluded = as_task_id(exclude_id) if exclude_id is not None else None
        conflicts: List[Task] = []
        for task in self.list_all():
            if task.is_completed or (excluded is not None and task.id == excluded):
                continue
            interval = task_interval(task)
            if interval is None:
                continue
            other_start, other_end = interval
            if duration:
                overlaps = start < other_end and end > other_start
            else:
                overlaps = other_start <= start < other_end
            if overlaps:
                conflicts.append(task)
        return conflicts

    def tasks_by_type(self) -> Dict[TaskType, List[Task]]:
        grouped: Dict[TaskType, List[Task]] = {member: [] for member in TaskType}
        for task in self.list_all():
            grouped[TaskType(task.type)].append(task)
        return grouped

    def _delete_where(self, *criteria: Any, label: str) -> int:
        try:
            count = self.db.query(Task).filter(*criteria).delete(synchronize_session="fetch")
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise TaskStoreError(f"failed to delete {label} tasks: {exc}") from exc
        if count:
            logger.info("Deleted %s %s task(s)", count, label)
        return count

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise TaskStoreError(f"failed to {action}: {exc}") from exc
