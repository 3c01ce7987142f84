"""Task ORM model."""
from __future__ import annotations

import enum
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Enum, Index, Integer, Text, func, text as sa_text
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base


class TaskType(str, enum.Enum):
    COURSE = "course"
    TRIVIAL = "trivial"
    WORK = "work"
    LEARNING = "learning"

    @classmethod
    def parse(cls, value: object) -> "TaskType | None":
        """Return the member for ``value`` or None when it is not one of the closed set."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None

    @property
    def display_name(self) -> str:
        return TASK_TYPE_DISPLAY_NAMES[self]


TASK_TYPE_DISPLAY_NAMES = {
    TaskType.COURSE: "Course",
    TaskType.TRIVIAL: "Errand",
    TaskType.WORK: "Work",
    TaskType.LEARNING: "Study",
}

MIN_DURATION_MIN = 5
MAX_DURATION_MIN = 480


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_is_completed", "is_completed"),
        Index("ix_tasks_is_required", "is_required"),
        Index("ix_tasks_deadline", "deadline"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    type = Column(
        Enum(TaskType, name="task_type", native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=TaskType.WORK,
    )
    is_completed = Column(Boolean, nullable=False, default=False, server_default=sa_text("false"))
    # Naive local wall-clock times, see app.core.clock.
    scheduled_time = Column(DateTime, nullable=True)
    is_fixed_time = Column(Boolean, nullable=False, default=False, server_default=sa_text("false"))
    deadline = Column(DateTime, nullable=True)
    estimated_duration = Column(Integer, nullable=True)
    is_required = Column(Boolean, nullable=False, default=False, server_default=sa_text("false"))
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())
    last_adjusted_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<Task {self.id} {self.title!r} type={self.type} required={self.is_required}>"
