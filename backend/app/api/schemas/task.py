"""Schemas for the task API."""
from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.db.models.task import MAX_DURATION_MIN, MIN_DURATION_MIN, TaskType


class TaskOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    description: Optional[str]
    type: TaskType
    is_completed: bool
    scheduled_time: Optional[datetime]
    is_fixed_time: bool
    deadline: Optional[datetime]
    estimated_duration: Optional[int]
    is_required: bool
    created_at: datetime
    last_adjusted_at: datetime


class TaskCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    type: Optional[str] = None
    description: Optional[str] = None
    scheduled_time: Optional[datetime] = None
    is_fixed_time: bool = False
    deadline: Optional[datetime] = None
    estimated_duration: Optional[int] = Field(default=None, ge=MIN_DURATION_MIN, le=MAX_DURATION_MIN)
    is_required: bool = False


class TaskUpdateRequest(BaseModel):
    """Partial update; only fields present in the body are changed."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    type: Optional[TaskType] = None
    description: Optional[str] = None
    is_completed: Optional[bool] = None
    scheduled_time: Optional[datetime] = None
    is_fixed_time: Optional[bool] = None
    deadline: Optional[datetime] = None
    estimated_duration: Optional[int] = Field(default=None, ge=MIN_DURATION_MIN, le=MAX_DURATION_MIN)
    is_required: Optional[bool] = None


class TaskDeleteResponse(BaseModel):
    id: str
    was_deleted: bool
    request_id: Optional[str] = None
