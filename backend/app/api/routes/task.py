"""Task CRUD API routes."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.api.deps import get_task_store
from app.api.schemas.task import (
    TaskCreateRequest,
    TaskDeleteResponse,
    TaskOut,
    TaskUpdateRequest,
)
from app.core.clock import to_local_naive
from app.core.errors import TaskStoreError
from app.db.models.task import TaskType
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.task_drafts import TaskDraft
from app.services.task_store import TaskStore

router = APIRouter()

_TIME_FIELDS = ("scheduled_time", "deadline")


def _local(value: Optional[datetime]) -> Optional[datetime]:
    return to_local_naive(value) if value is not None else None


@router.get("/tasks", response_model=List[TaskOut], tags=["tasks"])
def list_tasks(http_request: Request, store: TaskStore = Depends(get_task_store)) -> List[TaskOut]:
    """List every task, newest first."""
    request_id = getattr(http_request.state, "request_id", None)
    with trace("task.list", metadata={"route": "/tasks"}, request_id=request_id):
        tasks = store.list_all()
    log_metric("tasks.listed", len(tasks))
    return [TaskOut.model_validate(task) for task in tasks]


@router.post("/tasks", response_model=TaskOut, status_code=status.HTTP_201_CREATED, tags=["tasks"])
def create_task(
    request: TaskCreateRequest,
    http_request: Request,
    store: TaskStore = Depends(get_task_store),
) -> TaskOut:
    """Create a task directly. Unknown types are filed as errands."""
    request_id = getattr(http_request.state, "request_id", None)
    title = request.title.strip()
    if not title:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="title must not be empty")

    draft = TaskDraft(
        title=title,
        type=TaskType.parse(request.type) or TaskType.TRIVIAL,
        description=request.description,
        scheduled_time=_local(request.scheduled_time),
        is_fixed_time=request.is_fixed_time,
        deadline=_local(request.deadline),
        estimated_duration=request.estimated_duration,
        is_required=request.is_required,
    )
    with trace("task.create", metadata={"route": "/tasks", "type": draft.type.value}, request_id=request_id):
        try:
            task = store.create(draft)
        except TaskStoreError as exc:
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    log_metric("tasks.created", 1, {"type": draft.type.value})
    return TaskOut.model_validate(task)


@router.patch("/tasks/{task_id}", response_model=TaskOut, tags=["tasks"])
def update_task(
    task_id: str,
    request: TaskUpdateRequest,
    http_request: Request,
    store: TaskStore = Depends(get_task_store),
) -> TaskOut:
    request_id = getattr(http_request.state, "request_id", None)
    changes: Dict[str, Any] = {field: getattr(request, field) for field in request.model_fields_set}
    for field in _TIME_FIELDS:
        if field in changes:
            changes[field] = _local(changes[field])
    for field in ("title", "is_completed", "is_fixed_time", "is_required", "type"):
        if field in changes and changes[field] is None:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"{field} cannot be null")

    with trace("task.update", metadata={"route": "/tasks/{id}", "fields": sorted(changes)}, request_id=request_id):
        try:
            task = store.update(task_id, changes)
        except TaskStoreError as exc:
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    return TaskOut.model_validate(task)


@router.delete("/tasks/{task_id}", response_model=TaskDeleteResponse, tags=["tasks"])
def delete_task(
    task_id: str,
    http_request: Request,
    store: TaskStore = Depends(get_task_store),
) -> TaskDeleteResponse:
    """Delete a task. Deleting a task that is already gone still succeeds."""
    request_id = getattr(http_request.state, "request_id", None)
    with trace("task.delete", metadata={"route": "/tasks/{id}"}, request_id=request_id):
        try:
            was_deleted = store.delete(task_id)
        except TaskStoreError as exc:
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    log_metric("tasks.deleted", 1 if was_deleted else 0)
    return TaskDeleteResponse(id=task_id, was_deleted=was_deleted, request_id=request_id)
