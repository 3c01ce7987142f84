"""Interpret adjustment instructions as per-task field changes."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from app.core.clock import format_wall_time
from app.core.errors import CompletionError, MalformedOutputError
from app.db.models.task import Task, TaskType
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.llm_client import CompletionClient, complete_structured
from app.services.task_drafts import coerce_duration, coerce_text, parse_wall_time, temporal_context_block

logger = logging.getLogger(__name__)

ADJUSTMENT_PROMPT_HEADER = "You turn a user's adjustment instruction into changes to existing tasks."
ADJUSTMENT_TEMPERATURE = 0.3


class AdjustmentItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    taskId: Any = None
    taskTitle: Any = None
    newScheduledTime: Any = None
    newDuration: Any = None
    newDeadline: Any = None
    newType: Any = None
    newDescription: Any = None


class AdjustmentPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    adjustments: Optional[List[AdjustmentItem]] = None


@dataclass
class TaskDelta:
    """Field changes for one task. ``None`` values under deadline/description mean removal."""

    task_id: Any
    task_title: str
    changes: Dict[str, Any] = field(default_factory=dict)


def _task_view(task: Task) -> Dict[str, Any]:
    return {
        "id": str(task.id),
        "title": task.title,
        "type": TaskType(task.type).value,
        "scheduledTime": format_wall_time(task.scheduled_time) if task.scheduled_time else None,
        "estimatedDuration": task.estimated_duration,
        "deadline": format_wall_time(task.deadline) if task.deadline else None,
        "description": task.description,
    }


def build_adjustment_prompt(utterance: str, tasks: Sequence[Task], now: datetime) -> str:
    task_block = json.dumps([_task_view(task) for task in tasks], ensure_ascii=False, indent=2)
    return f"""{ADJUSTMENT_PROMPT_HEADER}

{temporal_context_block(now)}

Existing tasks:
{task_block}

Instruction: {utterance}

One instruction may adjust several tasks. Include only the fields that change.
Use null for newDeadline or newDescription to remove them.

Task types: course (classes, homework), trivial (errands, applications, paperwork),
work (projects, reports), learning (self-study, research).
Examples:
- "Financial engineering is a class, the scholarship items are errands" -> two adjustments,
  newType "course" for the class and newType "trivial" for the scholarship task.
- "Remove the note from the project report" -> newDescription: null.

Return JSON only:
{{
  "adjustments": [
    {{
      "taskId": "id from the list",
      "taskTitle": "title from the list",
      "newScheduledTime": "YYYY-MM-DD HH:MM",
      "newDuration": 45,
      "newDeadline": "YYYY-MM-DD HH:MM or null",
      "newType": "course|trivial|work|learning",
      "newDescription": "text or null"
    }}
  ]
}}"""


def _resolve_task(item: AdjustmentItem, tasks: Sequence[Task]) -> Optional[Task]:
    task_id = coerce_text(str(item.taskId)) if item.taskId is not None else None
    if task_id:
        for task in tasks:
            if str(task.id) == task_id:
                return task
    title = coerce_text(item.taskTitle)
    if title:
        for task in tasks:
            if task.title == title:
                return task
    return None


def _changes_from(item: AdjustmentItem) -> Dict[str, Any]:
    provided = item.model_fields_set
    changes: Dict[str, Any] = {}

    scheduled_time = parse_wall_time(item.newScheduledTime)
    if scheduled_time is not None:
        changes["scheduled_time"] = scheduled_time

    duration = coerce_duration(item.newDuration)
    if duration is not None:
        changes["estimated_duration"] = duration

    if "newDeadline" in provided:
        if item.newDeadline is None:
            changes["deadline"] = None
        else:
            deadline = parse_wall_time(item.newDeadline, end_of_day=True)
            if deadline is not None:
                changes["deadline"] = deadline

    task_type = TaskType.parse(item.newType)
    if task_type is not None:
        changes["type"] = task_type

    if "newDescription" in provided:
        if item.newDescription is None or isinstance(item.newDescription, str):
            changes["description"] = coerce_text(item.newDescription)

    return changes


class AdjustmentParser:
    def __init__(self, client: CompletionClient) -> None:
        self.client = client

    def parse(self, utterance: str, tasks: Sequence[Task], now: datetime) -> List[TaskDelta]:
        """Return one merged delta per addressed task; unresolvable references are skipped."""
        with trace("adjustment.parse", metadata={"task_count": len(tasks)}):
            try:
                payload = complete_structured(
                    self.client,
                    build_adjustment_prompt(utterance, tasks, now),
                    AdjustmentPayload,
                    purpose="adjustment",
                    temperature=ADJUSTMENT_TEMPERATURE,
                )
            except (CompletionError, MalformedOutputError) as exc:
                logger.warning("Adjustment parsing failed: %s", exc)
                return []

            deltas: Dict[str, TaskDelta] = {}
            for item in payload.adjustments or []:
                task = _resolve_task(item, tasks)
                if task is None:
                    logger.info("Skipping adjustment for unknown task %r / %r", item.taskId, item.taskTitle)
                    log_metric("adjustment.unresolved", 1)
                    continue
                changes = _changes_from(item)
                if not changes:
                    continue
                key = str(task.id)
                if key in deltas:
                    deltas[key].changes.update(changes)
                else:
                    deltas[key] = TaskDelta(task_id=task.id, task_title=task.title, changes=changes)

            logger.info("Parsed %s adjustment(s)", len(deltas))
            return list(deltas.values())
