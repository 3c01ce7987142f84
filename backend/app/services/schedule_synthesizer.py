"""Bounded propose / validate / apply loop for scheduling required tasks."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from app.core.clock import format_wall_time
from app.core.config import settings
from app.core.errors import CompletionError, MalformedOutputError, TaskStoreError
from app.db.models.task import Task, TaskType
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.llm_client import CompletionClient, complete_structured
from app.services.schedule_validator import ProposedSlot, ScheduleValidation, validate_schedule
from app.services.task_drafts import coerce_text, parse_wall_time, temporal_context_block
from app.services.task_store import TaskStore

logger = logging.getLogger(__name__)

SCHEDULER_PROMPT_HEADER = "You arrange a person's required tasks into a workable schedule."
SCHEDULER_TEMPERATURE = 0.5


class ScheduleItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Any = None
    scheduledTime: Any = None
    reason: Any = None


class SchedulePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    schedule: Optional[List[ScheduleItem]] = None


@dataclass
class SynthesisResult:
    success: bool
    summary: str
    scheduled_count: int = 0
    attempts: int = 0
    issues: List[str] = field(default_factory=list)


def _task_view(task: Task) -> Dict[str, Any]:
    return {
        "id": str(task.id),
        "title": task.title,
        "type": TaskType(task.type).value,
        "isFixedTime": bool(task.is_fixed_time),
        "scheduledTime": format_wall_time(task.scheduled_time) if task.scheduled_time else None,
        "deadline": format_wall_time(task.deadline) if task.deadline else None,
        "estimatedDuration": task.estimated_duration,
        "isRequired": bool(task.is_required),
        "description": task.description,
    }


def build_schedule_prompt(tasks: Sequence[Task], now: datetime, previous_issues: Sequence[str] = ()) -> str:
    task_block = json.dumps([_task_view(task) for task in tasks], ensure_ascii=False, indent=2)
    retry_block = ""
    if previous_issues:
        retry_block = "\nThe previous proposal was rejected:\n" + "\n".join(f"- {issue}" for issue in previous_issues) + "\n"
    return f"""{SCHEDULER_PROMPT_HEADER}

{temporal_context_block(now)}

Rules:
1. Cluster trivial tasks into one contiguous block.
2. Give learning tasks uninterrupted blocks.
3. Never move a task whose isFixedTime is true; keep its scheduledTime exactly.
4. Respect deadlines and put required tasks first.
Schedule every task below exactly once and do not let tasks overlap.
{retry_block}
Tasks:
{task_block}

Return JSON only:
{{
  "schedule": [
    {{"id": "task id", "scheduledTime": "YYYY-MM-DD HH:MM", "reason": "why this slot"}}
  ]
}}"""


class SchedulingSynthesizer:
    def __init__(
        self,
        client: CompletionClient,
        store: TaskStore,
        *,
        max_attempts: Optional[int] = None,
    ) -> None:
        self.client = client
        self.store = store
        self.max_attempts = max(1, max_attempts or settings.schedule_max_attempts)

    def propose(self, tasks: Sequence[Task], now: datetime, previous_issues: Sequence[str] = ()) -> List[ProposedSlot]:
        """Ask the model for a proposal; malformed output is an empty proposal."""
        try:
            payload = complete_structured(
                self.client,
                build_schedule_prompt(tasks, now, previous_issues),
                SchedulePayload,
                purpose="schedule",
                temperature=SCHEDULER_TEMPERATURE,
            )
        except MalformedOutputError:
            return []

        slots: List[ProposedSlot] = []
        for item in payload.schedule or []:
            task_id = coerce_text(str(item.id)) if item.id is not None else None
            scheduled_time = parse_wall_time(item.scheduledTime)
            if not task_id or scheduled_time is None:
                logger.info("Ignoring unusable schedule entry id=%r time=%r", item.id, item.scheduledTime)
                continue
            slots.append(ProposedSlot(task_id=task_id, scheduled_time=scheduled_time, reason=coerce_text(item.reason) or ""))
        return slots

    def synthesize(self, tasks: Sequence[Task], now: datetime) -> SynthesisResult:
        if not tasks:
            return SynthesisResult(success=True, summary="No required tasks to schedule")

        with trace("schedule.synthesize", metadata={"task_count": len(tasks), "max_attempts": self.max_attempts}):
            validation = ScheduleValidation(issues=["no proposal produced"])
            attempt = 0
            for attempt in range(1, self.max_attempts + 1):
                logger.info("Scheduling attempt %s/%s for %s task(s)", attempt, self.max_attempts, len(tasks))
                try:
                    proposal = self.propose(tasks, now, validation.issues if attempt > 1 else ())
                except CompletionError as exc:
                    logger.warning("Scheduling attempt %s failed: %s", attempt, exc)
                    validation = ScheduleValidation(issues=[f"language model unavailable: {exc}"])
                    continue

                validation = validate_schedule(proposal, tasks)
                if not validation.is_valid:
                    logger.info("Schedule attempt %s rejected: %s", attempt, "; ".join(validation.issues))
                    continue

                # Fixed-time tasks keep their stored time; only flexible slots are written.
                fixed_ids = {str(task.id) for task in tasks if task.is_fixed_time}
                assignments = {
                    slot.task_id: slot.scheduled_time for slot in proposal if slot.task_id not in fixed_ids
                }
                try:
                    if assignments:
                        self.store.apply_schedule(assignments)
                except TaskStoreError as exc:
                    logger.error("Failed to apply schedule: %s", exc)
                    log_metric("schedule.apply_failed", 1)
                    return SynthesisResult(
                        success=False,
                        summary=f"Schedule could not be saved: {exc}",
                        attempts=attempt,
                        issues=[str(exc)],
                    )
                log_metric("schedule.synthesized", 1, {"attempts": attempt, "task_count": len(proposal)})
                return SynthesisResult(
                    success=True,
                    summary=validation.summary,
                    scheduled_count=len(proposal),
                    attempts=attempt,
                )

            log_metric("schedule.exhausted", 1, {"attempts": attempt})
            return SynthesisResult(
                success=False,
                summary=f"Scheduling failed: {', '.join(validation.issues)}",
                attempts=attempt,
                issues=list(validation.issues),
            )
