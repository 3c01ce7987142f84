"""Split compound procedural requests into ordered task drafts."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from app.core.errors import CompletionError, MalformedOutputError
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.llm_client import CompletionClient, complete_structured
from app.services.task_drafts import (
    TaskDraft,
    enforce_explicit_times,
    format_drafts_for_confirmation,
    normalize_draft,
    temporal_context_block,
)

logger = logging.getLogger(__name__)

DECOMPOSER_PROMPT_HEADER = "You split a complex request into concrete, executable sub-tasks."
DECOMPOSER_TEMPERATURE = 0.3
CONFIRMATION_TASK_THRESHOLD = 3

__all__ = [
    "DECOMPOSER_PROMPT_HEADER",
    "DecompositionResult",
    "TaskDecomposer",
    "format_drafts_for_confirmation",
    "requires_confirmation",
]


class DecompositionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    analysis: Optional[str] = None
    suggestedTasks: Optional[List[Dict[str, Any]]] = None


@dataclass
class DecompositionResult:
    success: bool
    drafts: List[TaskDraft] = field(default_factory=list)
    analysis: Optional[str] = None


def requires_confirmation(drafts: Sequence[TaskDraft]) -> bool:
    """More than three drafts or any required draft needs the user's go-ahead."""
    return len(drafts) > CONFIRMATION_TASK_THRESHOLD or any(draft.is_required for draft in drafts)


def build_decomposer_prompt(utterance: str, now: datetime) -> str:
    return f"""{DECOMPOSER_PROMPT_HEADER}

{temporal_context_block(now)}

Guidelines:
1. Every distinct action verb (fill in, submit, print, sign, check, ...) starts a candidate task.
2. Every distinct time reference (deadline, start time) is a candidate task boundary.
3. Keep the tasks in the order they appear in the text.
4. Each task needs a clear, verifiable goal.
5. Do not set scheduledTime unless the text says when to do that step.
6. Set deadline only when the text states one; set estimatedDuration only when the text states how long.
7. Copy a description only when the text supplies one.

Task types:
- course: classes, lectures, homework
- trivial: errands, paperwork, quick operations
- work: projects, reports
- learning: self-study, research

Request: {utterance}

Return JSON only:
{{
  "analysis": "one paragraph summary",
  "suggestedTasks": [
    {{
      "title": "task title",
      "type": "course|trivial|work|learning",
      "scheduledTime": "YYYY-MM-DD HH:MM",
      "isFixedTime": false,
      "deadline": "YYYY-MM-DD HH:MM",
      "estimatedDuration": 30,
      "isRequired": false,
      "description": "optional note"
    }}
  ]
}}"""


class TaskDecomposer:
    def __init__(self, client: CompletionClient) -> None:
        self.client = client

    def decompose(self, utterance: str, now: datetime) -> DecompositionResult:
        with trace("task.decompose", metadata={"length": len(utterance)}):
            try:
                payload = complete_structured(
                    self.client,
                    build_decomposer_prompt(utterance, now),
                    DecompositionPayload,
                    purpose="decomposition",
                    temperature=DECOMPOSER_TEMPERATURE,
                )
            except (CompletionError, MalformedOutputError) as exc:
                logger.warning("Decomposition failed: %s", exc)
                return DecompositionResult(success=False)

            drafts = [draft for draft in map(normalize_draft, payload.suggestedTasks or []) if draft is not None]
            drafts = enforce_explicit_times(drafts, utterance)
            log_metric("decomposition.drafts", len(drafts))
            if not drafts:
                logger.info("Decomposition produced no usable drafts")
                return DecompositionResult(success=False, analysis=payload.analysis)

            logger.info("Decomposed request into %s drafts", len(drafts))
            return DecompositionResult(success=True, drafts=drafts, analysis=payload.analysis)
