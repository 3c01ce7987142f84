"""Classify a user utterance into one of the orchestrator's intents."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict

from app.core.errors import CompletionError, MalformedOutputError
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.llm_client import CompletionClient, complete_structured
from app.services.task_drafts import (
    TaskDraft,
    enforce_explicit_times,
    normalize_draft,
    temporal_context_block,
)

logger = logging.getLogger(__name__)

CLASSIFIER_PROMPT_HEADER = "You classify messages sent to a personal scheduling assistant."
CLASSIFIER_TEMPERATURE = 0.3

REQUIRED_FRAMING_RE = re.compile(r"必须|务必|重要|紧急|\b(must|urgent|important|required|critical)\b", re.IGNORECASE)


class IntentKind(str, Enum):
    ADJUSTMENT = "adjustment"
    NEW_TASK = "new_task"
    QUERY = "query"
    COMPLEX_TASK = "complex_task"


@dataclass
class ClassifiedIntent:
    kind: IntentKind
    draft: Optional[TaskDraft] = None
    explanation: str = ""


class IntentPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    explanation: Optional[str] = None
    taskInfo: Optional[Dict[str, Any]] = None


def has_required_framing(text: str) -> bool:
    return bool(REQUIRED_FRAMING_RE.search(text or ""))


def build_classifier_prompt(utterance: str, now: datetime) -> str:
    return f"""{CLASSIFIER_PROMPT_HEADER}

{temporal_context_block(now)}

Choose exactly one type:
1. adjustment - change existing tasks ("move ... to ...", "reschedule", "make ... a course", "add/remove a note").
2. new_task - a single new task ("I need to ...", "tomorrow ...", "schedule ...").
3. query - a question about current tasks or anything else.
4. complex_task - a multi-step procedure with several actions or several time points that must be split.

Signals for complex_task: several action verbs (fill in, print, sign, submit), several deadlines, a full
workflow description, long and dense text.
Signals for adjustment: explicit change of an existing task's time, deadline, type, importance or note.

Rules for taskInfo:
- Include scheduledTime only when the user states when to do it.
- Include deadline only when the user states a due time.
- Include estimatedDuration (minutes) only when the user states how long it takes.
- isRequired is true only when the user frames the task as must-do, urgent or important; otherwise false.

User message: {utterance}

Return JSON only:
{{
  "type": "adjustment|new_task|query|complex_task",
  "explanation": "short reason",
  "taskInfo": {{
    "title": "task title",
    "type": "course|trivial|work|learning",
    "scheduledTime": "YYYY-MM-DD HH:MM",
    "isFixedTime": false,
    "deadline": "YYYY-MM-DD HH:MM",
    "estimatedDuration": 30,
    "isRequired": false
  }}
}}"""


class IntentClassifier:
    def __init__(self, client: CompletionClient) -> None:
        self.client = client

    def classify(self, utterance: str, now: datetime) -> ClassifiedIntent:
        """Return the intent for ``utterance``; any model failure degrades to a query."""
        with trace("intent.classify", metadata={"length": len(utterance)}):
            try:
                payload = complete_structured(
                    self.client,
                    build_classifier_prompt(utterance, now),
                    IntentPayload,
                    purpose="intent",
                    temperature=CLASSIFIER_TEMPERATURE,
                )
            except (CompletionError, MalformedOutputError) as exc:
                logger.warning("Intent classification fell back to query: %s", exc)
                return ClassifiedIntent(kind=IntentKind.QUERY, explanation="classification unavailable")

            try:
                kind = IntentKind(payload.type.strip().lower())
            except ValueError:
                logger.warning("Unknown intent kind %r; treating as query", payload.type)
                log_metric("intent.unknown_kind", 1, {"kind": payload.type})
                return ClassifiedIntent(kind=IntentKind.QUERY, explanation=payload.explanation or "")

            draft = self._draft_from(payload.taskInfo, utterance)
            log_metric("intent.classified", 1, {"kind": kind.value})
            logger.info("Classified utterance as %s", kind.value)
            return ClassifiedIntent(kind=kind, draft=draft, explanation=payload.explanation or "")

    def _draft_from(self, task_info: Optional[Dict[str, Any]], utterance: str) -> Optional[TaskDraft]:
        if not task_info:
            return None
        draft = normalize_draft(task_info)
        if draft is None:
            return None
        draft = enforce_explicit_times([draft], utterance)[0]
        if not draft.is_required and has_required_framing(utterance):
            draft = draft.model_copy(update={"is_required": True})
        return draft
