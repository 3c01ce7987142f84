"""Task drafts produced from language-model output.

Raw drafts come back from the model with camelCase keys and loosely typed
values. ``normalize_draft`` turns one into a ``TaskDraft`` with a fixed fallback
for every field, and ``enforce_explicit_times`` drops time fields the source
text never stated.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime, time, timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.core.clock import format_wall_time, to_local_naive
from app.db.models.task import MAX_DURATION_MIN, MIN_DURATION_MIN, TaskType

logger = logging.getLogger(__name__)


class RawTaskDraft(BaseModel):
    """Task shape requested from the model. Values are validated field by field later."""

    model_config = ConfigDict(extra="ignore")

    title: Any = None
    type: Any = None
    description: Any = None
    scheduledTime: Any = None
    isFixedTime: Any = None
    deadline: Any = None
    estimatedDuration: Any = None
    isRequired: Any = None


class TaskDraft(BaseModel):
    title: str = Field(..., min_length=1)
    type: TaskType = TaskType.WORK
    description: Optional[str] = None
    scheduled_time: Optional[datetime] = None
    is_fixed_time: bool = False
    deadline: Optional[datetime] = None
    estimated_duration: Optional[int] = Field(default=None, ge=MIN_DURATION_MIN, le=MAX_DURATION_MIN)
    is_required: bool = False

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "type": self.type.value,
            "description": self.description,
            "scheduled_time": format_wall_time(self.scheduled_time) if self.scheduled_time else None,
            "is_fixed_time": self.is_fixed_time,
            "deadline": format_wall_time(self.deadline) if self.deadline else None,
            "estimated_duration": self.estimated_duration,
            "is_required": self.is_required,
        }


# Dates, clock times, weekdays and relative days.
TEMPORAL_PATTERNS = [
    r"\d{4}[-/.年]\d{1,2}",
    r"\d{1,2}\s*月\s*\d{1,2}\s*[日号]?",
    r"\d{1,2}\s*[:：]\s*\d{2}",
    r"[\d零一二两三四五六七八九十]+\s*[点點时]",
    r"[今明后昨]天|大后天|今晚|明早|明晚|今早",
    r"(周|星期|礼拜)[一二三四五六日天]",
    r"(下|本|这|上)(个)?(周|星期|礼拜|月)",
    r"月底|月初|周末|上午|下午|晚上|早上|中午|凌晨|傍晚",
    r"\b(today|tonight|tomorrow|yesterday|noon|midnight|weekend)\b",
    r"\b(mon|tues|wednes|thurs|fri|satur|sun)day\b",
    r"\bnext (week|month|year)\b",
    r"\b\d{1,2}\s*(am|pm)\b",
]

_WHEN_TOKEN = (
    r"(?:\d{4}[-/.年]\d{1,2}(?:[-/.月]\d{1,2}[日号]?)?"
    r"|\d{1,2}\s*月\s*\d{1,2}\s*[日号]?"
    r"|\d{1,2}\s*[:：]\s*\d{2}"
    r"|[\d零一二两三四五六七八九十]+\s*[点點时](?:半|\d{1,2}分?)?"
    r"|[今明后]天|大后天|今晚|明早|明晚"
    r"|(?:周|星期|礼拜)[一二三四五六日天]"
    r"|(?:下|本|这)(?:个)?(?:周|星期|礼拜|月)"
    r"|月底|月初|周末|上午|下午|晚上|早上|中午|凌晨|傍晚)"
)
_WHEN = rf"{_WHEN_TOKEN}(?:\s*{_WHEN_TOKEN})*"
_EN_WHEN = (
    r"(?:(?:next|this)\s+)?(?:\w+day|tomorrow|tonight|today|noon|midnight"
    r"|\d{4}-\d{1,2}-\d{1,2}|\d{1,2}(?::\d{2})?\s*(?:am|pm)?)"
    r"(?:\s+(?:at\s+)?\d{1,2}(?::\d{2})?\s*(?:am|pm)?)?"
)

# A date or time framed as a limit ("周五前", "截止10月20日", "by Friday").
DEADLINE_PATTERNS = [
    rf"{_WHEN}\s*(?:之前|以前|前(?![往台面进天]))",
    rf"(?:截止|需于|最晚|不晚于|期限)(?:到|于|日期|时间|是|为|在)*\s*{_WHEN}",
    rf"{_WHEN}\s*(?:截止|到期)",
    rf"\b(?:by|before|until|no later than|due(?:\s+(?:on|by))?|deadline(?:\s+is)?)\s+{_EN_WHEN}",
]

DURATION_PATTERNS = [
    r"\d+(\.\d+)?\s*(个)?\s*(分钟|分鐘|小时|小時|钟头)",
    r"半(个)?小时|一刻钟|[一两二三四五六七八九十]+\s*(个)?\s*(分钟|小时|钟头)",
    r"\b\d+(\.\d+)?\s*(min|mins|minute|minutes|h|hr|hrs|hour|hours)\b",
    r"\b(half an hour|an hour|a quarter hour)\b",
]

_TEMPORAL_RE = re.compile("|".join(f"(?:{p})" for p in TEMPORAL_PATTERNS), re.IGNORECASE)
_DEADLINE_RE = re.compile("|".join(f"(?:{p})" for p in DEADLINE_PATTERNS), re.IGNORECASE)
_DURATION_RE = re.compile("|".join(f"(?:{p})" for p in DURATION_PATTERNS), re.IGNORECASE)


def has_temporal_expression(text: str) -> bool:
    return bool(_TEMPORAL_RE.search(text or ""))


def has_deadline_expression(text: str) -> bool:
    return bool(_DEADLINE_RE.search(text or ""))


def has_scheduled_time_expression(text: str) -> bool:
    """A date or time that is not only the limit of a deadline phrase."""
    return has_temporal_expression(_DEADLINE_RE.sub(" ", text or ""))


def has_duration_expression(text: str) -> bool:
    return bool(_DURATION_RE.search(text or ""))


def temporal_context_block(now: datetime) -> str:
    """Prompt lines that pin relative date words to concrete dates."""
    today = now.date()
    days_to_saturday = (5 - today.weekday()) % 7 or 7
    return "\n".join(
        [
            f"Current local date and time: {now.strftime('%A')} {format_wall_time(now)}",
            f"ISO date: {today.isoformat()}",
            "Resolve relative expressions against the ISO date above:",
            f'- "tomorrow" / "明天" = {(today + timedelta(days=1)).isoformat()}',
            f'- "the day after tomorrow" / "后天" = {(today + timedelta(days=2)).isoformat()}',
            '- a weekday name ("Saturday", "周六") = the next date falling on that weekday'
            f" (next Saturday is {(today + timedelta(days=days_to_saturday)).isoformat()})",
            f'- "next week" / "下周" = {(today + timedelta(days=7)).isoformat()}',
        ]
    )


def parse_wall_time(value: Any, *, end_of_day: bool = False) -> Optional[datetime]:
    """Parse model output such as ``2026-10-16 15:00`` into a naive local datetime.

    Aware timestamps are converted to the configured timezone. A bare date maps
    to midnight, or to 23:59 when ``end_of_day`` is set (deadlines).
    """
    if isinstance(value, datetime):
        return to_local_naive(value).replace(second=0, microsecond=0)
    if not isinstance(value, str):
        return None
    text = value.strip().replace("/", "-")
    if not text:
        return None
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if len(text) == 10:
        parsed = datetime.combine(parsed.date(), time(23, 59) if end_of_day else time(0, 0))
    return to_local_naive(parsed).replace(second=0, microsecond=0)


def coerce_duration(value: Any) -> Optional[int]:
    """Return minutes within the valid range, or None. Out-of-range values are discarded."""
    if value is None or isinstance(value, bool):
        return None
    try:
        minutes = float(value)
    except (TypeError, ValueError):
        return None
    if minutes != minutes or minutes < MIN_DURATION_MIN or minutes > MAX_DURATION_MIN:
        return None
    return int(round(minutes))


def coerce_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    return default


def coerce_text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def normalize_draft(raw: RawTaskDraft | Dict[str, Any]) -> Optional[TaskDraft]:
    """Build a TaskDraft from model output, or None when it has no usable title."""
    if isinstance(raw, dict):
        raw = RawTaskDraft.model_validate(raw)

    title = coerce_text(raw.title)
    if not title:
        logger.info("Dropping draft without title: %s", raw.model_dump())
        return None

    task_type = TaskType.parse(raw.type)
    if task_type is None:
        if raw.type is not None:
            logger.info("Unknown task type %r for %r; using work", raw.type, title)
        task_type = TaskType.WORK

    scheduled_time = parse_wall_time(raw.scheduledTime)
    if raw.scheduledTime not in (None, "") and scheduled_time is None:
        logger.info("Unparseable scheduledTime %r for %r", raw.scheduledTime, title)
    deadline = parse_wall_time(raw.deadline, end_of_day=True)
    if raw.deadline not in (None, "") and deadline is None:
        logger.info("Unparseable deadline %r for %r", raw.deadline, title)
    duration = coerce_duration(raw.estimatedDuration)
    if raw.estimatedDuration is not None and duration is None:
        logger.info("Discarding estimatedDuration %r for %r", raw.estimatedDuration, title)

    return TaskDraft(
        title=title,
        type=task_type,
        description=coerce_text(raw.description),
        scheduled_time=scheduled_time,
        is_fixed_time=coerce_bool(raw.isFixedTime),
        deadline=deadline,
        estimated_duration=duration,
        is_required=coerce_bool(raw.isRequired),
    )


def enforce_explicit_times(drafts: List[TaskDraft], source_text: str) -> List[TaskDraft]:
    """Clear time fields the source text gives no evidence for.

    A scheduled time needs a stated date or time outside any deadline phrase;
    a deadline needs a deadline phrase. "周五前交报告" keeps the deadline only.
    """
    keep_schedule = has_scheduled_time_expression(source_text)
    keep_deadline = has_deadline_expression(source_text)
    keep_duration = has_duration_expression(source_text)
    if keep_schedule and keep_deadline and keep_duration:
        return drafts

    cleaned: List[TaskDraft] = []
    for draft in drafts:
        updates: Dict[str, Any] = {}
        if not keep_schedule and (draft.scheduled_time or draft.is_fixed_time):
            updates.update(scheduled_time=None, is_fixed_time=False)
        if not keep_deadline and draft.deadline:
            updates["deadline"] = None
        if not keep_duration and draft.estimated_duration is not None:
            updates["estimated_duration"] = None
        if updates:
            logger.info("Removing unstated time fields %s from %r", sorted(updates), draft.title)
            draft = draft.model_copy(update=updates)
        cleaned.append(draft)
    return cleaned


def format_drafts_for_confirmation(drafts: List[TaskDraft]) -> str:
    lines = ["I split your request into the following tasks. Please confirm:", ""]
    for index, draft in enumerate(drafts, start=1):
        lines.append(f"{index}. **{draft.title}**")
        lines.append(f"   Type: {draft.type.display_name}")
        if draft.scheduled_time:
            lines.append(f"   Scheduled: {format_wall_time(draft.scheduled_time)}")
        if draft.deadline:
            lines.append(f"   Deadline: {format_wall_time(draft.deadline)}")
        if draft.estimated_duration:
            lines.append(f"   Estimated time: {draft.estimated_duration} min")
        if draft.is_required:
            lines.append("   Priority: required")
        if draft.description:
            lines.append(f"   Note: {draft.description}")
        lines.append("")
    lines.append('Reply "confirm" or "好的" if this looks right, or tell me what to change.')
    return "\n".join(lines)
