"""Pure checks over a proposed schedule."""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Sequence

from app.db.models.task import Task

FIXED_TIME_TOLERANCE = timedelta(seconds=60)


@dataclass(frozen=True)
class ProposedSlot:
    task_id: str
    scheduled_time: datetime
    reason: str = ""


@dataclass
class ScheduleValidation:
    issues: List[str] = field(default_factory=list)
    summary: str = ""

    @property
    def is_valid(self) -> bool:
        return not self.issues


def validate_schedule(proposal: Sequence[ProposedSlot], tasks: Sequence[Task]) -> ScheduleValidation:
    """Check completeness, fixed times, deadlines and overlaps of ``proposal``.

    Every input task must appear exactly once. Fixed-time tasks may move by at
    most a minute, nothing may be placed after its deadline, and two tasks with
    known durations may not share any part of ``[start, start + duration)``.
    """
    by_id: Dict[str, Task] = {str(task.id): task for task in tasks}
    counts = Counter(slot.task_id for slot in proposal)
    issues: List[str] = []

    missing = [task_id for task_id in by_id if task_id not in counts]
    if missing:
        issues.append(f"{len(missing)} task(s) were not scheduled")
    for task_id, count in counts.items():
        if task_id not in by_id:
            issues.append(f"Unknown task id {task_id} in proposal")
        elif count > 1:
            issues.append(f'Task "{by_id[task_id].title}" was scheduled {count} times')

    known = [slot for slot in proposal if slot.task_id in by_id]
    for slot in known:
        task = by_id[slot.task_id]
        if task.is_fixed_time and task.scheduled_time is not None:
            if abs(slot.scheduled_time - task.scheduled_time) > FIXED_TIME_TOLERANCE:
                issues.append(f'Task "{task.title}" has a fixed time and cannot be moved')
        if task.deadline is not None and slot.scheduled_time > task.deadline:
            issues.append(f'Task "{task.title}" is scheduled after its deadline')

    for index, first in enumerate(known):
        first_task = by_id[first.task_id]
        if not first_task.estimated_duration:
            continue
        first_end = first.scheduled_time + timedelta(minutes=first_task.estimated_duration)
        for second in known[index + 1 :]:
            second_task = by_id[second.task_id]
            if second.task_id == first.task_id or not second_task.estimated_duration:
                continue
            second_end = second.scheduled_time + timedelta(minutes=second_task.estimated_duration)
            if first.scheduled_time < second_end and second.scheduled_time < first_end:
                issues.append(f'Tasks "{first_task.title}" and "{second_task.title}" overlap')

    if issues:
        summary = f"Schedule has {len(issues)} issue(s)"
    else:
        summary = f"Scheduled {len(proposal)} task(s); errands are grouped and study time stays uninterrupted"
    return ScheduleValidation(issues=issues, summary=summary)
