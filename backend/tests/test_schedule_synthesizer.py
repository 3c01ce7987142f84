from __future__ import annotations

import json
from datetime import datetime

from fakes import NOW, ScriptedCompletionClient

from app.core.errors import CompletionError
from app.services.schedule_synthesizer import SCHEDULER_PROMPT_HEADER, SchedulingSynthesizer
from app.services.task_drafts import TaskDraft
from app.services.task_store import TaskStore


def _schedule(*entries) -> str:
    return json.dumps(
        {"schedule": [{"id": str(task_id), "scheduledTime": when, "reason": "r"} for task_id, when in entries]}
    )


def _scenario(store: TaskStore):
    fixed = store.create(
        TaskDraft(
            title="Team sync",
            scheduled_time=datetime(2026, 10, 14, 9, 0),
            is_fixed_time=True,
            estimated_duration=30,
            is_required=True,
        )
    )
    flexible = store.create(TaskDraft(title="Write summary", estimated_duration=60, is_required=True))
    return fixed, flexible


def test_colliding_proposal_is_retried_until_valid(store: TaskStore) -> None:
    fixed, flexible = _scenario(store)
    client = ScriptedCompletionClient(
        {
            SCHEDULER_PROMPT_HEADER: [
                _schedule((fixed.id, "2026-10-14 09:00"), (flexible.id, "2026-10-14 09:15")),
                _schedule((fixed.id, "2026-10-14 09:00"), (flexible.id, "2026-10-14 10:00")),
            ]
        }
    )
    synthesizer = SchedulingSynthesizer(client, store, max_attempts=3)

    result = synthesizer.synthesize(store.list_required_incomplete(), NOW)

    assert result.success is True
    assert result.attempts == 2
    assert result.scheduled_count == 2
    assert store.get(flexible.id).scheduled_time == datetime(2026, 10, 14, 10, 0)
    assert store.get(fixed.id).scheduled_time == datetime(2026, 10, 14, 9, 0)
    # The retry prompt carries the rejected proposal's issues and the policy temperature.
    retry_prompt, temperature = client.calls[1]
    assert '"Team sync" and "Write summary" overlap' in retry_prompt
    assert temperature == 0.5


def test_fixed_task_keeps_its_stored_time(store: TaskStore) -> None:
    fixed = store.create(
        TaskDraft(
            title="Lab check-in",
            scheduled_time=datetime(2026, 10, 14, 9, 0, 30),
            is_fixed_time=True,
            estimated_duration=30,
            is_required=True,
        )
    )
    flexible = store.create(TaskDraft(title="Review notes", estimated_duration=30, is_required=True))
    client = ScriptedCompletionClient(
        {SCHEDULER_PROMPT_HEADER: [_schedule((fixed.id, "2026-10-14 09:00"), (flexible.id, "2026-10-14 10:00"))]}
    )

    result = SchedulingSynthesizer(client, store).synthesize(store.list_required_incomplete(), NOW)

    assert result.success is True
    assert result.scheduled_count == 2
    assert store.get(fixed.id).scheduled_time == datetime(2026, 10, 14, 9, 0, 30)
    assert store.get(flexible.id).scheduled_time == datetime(2026, 10, 14, 10, 0)


def test_exhausted_attempts_report_final_issues(store: TaskStore) -> None:
    fixed, flexible = _scenario(store)
    client = ScriptedCompletionClient(
        {SCHEDULER_PROMPT_HEADER: [_schedule((fixed.id, "2026-10-14 09:30"), (flexible.id, "2026-10-14 09:15"))]}
    )

    result = SchedulingSynthesizer(client, store, max_attempts=3).synthesize(store.list_required_incomplete(), NOW)

    assert result.success is False
    assert result.attempts == 3
    assert len(client.calls) == 3
    assert 'Task "Team sync" has a fixed time and cannot be moved' in result.issues
    assert any("overlap" in issue for issue in result.issues)
    assert result.summary.startswith("Scheduling failed:")
    assert store.get(flexible.id).scheduled_time is None


def test_malformed_output_counts_as_failed_attempt(store: TaskStore) -> None:
    fixed, flexible = _scenario(store)
    client = ScriptedCompletionClient(
        {
            SCHEDULER_PROMPT_HEADER: [
                "Sure! Here is your plan, enjoy.",
                "```json\n" + _schedule((fixed.id, "2026-10-14 09:00"), (flexible.id, "2026-10-14 13:00")) + "\n```",
            ]
        }
    )

    result = SchedulingSynthesizer(client, store).synthesize(store.list_required_incomplete(), NOW)

    assert result.success is True
    assert result.attempts == 2


def test_completion_errors_are_retried(store: TaskStore) -> None:
    fixed, flexible = _scenario(store)
    client = ScriptedCompletionClient(
        {
            SCHEDULER_PROMPT_HEADER: [
                CompletionError("timeout"),
                _schedule((fixed.id, "2026-10-14 09:00"), (flexible.id, "2026-10-14 13:00")),
            ]
        }
    )

    result = SchedulingSynthesizer(client, store).synthesize(store.list_required_incomplete(), NOW)

    assert result.success is True
    assert result.attempts == 2


def test_empty_task_set_succeeds_without_calling_model(store: TaskStore) -> None:
    client = ScriptedCompletionClient()

    result = SchedulingSynthesizer(client, store).synthesize([], NOW)

    assert result.success is True
    assert result.attempts == 0
    assert client.calls == []


def test_apply_failure_is_reported(store: TaskStore, monkeypatch) -> None:
    from app.core.errors import TaskStoreError

    fixed, flexible = _scenario(store)
    client = ScriptedCompletionClient(
        {SCHEDULER_PROMPT_HEADER: [_schedule((fixed.id, "2026-10-14 09:00"), (flexible.id, "2026-10-14 13:00"))]}
    )

    def broken_apply(assignments):
        raise TaskStoreError("disk full")

    monkeypatch.setattr(store, "apply_schedule", broken_apply)

    result = SchedulingSynthesizer(client, store).synthesize(store.list_required_incomplete(), NOW)

    assert result.success is False
    assert result.issues == ["disk full"]
