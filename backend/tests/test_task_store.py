from __future__ import annotations

from datetime import datetime
from uuid import uuid4

import pytest

from app.core.errors import TaskStoreError
from app.db.models.task import Task, TaskType
from app.services.task_drafts import TaskDraft
from app.services.task_store import TaskStore


def _draft(title: str, **kwargs) -> TaskDraft:
    return TaskDraft(title=title, **kwargs)


def test_create_and_get_round_trip(store: TaskStore) -> None:
    task = store.create(_draft("Read paper", type=TaskType.LEARNING, estimated_duration=60))

    loaded = store.get(task.id)
    assert loaded is not None
    assert loaded.title == "Read paper"
    assert loaded.type is TaskType.LEARNING
    assert loaded.is_completed is False
    assert loaded.created_at is not None
    assert store.get(str(task.id)).id == task.id
    assert store.get("not-a-uuid") is None


def test_delete_is_idempotent(store: TaskStore) -> None:
    task = store.create(_draft("Throw away"))

    assert store.delete(task.id) is True
    assert store.delete(task.id) is False
    assert store.delete("garbage-id") is False
    assert store.list_all() == []


def test_required_incomplete_ordering(store: TaskStore) -> None:
    late = store.create(_draft("late", is_required=True, deadline=datetime(2026, 10, 20, 12, 0)))
    no_deadline = store.create(_draft("open", is_required=True))
    early = store.create(_draft("early", is_required=True, deadline=datetime(2026, 10, 15, 12, 0)))
    store.create(_draft("optional", deadline=datetime(2026, 10, 14, 12, 0)))
    done = store.create(_draft("done", is_required=True))
    store.update(done.id, {"is_completed": True})

    titles = [task.title for task in store.list_required_incomplete()]

    assert titles == [early.title, late.title, no_deadline.title]


def test_update_sets_fields_and_timestamp(store: TaskStore) -> None:
    task = store.create(_draft("Report", description="draft"))
    before = task.last_adjusted_at

    updated = store.update(task.id, {"type": "course", "description": None, "estimated_duration": 90})

    assert updated.type is TaskType.COURSE
    assert updated.description is None
    assert updated.estimated_duration == 90
    assert updated.last_adjusted_at >= before
    assert store.update(uuid4(), {"title": "x"}) is None


def test_update_rejects_unknown_fields(store: TaskStore) -> None:
    task = store.create(_draft("Report"))

    with pytest.raises(TaskStoreError):
        store.update(task.id, {"owner": "someone"})


def test_apply_schedule_is_all_or_nothing(store: TaskStore) -> None:
    first = store.create(_draft("first"))
    second = store.create(_draft("second"))

    count = store.apply_schedule(
        {str(first.id): datetime(2026, 10, 14, 10, 0), second.id: datetime(2026, 10, 14, 11, 0)}
    )
    assert count == 2
    assert store.get(first.id).scheduled_time == datetime(2026, 10, 14, 10, 0)

    with pytest.raises(TaskStoreError):
        store.apply_schedule({first.id: datetime(2026, 10, 14, 15, 0), uuid4(): datetime(2026, 10, 14, 16, 0)})

    assert store.get(first.id).scheduled_time == datetime(2026, 10, 14, 10, 0)


def test_delete_completed_and_expired(store: TaskStore) -> None:
    finished = store.create(_draft("finished"))
    store.update(finished.id, {"is_completed": True})
    store.create(_draft("expired", deadline=datetime(2026, 10, 13, 18, 0)))
    keep = store.create(_draft("upcoming", deadline=datetime(2026, 10, 15, 18, 0)))
    store.create(_draft("no deadline"))

    assert store.delete_completed() == 1
    assert store.delete_expired(datetime(2026, 10, 14, 9, 0)) == 1

    titles = sorted(task.title for task in store.list_all())
    assert titles == ["no deadline", keep.title]


def test_find_time_conflicts(store: TaskStore) -> None:
    meeting = store.create(
        _draft("meeting", scheduled_time=datetime(2026, 10, 14, 10, 0), estimated_duration=60)
    )
    store.create(_draft("unscheduled", estimated_duration=30))

    overlapping = store.find_time_conflicts(datetime(2026, 10, 14, 10, 30), 30)
    adjacent = store.find_time_conflicts(datetime(2026, 10, 14, 11, 0), 30)
    excluded = store.find_time_conflicts(datetime(2026, 10, 14, 10, 30), 30, exclude_id=meeting.id)

    assert [task.title for task in overlapping] == ["meeting"]
    assert adjacent == []
    assert excluded == []


def test_tasks_by_type_covers_every_type(store: TaskStore) -> None:
    store.create(_draft("lecture", type=TaskType.COURSE))
    store.create(_draft("errand", type=TaskType.TRIVIAL))
    store.create(_draft("errand 2", type=TaskType.TRIVIAL))

    grouped = store.tasks_by_type()

    assert set(grouped) == set(TaskType)
    assert len(grouped[TaskType.TRIVIAL]) == 2
    assert len(grouped[TaskType.COURSE]) == 1
    assert grouped[TaskType.WORK] == []


def test_store_wraps_database_errors(db_session) -> None:
    store = TaskStore(db_session)
    Task.__table__.drop(bind=db_session.get_bind())

    with pytest.raises(TaskStoreError):
        store.list_all()
