from __future__ import annotations

from datetime import timedelta

import pytest

from fakes import NOW

from app.core.errors import TaskStoreError
from app.services.task_cleanup import clean_stale_tasks
from app.services.task_drafts import TaskDraft
from app.services.task_store import TaskStore


def _seed(store: TaskStore) -> None:
    finished = store.create(TaskDraft(title="Return library book"))
    store.update(finished.id, {"is_completed": True})
    store.create(TaskDraft(title="Scholarship form", deadline=NOW - timedelta(hours=1)))
    store.create(TaskDraft(title="Essay", deadline=NOW + timedelta(days=2)))
    store.create(TaskDraft(title="Stretch"))


def test_clean_removes_completed_and_expired(store: TaskStore) -> None:
    _seed(store)

    result = clean_stale_tasks(store, NOW)

    assert result.completed_deleted == 1
    assert result.expired_deleted == 1
    assert result.total == 2
    assert sorted(task.title for task in store.list_all()) == ["Essay", "Stretch"]


def test_second_run_is_a_noop(store: TaskStore) -> None:
    _seed(store)
    clean_stale_tasks(store, NOW)

    assert clean_stale_tasks(store, NOW).total == 0


def test_store_errors_propagate(store: TaskStore, monkeypatch) -> None:
    def broken():
        raise TaskStoreError("read-only database")

    monkeypatch.setattr(store, "delete_completed", broken)

    with pytest.raises(TaskStoreError):
        clean_stale_tasks(store, NOW)
