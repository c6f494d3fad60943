# tests/test_task_models.py

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from gitask.errors import ValidationError
from gitask.tasks.task_models import Priority, Task, TaskStatus, new_task_id, normalize_label

from .fakes import T0


def test_create_applies_defaults() -> None:
    task = Task.create("  Do laundry  ", now=T0)

    assert task.description == "Do laundry"
    assert task.priority == Priority.NORMAL
    assert task.status == TaskStatus.PENDING
    assert task.scope is None and task.task_type is None
    assert task.created_at == task.updated_at == T0
    assert task.completed_at is None and task.started_at is None
    assert task.time_spent == 0.0
    assert len(task.id) == 32


def test_create_rejects_empty_description() -> None:
    with pytest.raises(ValidationError):
        Task.create("   ", now=T0)


def test_ids_are_unique_hex() -> None:
    ids = {new_task_id() for _ in range(200)}
    assert len(ids) == 200
    assert all(int(i, 16) >= 0 for i in ids)


def test_priority_and_status_ordering() -> None:
    ranks = [p.rank for p in (Priority.LOW, Priority.NORMAL, Priority.HIGH, Priority.URGENT)]
    assert ranks == sorted(ranks)
    assert TaskStatus.DONE.is_terminal and TaskStatus.ABORTED.is_terminal
    assert not TaskStatus.ACTIVE.is_terminal


def test_normalize_label() -> None:
    assert normalize_label("  backend ") == "backend"
    assert normalize_label("   ") is None
    assert normalize_label(None) is None
    with pytest.raises(ValidationError):
        normalize_label("a\nb")
    with pytest.raises(ValidationError):
        normalize_label("x" * 65)


def test_validate_requires_aware_timestamps() -> None:
    task = Task.create("t", now=T0)
    naive = replace(task, updated_at=datetime(2024, 5, 2, 9, 0, 0))
    with pytest.raises(ValidationError, match="timezone-aware"):
        naive.validate()


def test_validate_timestamp_ordering() -> None:
    task = Task.create("t", now=T0)
    with pytest.raises(ValidationError):
        replace(task, updated_at=T0 - timedelta(seconds=1)).validate()


def test_validate_status_dependent_fields() -> None:
    task = Task.create("t", now=T0)
    with pytest.raises(ValidationError, match="started_at"):
        replace(task, status=TaskStatus.ACTIVE).validate()
    with pytest.raises(ValidationError, match="completed_at"):
        replace(task, status=TaskStatus.DONE).validate()
    with pytest.raises(ValidationError, match="non-negative"):
        replace(task, time_spent=-1.0).validate()

    replace(task, status=TaskStatus.ACTIVE, started_at=T0).validate()
    replace(task, status=TaskStatus.DONE, completed_at=T0).validate()
