# tests/test_resolver.py

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from gitask.errors import ConflictPending, ValidationError
from gitask.sync.resolver import (
    RECORD_FIELD,
    MergeStrategy,
    Side,
    apply_choices,
    resolve,
)
from gitask.tasks.task_models import Priority, Task, TaskStatus

from .fakes import T0

LATER = T0 + timedelta(hours=1)
NOW = T0 + timedelta(hours=2)


@pytest.fixture()
def base() -> Task:
    return Task.create("Do laundry", now=T0, task_id="a" * 32, scope="home")


def test_identical_sides_short_circuit(base: Task) -> None:
    changed = replace(base, description="x", updated_at=LATER)
    for strategy in MergeStrategy:
        assert resolve(strategy, base, changed, changed).record == changed


def test_wholesale_strategies(base: Task) -> None:
    local = replace(base, description="local", updated_at=LATER)
    remote = replace(base, priority=Priority.HIGH, updated_at=LATER)

    assert resolve("local", base, local, remote).record == local
    assert resolve(MergeStrategy.REMOTE, base, local, remote).record == remote
    assert resolve(MergeStrategy.REMOTE, base, local, None).record is None


def test_disjoint_field_edits_merge(base: Task) -> None:
    local = replace(base, description="Do laundry tonight", updated_at=LATER)
    remote = replace(base, priority=Priority.HIGH, updated_at=LATER + timedelta(minutes=5))

    res = resolve(MergeStrategy.FIELD, base, local, remote)

    assert not res.manual
    assert res.record is not None
    assert res.record.description == "Do laundry tonight"
    assert res.record.priority == Priority.HIGH
    assert res.record.updated_at == LATER + timedelta(minutes=5)


def test_same_field_edited_differently_is_flagged(base: Task) -> None:
    local = replace(base, description="local text", updated_at=LATER)
    remote = replace(base, description="remote text", updated_at=LATER)

    res = resolve(MergeStrategy.FIELD, base, local, remote)

    assert res.manual
    [conflict] = res.conflicts
    assert conflict.field == "description"
    assert (conflict.base, conflict.local, conflict.remote) == ("Do laundry", "local text", "remote text")
    assert conflict.to_dict()["remote"] == "remote text"

    with pytest.raises(ConflictPending) as ei:
        apply_choices(res, base, local, remote, {}, NOW)
    assert list(ei.value.conflicts) == [base.id]

    picked = apply_choices(res, base, local, remote, {"description": Side.REMOTE}, NOW)
    assert picked is not None and picked.description == "remote text"

    typed = apply_choices(res, base, local, remote, {"description": "  merged text "}, NOW)
    assert typed is not None and typed.description == "merged text"


def test_status_group_moves_as_a_unit(base: Task) -> None:
    local = replace(base, status=TaskStatus.ACTIVE, started_at=LATER, updated_at=LATER)
    remote = replace(base, status=TaskStatus.DONE, completed_at=LATER, updated_at=LATER)

    res = resolve(MergeStrategy.FIELD, base, local, remote)
    [conflict] = res.conflicts
    assert conflict.field == "status"
    assert (conflict.local, conflict.remote) == (TaskStatus.ACTIVE, TaskStatus.DONE)

    chosen = apply_choices(res, base, local, remote, {"status": "remote"}, NOW)
    assert chosen is not None
    assert chosen.status == TaskStatus.DONE
    assert chosen.started_at is None and chosen.completed_at == LATER


def test_status_value_choice_accounts_time(base: Task) -> None:
    local = replace(base, status=TaskStatus.ACTIVE, started_at=LATER, updated_at=LATER)
    remote = replace(base, status=TaskStatus.ABORTED, completed_at=LATER, updated_at=LATER)
    res = resolve(MergeStrategy.FIELD, base, local, remote)

    chosen = apply_choices(res, base, local, remote, {"status": "done"}, NOW)

    assert chosen is not None
    assert chosen.status == TaskStatus.DONE
    assert chosen.completed_at == NOW
    assert chosen.time_spent == pytest.approx(3600)


def test_invalid_value_choice(base: Task) -> None:
    local = replace(base, priority=Priority.LOW, updated_at=LATER)
    remote = replace(base, priority=Priority.HIGH, updated_at=LATER)
    res = resolve(MergeStrategy.FIELD, base, local, remote)

    with pytest.raises(ValidationError):
        apply_choices(res, base, local, remote, {"priority": "whenever"}, NOW)


def test_same_status_on_both_sides_keeps_latest_session(base: Task) -> None:
    local = replace(base, status=TaskStatus.DONE, completed_at=LATER, updated_at=LATER)
    remote = replace(
        base,
        status=TaskStatus.DONE,
        completed_at=LATER + timedelta(minutes=1),
        updated_at=LATER + timedelta(minutes=1),
    )

    res = resolve(MergeStrategy.FIELD, base, local, remote)

    assert not res.manual
    assert res.record is not None and res.record.completed_at == remote.completed_at


def test_created_on_one_side(base: Task) -> None:
    assert resolve(MergeStrategy.FIELD, None, None, base).record == base
    assert resolve(MergeStrategy.FIELD, None, base, None).record == base


def test_deleted_on_one_side_untouched_on_other(base: Task) -> None:
    assert resolve(MergeStrategy.FIELD, base, None, base).record is None
    assert resolve(MergeStrategy.FIELD, base, base, None).record is None


def test_edit_versus_delete_needs_a_side(base: Task) -> None:
    edited = replace(base, description="edited", updated_at=LATER)
    res = resolve(MergeStrategy.FIELD, base, edited, None)

    [conflict] = res.conflicts
    assert conflict.field == RECORD_FIELD
    assert (conflict.local, conflict.remote) == ("modified", "deleted")

    with pytest.raises(ValidationError):
        apply_choices(res, base, edited, None, {RECORD_FIELD: "keep it"}, NOW)
    assert apply_choices(res, base, edited, None, {RECORD_FIELD: "local"}, NOW) == edited
    assert apply_choices(res, base, edited, None, {RECORD_FIELD: Side.REMOTE}, NOW) is None


def test_independent_creations_with_same_id_are_compared_field_by_field(base: Task) -> None:
    other = replace(base, description="another", updated_at=LATER)
    res = resolve(MergeStrategy.FIELD, None, base, other)

    assert [c.field for c in res.conflicts] == ["description"]
