# src/gitask/sync/resolver.py

from __future__ import annotations

"""
Three-way reconciliation of one task record.

Inputs are decoded records (None = absent on that side; base None = the file
was created independently on both sides). resolve() dispatches on the
strategy:

- LOCAL / REMOTE: take that side wholesale, including a deletion.
- FIELD: per field group, take the side that changed relative to the base;
  when both changed and disagree the group is flagged, never guessed.

A flagged Resolution still carries a provisional record (local values for the
flagged groups); apply_choices() turns it into the final one once the caller
picked a side or a concrete value for every flagged group.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from typing import Any

from ..errors import ConflictPending, ValidationError
from ..tasks.state_machine import apply_status
from ..tasks.task_models import Priority, Task, TaskStatus, normalize_label

logger = logging.getLogger(__name__)

RECORD_FIELD = "record"

# status, started_at and completed_at only make sense together.
FIELD_GROUPS: dict[str, tuple[str, ...]] = {
    "description": ("description",),
    "priority": ("priority",),
    "scope": ("scope",),
    "task_type": ("task_type",),
    "status": ("status", "started_at", "completed_at"),
    "time_spent": ("time_spent",),
}


class MergeStrategy(StrEnum):
    LOCAL = "local"
    REMOTE = "remote"
    FIELD = "field"


class Side(StrEnum):
    LOCAL = "local"
    REMOTE = "remote"


@dataclass(frozen=True, slots=True)
class FieldConflict:
    field: str
    base: Any
    local: Any
    remote: Any

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "base": _plain(self.base),
            "local": _plain(self.local),
            "remote": _plain(self.remote),
        }


@dataclass(frozen=True, slots=True)
class Resolution:
    """record None means the reconciled result is a deletion."""

    record: Task | None
    conflicts: tuple[FieldConflict, ...] = field(default_factory=tuple)

    @property
    def manual(self) -> bool:
        return bool(self.conflicts)


def _plain(value: Any) -> Any:
    if isinstance(value, StrEnum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _group(task: Task | None, name: str) -> tuple[Any, ...] | None:
    if task is None:
        return None
    return tuple(getattr(task, attr) for attr in FIELD_GROUPS[name])


def _display(task: Task | None, name: str) -> Any:
    """The value shown to the user for a group (status only for the status group)."""
    if task is None:
        return None
    return getattr(task, FIELD_GROUPS[name][0])


def _copy_group(target: Task, source: Task, name: str) -> Task:
    return replace(target, **{attr: getattr(source, attr) for attr in FIELD_GROUPS[name]})


def _record_state(task: Task | None, base: Task | None) -> str:
    if task is None:
        return "deleted"
    return "unchanged" if task == base else "modified"


# ---- strategies ----


def _resolve_field_level(base: Task | None, local: Task | None, remote: Task | None) -> Resolution:
    if local is None or remote is None:
        survivor = local if local is not None else remote
        if base is None or survivor == base:
            # Created on one side only, or deleted on one side and untouched on the other.
            return Resolution(survivor if base is None else None)
        conflict = FieldConflict(
            RECORD_FIELD,
            base="present",
            local=_record_state(local, base),
            remote=_record_state(remote, base),
        )
        return Resolution(survivor, (conflict,))

    merged = replace(local)
    conflicts: list[FieldConflict] = []
    for name in FIELD_GROUPS:
        b, lv, rv = _group(base, name), _group(local, name), _group(remote, name)
        if lv == rv:
            continue
        local_changed = base is None or lv != b
        remote_changed = base is None or rv != b
        if remote_changed and not local_changed:
            merged = _copy_group(merged, remote, name)
        elif local_changed and not remote_changed:
            continue
        elif name == "status" and local.status == remote.status:
            # Same status reached on both sides: keep the more recent session data.
            if remote.updated_at > local.updated_at:
                merged = _copy_group(merged, remote, name)
        else:
            conflicts.append(
                FieldConflict(name, _display(base, name), _display(local, name), _display(remote, name))
            )

    merged = replace(merged, updated_at=max(local.updated_at, remote.updated_at))
    if not conflicts:
        merged.validate()
    return Resolution(merged, tuple(conflicts))


def resolve(
    strategy: MergeStrategy | str,
    base: Task | None,
    local: Task | None,
    remote: Task | None,
) -> Resolution:
    strategy = MergeStrategy(strategy)
    if local == remote:
        return Resolution(local)
    if strategy == MergeStrategy.LOCAL:
        return Resolution(local)
    if strategy == MergeStrategy.REMOTE:
        return Resolution(remote)
    resolution = _resolve_field_level(base, local, remote)
    if resolution.manual:
        task_id = (local or remote or base).id  # type: ignore[union-attr]
        logger.info(
            "Task %s needs manual resolution: %s",
            task_id,
            ", ".join(c.field for c in resolution.conflicts),
        )
    return resolution


# ---- manual choices ----


def _as_side(choice: Any) -> Side | None:
    if isinstance(choice, Side):
        return choice
    if isinstance(choice, str) and choice.strip().lower() in (Side.LOCAL.value, Side.REMOTE.value):
        return Side(choice.strip().lower())
    return None


def apply_field_choice(
    record: Task,
    name: str,
    choice: Any,
    *,
    local: Task | None,
    remote: Task | None,
    now: datetime,
) -> Task:
    """
    Set one field group of record from a side or a concrete value.

    A status value goes through apply_status so time accounting stays right.
    """
    if name not in FIELD_GROUPS:
        raise ValidationError(f"Unknown field {name!r}")

    side = _as_side(choice)
    if side is not None:
        source = local if side == Side.LOCAL else remote
        if source is None:
            raise ValidationError(f"Task {record.short_id} does not exist on the {side.value} side")
        return _copy_group(record, source, name)

    try:
        if name == "description":
            text = str(choice).strip()
            if not text:
                raise ValidationError("description is required")
            return replace(record, description=text)
        if name == "priority":
            return replace(record, priority=Priority(str(choice).strip().lower()))
        if name in ("scope", "task_type"):
            return replace(record, **{name: normalize_label(choice, name=name)})
        if name == "time_spent":
            seconds = float(choice)
            if seconds < 0:
                raise ValidationError("time_spent must be non-negative")
            return replace(record, time_spent=seconds)
        return apply_status(record, TaskStatus(str(choice).strip().lower()), now)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid value for {name}: {choice!r}") from e


def apply_choices(
    resolution: Resolution,
    base: Task | None,
    local: Task | None,
    remote: Task | None,
    choices: Mapping[str, Any],
    now: datetime,
) -> Task | None:
    """
    Complete a manual resolution.

    choices maps a flagged field to Side.LOCAL / Side.REMOTE or a concrete
    value. For a "record" conflict only a side is accepted (the side that
    deleted wins with a deletion). Missing choices raise ConflictPending.
    """
    if not resolution.manual:
        return resolution.record

    task_id = (local or remote or base).id  # type: ignore[union-attr]
    missing = [c for c in resolution.conflicts if c.field not in choices]
    if missing:
        raise ConflictPending({task_id: missing})

    if any(c.field == RECORD_FIELD for c in resolution.conflicts):
        side = _as_side(choices[RECORD_FIELD])
        if side is None:
            raise ValidationError(f"Choose 'local' or 'remote' for the record of task {task_id}")
        return local if side == Side.LOCAL else remote

    record = resolution.record
    if record is None:
        raise ValidationError(f"Task {task_id} has no provisional record to apply choices to")
    for conflict in resolution.conflicts:
        record = apply_field_choice(
            record, conflict.field, choices[conflict.field], local=local, remote=remote, now=now
        )
    record.validate()
    return record
