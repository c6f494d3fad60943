# src/gitask/tasks/task_codec.py

"""
TOML codec for task files.

One key per line in a fixed order, so a field edit shows up as a one-line
diff and git can merge edits to different fields of the same task.

Compatibility policy: unknown keys are ignored and dropped on the next write.
"""

from __future__ import annotations

import logging
import tomllib
from datetime import datetime
from typing import Any

import tomli_w

from ..errors import MalformedRecord, ValidationError
from .task_models import Priority, Task, TaskStatus

logger = logging.getLogger(__name__)

FIELD_ORDER = (
    "id",
    "description",
    "priority",
    "scope",
    "task_type",
    "status",
    "created_at",
    "updated_at",
    "completed_at",
    "started_at",
    "time_spent",
)
REQUIRED_FIELDS = frozenset({"id", "description", "priority", "status", "created_at", "updated_at"})


def encode(task: Task) -> bytes:
    data: dict[str, Any] = {
        "id": task.id,
        "description": task.description,
        "priority": task.priority.value,
        "scope": task.scope,
        "task_type": task.task_type,
        "status": task.status.value,
        "created_at": task.created_at,
        "updated_at": task.updated_at,
        "completed_at": task.completed_at,
        "started_at": task.started_at,
        "time_spent": float(task.time_spent),
    }
    # TOML has no null: unset optionals are simply omitted.
    ordered = {k: data[k] for k in FIELD_ORDER if data[k] is not None}
    return tomli_w.dumps(ordered).encode("utf-8")


def decode(data: bytes, *, path: str | None = None) -> Task:
    try:
        raw = tomllib.loads(data.decode("utf-8"))
    except UnicodeDecodeError as e:
        raise MalformedRecord(f"not valid UTF-8: {e}", path=path) from e
    except tomllib.TOMLDecodeError as e:
        raise MalformedRecord(f"invalid TOML: {e}", path=path) from e

    missing = sorted(REQUIRED_FIELDS - raw.keys())
    if missing:
        raise MalformedRecord(f"missing required field(s): {', '.join(missing)}", path=path)

    unknown = sorted(raw.keys() - set(FIELD_ORDER))
    if unknown:
        logger.debug("Ignoring unknown task fields %s in %s", unknown, path or "<bytes>")

    task = Task(
        id=_str(raw, "id", path),
        description=_str(raw, "description", path),
        priority=_enum(Priority, raw, "priority", path),
        scope=_opt_str(raw, "scope", path),
        task_type=_opt_str(raw, "task_type", path),
        status=_enum(TaskStatus, raw, "status", path),
        created_at=_datetime(raw, "created_at", path),
        updated_at=_datetime(raw, "updated_at", path),
        completed_at=_opt_datetime(raw, "completed_at", path),
        started_at=_opt_datetime(raw, "started_at", path),
        time_spent=_number(raw, "time_spent", path),
    )
    try:
        task.validate()
    except ValidationError as e:
        raise MalformedRecord(str(e), path=path) from e
    return task


def _str(raw: dict[str, Any], key: str, path: str | None) -> str:
    value = raw[key]
    if not isinstance(value, str):
        raise MalformedRecord(f"{key} must be a string", path=path)
    return value


def _opt_str(raw: dict[str, Any], key: str, path: str | None) -> str | None:
    if key not in raw:
        return None
    return _str(raw, key, path)


def _enum(enum_cls: type[Priority] | type[TaskStatus], raw: dict[str, Any], key: str, path: str | None):
    value = _str(raw, key, path)
    try:
        return enum_cls(value.strip().lower())
    except ValueError:
        raise MalformedRecord(f"unrecognized {key} {value!r}", path=path) from None


def _datetime(raw: dict[str, Any], key: str, path: str | None) -> datetime:
    value = raw[key]
    if not isinstance(value, datetime):
        raise MalformedRecord(f"{key} must be an offset date-time", path=path)
    if value.tzinfo is None:
        raise MalformedRecord(f"{key} must carry a UTC offset", path=path)
    return value


def _opt_datetime(raw: dict[str, Any], key: str, path: str | None) -> datetime | None:
    if key not in raw:
        return None
    return _datetime(raw, key, path)


def _number(raw: dict[str, Any], key: str, path: str | None) -> float:
    value = raw.get(key, 0.0)
    # bool is an int subclass; reject it explicitly.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedRecord(f"{key} must be a number", path=path)
    return float(value)
