# src/gitask/tasks/task_models.py

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from ..errors import ValidationError

MAX_LABEL_LENGTH = 64


class Priority(StrEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.LOW: 0,
    Priority.NORMAL: 1,
    Priority.HIGH: 2,
    Priority.URGENT: 3,
}


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    Notes:
    - PENDING is the initial state, DONE and ABORTED are terminal.
    - At most one task per collection may be ACTIVE; that rule lives in
      state_machine.py, not here.
    """

    PENDING = "pending"
    ACTIVE = "active"
    DONE = "done"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.DONE, TaskStatus.ABORTED)

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    TaskStatus.PENDING: 0,
    TaskStatus.ACTIVE: 1,
    TaskStatus.DONE: 2,
    TaskStatus.ABORTED: 3,
}


def new_task_id() -> str:
    """128-bit random identifier, hex encoded (also the file stem on disk)."""
    return uuid.uuid4().hex


def normalize_label(value: str | None, *, name: str = "label") -> str | None:
    if value is None:
        return None
    label = value.strip()
    if not label:
        return None
    if "\n" in label or "\r" in label:
        raise ValidationError(f"{name} must be a single line")
    if len(label) > MAX_LABEL_LENGTH:
        raise ValidationError(f"{name} is longer than {MAX_LABEL_LENGTH} characters")
    return label


@dataclass(slots=True)
class Task:
    id: str
    description: str
    priority: Priority
    scope: str | None
    task_type: str | None
    status: TaskStatus
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    # Start of the current work session; only set while ACTIVE.
    started_at: datetime | None = None
    # Accumulated seconds over all finished work sessions.
    time_spent: float = 0.0

    @classmethod
    def create(
        cls,
        description: str,
        *,
        now: datetime,
        priority: Priority = Priority.NORMAL,
        scope: str | None = None,
        task_type: str | None = None,
        task_id: str | None = None,
    ) -> Task:
        desc = (description or "").strip()
        if not desc:
            raise ValidationError("description is required")
        task = cls(
            id=task_id or new_task_id(),
            description=desc,
            priority=Priority(priority),
            scope=normalize_label(scope, name="scope"),
            task_type=normalize_label(task_type, name="type"),
            status=TaskStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        task.validate()
        return task

    def validate(self) -> None:
        if not self.id or not self.id.strip():
            raise ValidationError("id is required")
        if not self.description or not self.description.strip():
            raise ValidationError("description is required")

        for name in ("created_at", "updated_at", "completed_at", "started_at"):
            value = getattr(self, name)
            if value is not None and value.tzinfo is None:
                raise ValidationError(f"{name} must be timezone-aware")

        if self.updated_at < self.created_at:
            raise ValidationError("updated_at precedes created_at")
        if self.completed_at is not None and self.completed_at < self.created_at:
            raise ValidationError("completed_at precedes created_at")
        if self.time_spent < 0:
            raise ValidationError("time_spent must be non-negative")

        if (self.status == TaskStatus.ACTIVE) != (self.started_at is not None):
            raise ValidationError("started_at must be set exactly when the task is active")
        if self.status.is_terminal != (self.completed_at is not None):
            raise ValidationError("completed_at must be set exactly when the task is finished")

    @property
    def short_id(self) -> str:
        return self.id[:8]
