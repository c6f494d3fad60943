# src/gitask/errors.py

"""
Typed errors raised by the task store.

Every public operation either returns a payload or raises one of these.
Callers (CLI/TUI) are expected to catch GitaskError and render the message.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .sync.resolver import FieldConflict
    from .tasks.task_models import Task


class GitaskError(Exception):
    """Base class for all store errors."""


class NotFound(GitaskError):
    def __init__(self, task_id: str, message: str | None = None) -> None:
        super().__init__(message or f"No task found with ID starting with {task_id!r}")
        self.task_id = task_id


class AmbiguousIdentifier(NotFound):
    def __init__(self, task_id: str, matches: list[str]) -> None:
        super().__init__(
            task_id,
            f"Multiple tasks found with ID starting with {task_id!r}: {', '.join(sorted(matches))}",
        )
        self.matches = matches


class ValidationError(GitaskError):
    """Rejected input (empty description, bad label, broken invariant)."""


class InvalidTransition(GitaskError):
    def __init__(self, message: str, *, task_id: str | None = None) -> None:
        super().__init__(message)
        self.task_id = task_id


class ActiveTaskConflict(GitaskError):
    def __init__(self, active_ids: list[str], message: str | None = None) -> None:
        super().__init__(
            message or f"There's already an active task: {', '.join(active_ids)}. Stop it first."
        )
        self.active_ids = active_ids


class MalformedRecord(GitaskError):
    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(f"{path}: {message}" if path else message)
        self.path = path


class StorageIoError(GitaskError):
    """Filesystem or local repository failure."""


class GitCommandError(StorageIoError):
    """A local git command exited non-zero."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str | None = None) -> None:
        super().__init__(message if not stderr else f"{message}: {stderr.strip()}")
        self.returncode = returncode
        self.stderr = stderr


class CommitFailed(StorageIoError):
    """
    The mutation was written and staged but the commit step failed.

    The working tree is the source of truth between commits, so the change is
    not rolled back; `task` carries the applied record.
    """

    def __init__(self, message: str, *, task: Task | None = None) -> None:
        super().__init__(message)
        self.task = task


class AuthenticationFailed(GitaskError):
    def __init__(self, url: str, attempts: list[str]) -> None:
        tried = ", ".join(attempts) if attempts else "none"
        super().__init__(f"Authentication failed for {url} (tried: {tried})")
        self.url = url
        self.attempts = attempts


class SyncFailed(GitaskError):
    def __init__(self, message: str, *, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class SyncSuspended(GitaskError):
    """A merge is waiting for conflict choices; other mutations wait for resolve/abort_sync."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message or "A sync is waiting for conflict resolution. Run resolve or abort_sync first."
        )


class ConflictPending(GitaskError):
    """
    Sync is suspended until the caller supplies field choices.

    `conflicts` maps task id -> ambiguous fields. The merge stays in progress
    on disk; call TaskManager.resolve(choices) to continue.
    """

    def __init__(self, conflicts: dict[str, list[FieldConflict]], *, kind: str = "fields") -> None:
        parts = [f"{tid}: {', '.join(c.field for c in cs)}" for tid, cs in sorted(conflicts.items())]
        super().__init__("Manual conflict resolution required (" + "; ".join(parts) + ")")
        self.conflicts = conflicts
        self.kind = kind

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "conflicts": {tid: [c.to_dict() for c in cs] for tid, cs in self.conflicts.items()},
        }
