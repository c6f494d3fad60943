# src/gitask/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The task store and state machine depend on Protocols instead of GitRepo
directly. This keeps the version-control layer swappable and makes testing
easier (see tests/fakes.py).
"""

from collections.abc import Callable, Iterable, Iterator
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..tasks.task_models import Task
    from ..vcs.auth import Credentials

Clock = Callable[[], datetime]


class Stager(Protocol):
    """Records paths for the next commit (git index)."""

    def stage(self, paths: Iterable[str | Path]) -> None: ...


class Committer(Protocol):
    def commit(self, message: str) -> str | None: ...


class TaskRepo(Protocol):
    """What the state machine needs from the file store."""

    def get(self, task_id: str) -> Task: ...
    def put(self, task: Task) -> Path: ...
    def delete(self, task_id: str) -> Path: ...
    def list(self) -> Iterator[Task]: ...


class CredentialPrompt(Protocol):
    """
    Last-resort credential source supplied by the UI layer.

    Return None to decline; the core never reads the terminal itself.
    """

    def __call__(self, url: str) -> Credentials | None: ...


def local_now() -> datetime:
    """Default clock: timezone-aware local time."""
    return datetime.now().astimezone()
