# tests/fakes.py

from __future__ import annotations

import subprocess
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path

from gitask.errors import GitCommandError
from gitask.vcs.auth import Credentials

T0 = datetime(2024, 5, 1, 9, 0, 0, tzinfo=timezone(timedelta(hours=2)))


class FakeClock:
    """Deterministic, manually advanced clock (callable like local_now)."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@dataclass(slots=True)
class FakeStager:
    staged: list[Path] = field(default_factory=list)

    def stage(self, paths: Iterable[str | Path]) -> None:
        self.staged.extend(Path(p) for p in paths)


@dataclass(slots=True)
class FakeCommitter:
    """
    Records commit messages instead of talking to git.

    Set fail=True to simulate a broken repository.
    """

    messages: list[str] = field(default_factory=list)
    fail: bool = False

    def commit(self, message: str) -> str | None:
        if self.fail:
            raise GitCommandError("git commit failed", 128, "fatal: unable to write new index file")
        self.messages.append(message)
        return f"{len(self.messages):040x}"


@dataclass(slots=True)
class RecordingPrompt:
    """CredentialPrompt that returns canned credentials and remembers the URLs it was asked for."""

    credentials: Credentials | None = None
    asked: list[str] = field(default_factory=list)

    def __call__(self, url: str) -> Credentials | None:
        self.asked.append(url)
        return self.credentials


@dataclass(slots=True)
class ScriptedRunner:
    """
    Stand-in for a remote git command: returns scripted results in order and
    records the environment overlay of every call.
    """

    results: list[subprocess.CompletedProcess | BaseException]
    envs: list[dict[str, str]] = field(default_factory=list)

    def __call__(self, env: Mapping[str, str]) -> subprocess.CompletedProcess:
        self.envs.append(dict(env))
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result


def completed(returncode: int = 0, stderr: str = "", stdout: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=["git"], returncode=returncode, stdout=stdout, stderr=stderr)
