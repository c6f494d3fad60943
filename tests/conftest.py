# tests/conftest.py

from __future__ import annotations

import shutil
import subprocess
from collections.abc import Callable
from pathlib import Path
from types import SimpleNamespace

import pytest

from gitask.bootstrap import create_task_manager
from gitask.sync.resolver import MergeStrategy
from gitask.tasks.task_api import TaskManager
from gitask.tasks.task_store import FileStore

from .fakes import FakeClock, FakeCommitter, FakeStager

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available")


@pytest.fixture(autouse=True)
def _isolated_git(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's git config, hooks and agents out of the tests."""
    empty = tmp_path / "gitconfig"
    empty.write_text("", encoding="utf-8")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(empty))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.delenv("SSH_AUTH_SOCK", raising=False)
    monkeypatch.delenv("GIT_SSH_COMMAND", raising=False)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with bootstrap.create_task_manager.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        root_dir=tmp_path / "repo",
        tasks_subdir="tasks",
        log_dir=tmp_path / "logs",
        log_level="DEBUG",
        git_remote="origin",
        git_branch="main",
        git_username="",
        git_password="",
        ssh_key_paths=[],
        author_name="gitask",
        author_email="gitask@auto.commit",
        git_timeout_seconds=30.0,
        merge_strategy=MergeStrategy.FIELD,
        sync_max_retries=2,
        sync_retry_backoff_seconds=0.0,
        fuzzy_threshold=0.6,
        task_scopes=["other"],
        task_types=["chore", "docs"],
    )


@pytest.fixture()
def stager() -> FakeStager:
    return FakeStager()


@pytest.fixture()
def committer() -> FakeCommitter:
    return FakeCommitter()


@pytest.fixture()
def store(tmp_path: Path, stager: FakeStager) -> FileStore:
    return FileStore(tmp_path / "store" / "tasks", stager)


@pytest.fixture()
def bare_remote(tmp_path: Path) -> Path:
    """An empty bare repository whose default branch is main."""
    path = tmp_path / "remote.git"
    subprocess.run(["git", "init", "--bare", "-q", str(path)], check=True, capture_output=True)
    subprocess.run(
        ["git", "symbolic-ref", "HEAD", "refs/heads/main"],
        cwd=path,
        check=True,
        capture_output=True,
    )
    return path


@pytest.fixture()
def make_manager(settings: SimpleNamespace, clock: FakeClock, tmp_path: Path) -> Callable[..., TaskManager]:
    """Factory: a TaskManager rooted at tmp_path/<name>, optionally wired to a remote."""

    def _make(name: str = "repo", *, remote: Path | None = None, strategy: MergeStrategy | None = None) -> TaskManager:
        cfg = SimpleNamespace(**vars(settings))
        cfg.root_dir = tmp_path / name
        if strategy is not None:
            cfg.merge_strategy = strategy
        manager = create_task_manager(settings=cfg, clock=clock)
        if remote is not None:
            manager.repo.init()
            manager.repo.add_remote("origin", str(remote))
        return manager

    return _make
