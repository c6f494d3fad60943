# src/gitask/tasks/task_api.py

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import replace
from typing import Any

from ..core.ports import Clock, local_now
from ..errors import SyncSuspended, ValidationError
from ..sync.orchestrator import PendingSync, SyncOrchestrator, SyncReport
from ..sync.resolver import MergeStrategy
from ..vcs.commit_message import CommitAction
from ..vcs.git_repo import CommitInfo, GitRepo
from .state_machine import TaskStateMachine, commit_task_change
from .task_models import Priority, Task, normalize_label
from .task_query import FilterOptions, SortKey, TaskStats, query
from .task_store import FileStore

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset({"description", "priority", "scope", "task_type"})


class TaskManager:
    """
    Collaborator-facing API (CLI/TUI call this, nothing below it).

    Every call returns a payload or raises a GitaskError subclass. The
    repository is initialized lazily on the first mutation so that a fresh
    root directory can still be used as a clone target.
    """

    def __init__(
        self,
        repo: GitRepo,
        store: FileStore,
        *,
        remote: str = "origin",
        branch: str = "main",
        merge_strategy: MergeStrategy | str = MergeStrategy.FIELD,
        fuzzy_threshold: float | None = None,
        task_scopes: Sequence[str] = (),
        task_types: Sequence[str] = (),
        clock: Clock = local_now,
    ) -> None:
        self._repo = repo
        self._store = store
        self._clock = clock
        self._fuzzy_threshold = fuzzy_threshold
        self._task_scopes = tuple(task_scopes)
        self._task_types = tuple(task_types)
        self._machine = TaskStateMachine(store, repo, clock)
        self._sync = SyncOrchestrator(
            repo,
            store,
            remote=remote,
            branch=branch,
            strategy=merge_strategy,
            clock=clock,
        )

    @property
    def repo(self) -> GitRepo:
        return self._repo

    @property
    def store(self) -> FileStore:
        return self._store

    def _ensure_repo(self) -> None:
        if self._repo.init():
            self._store.ensure_dir()

    def _ensure_writable(self) -> None:
        self._ensure_repo()
        if self._repo.merge_in_progress():
            raise SyncSuspended()

    def _filters(self, filters: FilterOptions | None) -> FilterOptions:
        filters = filters or FilterOptions()
        if self._fuzzy_threshold is not None and filters.fuzzy:
            filters = replace(filters, fuzzy_threshold=self._fuzzy_threshold)
        return filters

    # ---- records ----

    def add(
        self,
        description: str,
        *,
        priority: Priority | str = Priority.NORMAL,
        scope: str | None = None,
        task_type: str | None = None,
    ) -> str:
        try:
            priority = Priority(str(priority).lower())
        except ValueError:
            raise ValidationError(f"Unknown priority {priority!r}") from None

        self._ensure_writable()
        task = Task.create(description, now=self._clock(), priority=priority, scope=scope, task_type=task_type)
        self._store.put(task)
        commit_task_change(self._repo, CommitAction.CREATE, task)
        return task.id

    def get(self, task_id: str) -> Task:
        return self._store.get(task_id)

    def list(self, filters: FilterOptions | None = None, sort: Sequence[SortKey] | None = None) -> list[Task]:
        return query(self._store.list(), self._filters(filters), sort)

    def stats(self, filters: FilterOptions | None = None) -> TaskStats:
        return TaskStats.of(query(self._store.list(), self._filters(filters), ()), now=self._clock())

    def edit(self, task_id: str, **fields: Any) -> Task:
        unknown = sorted(set(fields) - EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot edit field(s): {', '.join(unknown)}")

        self._ensure_writable()
        task = self._store.get(task_id)
        changes: dict[str, Any] = {}
        if "description" in fields:
            text = (fields["description"] or "").strip()
            if not text:
                raise ValidationError("description is required")
            changes["description"] = text
        if "priority" in fields:
            try:
                changes["priority"] = Priority(str(fields["priority"]).lower())
            except ValueError:
                raise ValidationError(f"Unknown priority {fields['priority']!r}") from None
        if "scope" in fields:
            changes["scope"] = normalize_label(fields["scope"], name="scope")
        if "task_type" in fields:
            changes["task_type"] = normalize_label(fields["task_type"], name="type")

        if all(getattr(task, k) == v for k, v in changes.items()):
            logger.debug("Edit of task %s changes nothing", task.id)
            return task

        updated = replace(task, **changes, updated_at=max(task.updated_at, self._clock()))
        updated.validate()
        self._store.put(updated)
        commit_task_change(self._repo, CommitAction.UPDATE, updated)
        return updated

    def clean(self, filters: FilterOptions | None = None) -> list[str]:
        """Delete every task matching filters, one commit per task. Returns the ids."""
        self._ensure_writable()
        removed: list[str] = []
        for task in query(self._store.list(), self._filters(filters), ()):
            self._store.delete(task.id)
            commit_task_change(self._repo, CommitAction.DELETE, task)
            removed.append(task.id)
        logger.info("Cleaned %d task(s)", len(removed))
        return removed

    def labels(self) -> dict[str, list[str]]:
        """Known scopes and types: configured ones plus those in use (for completion)."""
        scopes = set(self._task_scopes)
        types = set(self._task_types)
        for task in self._store.list():
            if task.scope:
                scopes.add(task.scope)
            if task.task_type:
                types.add(task.task_type)
        return {"scopes": sorted(scopes), "types": sorted(types)}

    # ---- lifecycle ----

    def start(self, task_id: str) -> Task:
        self._ensure_writable()
        return self._machine.start(task_id)

    def stop(self, task_id: str | None = None) -> Task:
        self._ensure_writable()
        return self._machine.stop(task_id)

    def done(self, task_id: str) -> Task:
        self._ensure_writable()
        return self._machine.done(task_id)

    def abort(self, task_id: str | None = None) -> Task:
        self._ensure_writable()
        return self._machine.abort(task_id)

    # ---- sync ----

    def clone(self, url: str) -> SyncReport:
        return self._sync.clone(url)

    def sync(self, strategy: MergeStrategy | str | None = None) -> SyncReport:
        self._ensure_repo()
        return self._sync.sync(strategy)

    def resolve(self, choices: Mapping[str, Mapping[str, Any]]) -> SyncReport:
        return self._sync.resume(choices)

    def pending_sync(self) -> PendingSync | None:
        """The suspended sync waiting for choices, if any."""
        return self._sync.pending()

    def abort_sync(self) -> None:
        if self._repo.is_repository():
            self._sync.abort()

    def history(self, limit: int = 20) -> list[CommitInfo]:
        if not self._repo.is_repository():
            return []
        return self._repo.log(limit)
