# src/gitask/sync/orchestrator.py

from __future__ import annotations

"""
End-to-end clone / sync.

sync():
1) fetch the configured remote
2) compare histories:
   - up to date / ahead -> push
   - behind             -> fast-forward
   - diverged/unrelated -> merge without committing, reconcile every task file
     touched on both sides with the resolver, check the whole collection for
     more than one ACTIVE task, then commit the merge and push
3) anything that needs a human suspends the sync: the merge stays in
   progress, a small state file remembers where we were, and ConflictPending
   is raised. resume(choices) picks up from there.

The reconciliation is always recomputed from the three commits recorded in
the state file, so resume() is deterministic no matter what the working tree
looks like.
"""

import json
import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path, PurePosixPath
from typing import Any

from ..core.ports import Clock, local_now
from ..errors import ConflictPending, MalformedRecord, StorageIoError, SyncFailed, ValidationError
from ..tasks.state_machine import active_tasks
from ..tasks.task_codec import decode
from ..tasks.task_models import Task, TaskStatus
from ..tasks.task_store import TASK_FILE_SUFFIX, FileStore
from ..vcs.commit_message import CommitAction, generate_commit_message
from ..vcs.git_repo import GitRepo, HistoryRelation
from .resolver import FieldConflict, MergeStrategy, Resolution, apply_choices, apply_field_choice, resolve

logger = logging.getLogger(__name__)

PENDING_STATE_FILE = Path("gitask") / "pending-sync.json"
MERGE_SCOPE = "sync"


class SyncOutcome(StrEnum):
    NO_REMOTE = "no_remote"
    UP_TO_DATE = "up_to_date"
    PUSHED = "pushed"
    FAST_FORWARD = "fast_forward"
    MERGED = "merged"
    CLONED = "cloned"


@dataclass(frozen=True, slots=True)
class SyncReport:
    outcome: SyncOutcome
    head: str | None = None
    reconciled: tuple[str, ...] = ()


@dataclass(slots=True)
class PendingSync:
    """What a suspended merge needs to be finished later."""

    remote: str
    branch: str
    strategy: MergeStrategy
    local_head: str
    remote_head: str
    base: str | None
    task_ids: list[str] = field(default_factory=list)
    # Choices accumulated over resume() calls: {task id: {field: value}}.
    choices: dict[str, dict[str, Any]] = field(default_factory=dict)
    # Clock reading used by every reconciliation of this merge.
    merged_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["strategy"] = self.strategy.value
        data["merged_at"] = self.merged_at.isoformat() if self.merged_at else None
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PendingSync:
        return cls(
            remote=str(data["remote"]),
            branch=str(data["branch"]),
            strategy=MergeStrategy(data["strategy"]),
            local_head=str(data["local_head"]),
            remote_head=str(data["remote_head"]),
            base=data.get("base"),
            task_ids=list(data.get("task_ids") or []),
            choices={k: dict(v) for k, v in (data.get("choices") or {}).items()},
            merged_at=datetime.fromisoformat(data["merged_at"]) if data.get("merged_at") else None,
        )


class SyncOrchestrator:
    def __init__(
        self,
        repo: GitRepo,
        store: FileStore,
        *,
        remote: str = "origin",
        branch: str = "main",
        strategy: MergeStrategy | str = MergeStrategy.FIELD,
        clock: Clock = local_now,
    ) -> None:
        self._repo = repo
        self._store = store
        self._remote = remote
        self._branch = branch
        self._strategy = MergeStrategy(strategy)
        self._clock = clock

    # ---- pending state ----

    @property
    def state_path(self) -> Path:
        return self._repo.git_dir / PENDING_STATE_FILE

    def pending(self) -> PendingSync | None:
        path = self.state_path
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageIoError(f"Cannot read {path}: {e}") from e
        try:
            return PendingSync.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            raise MalformedRecord(f"invalid pending sync state: {e}", path=str(path)) from e

    def _save_pending(self, pending: PendingSync) -> None:
        path = self.state_path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(pending.to_dict(), indent=2, sort_keys=True), encoding="utf-8")
        except OSError as e:
            raise StorageIoError(f"Cannot write {path}: {e}") from e

    def _clear_pending(self) -> None:
        try:
            self.state_path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageIoError(f"Cannot delete {self.state_path}: {e}") from e

    # ---- public API ----

    def clone(self, url: str) -> SyncReport:
        self._repo.clone_from(url)
        head = self._repo.head()
        if self._repo.current_branch() != self._branch:
            remote_head = self._repo.remote_head(self._remote, self._branch)
            if remote_head is not None:
                self._repo.checkout_branch_at(self._branch, remote_head)
                head = remote_head
        self._store.ensure_dir()
        logger.info("Cloned %s (head=%s)", url, head)
        return SyncReport(SyncOutcome.CLONED, head=head)

    def sync(self, strategy: MergeStrategy | str | None = None) -> SyncReport:
        pending = self.pending()
        if pending is not None:
            if self._repo.merge_in_progress():
                # Still waiting for choices: raises again unless everything is settled.
                return self._reconcile(pending)
            logger.warning("Dropping stale pending sync state (merge no longer in progress)")
            self._clear_pending()

        if self._remote not in self._repo.remotes():
            logger.info("No remote %r configured; nothing to sync", self._remote)
            return SyncReport(SyncOutcome.NO_REMOTE, head=self._repo.head())

        strategy = MergeStrategy(strategy or self._strategy)
        self._repo.fetch(self._remote)
        remote_head = self._repo.remote_head(self._remote, self._branch)
        local_head = self._repo.head()

        if remote_head is None:
            if local_head is None:
                return SyncReport(SyncOutcome.UP_TO_DATE)
            self._repo.push(self._remote, self._branch)
            logger.info("Remote branch %s created from local history", self._branch)
            return SyncReport(SyncOutcome.PUSHED, head=local_head)

        if local_head is None:
            self._repo.checkout_branch_at(self._branch, remote_head)
            return SyncReport(SyncOutcome.FAST_FORWARD, head=remote_head)

        relation = self._repo.relation(local_head, remote_head)
        logger.debug("History relation local=%s remote=%s: %s", local_head, remote_head, relation.value)

        if relation == HistoryRelation.UP_TO_DATE:
            return SyncReport(SyncOutcome.UP_TO_DATE, head=local_head)
        if relation == HistoryRelation.AHEAD:
            self._repo.push(self._remote, self._branch)
            return SyncReport(SyncOutcome.PUSHED, head=local_head)
        if relation == HistoryRelation.BEHIND:
            self._repo.fast_forward(remote_head)
            logger.info("Fast-forwarded to %s", remote_head)
            return SyncReport(SyncOutcome.FAST_FORWARD, head=remote_head)

        return self._merge(local_head, remote_head, strategy)

    def resume(self, choices: Mapping[str, Mapping[str, Any]]) -> SyncReport:
        pending = self.pending()
        if pending is None:
            raise ValidationError("No sync is waiting for conflict resolution")
        if not self._repo.merge_in_progress():
            self._clear_pending()
            raise SyncFailed("The suspended merge is gone; run sync again")

        for task_id, fields in choices.items():
            pending.choices.setdefault(task_id, {}).update({k: _plain_choice(v) for k, v in fields.items()})
        # _reconcile persists the choices only once they applied cleanly.
        return self._reconcile(pending)

    def abort(self) -> None:
        self._repo.abort_merge()
        self._clear_pending()
        logger.info("Suspended sync aborted")

    # ---- merge ----

    def _tasks_prefix(self) -> PurePosixPath:
        return PurePosixPath(self._store.tasks_dir.relative_to(self._repo.root).as_posix())

    def _task_id_for(self, path: str) -> str | None:
        p = PurePosixPath(path)
        if p.parent != self._tasks_prefix() or p.suffix != TASK_FILE_SUFFIX:
            return None
        return p.stem

    def _merge(self, local_head: str, remote_head: str, strategy: MergeStrategy) -> SyncReport:
        base = self._repo.merge_base(local_head, remote_head)
        if base is not None:
            touched = self._repo.changed_paths(base, local_head) & self._repo.changed_paths(base, remote_head)
        else:
            touched = self._repo.tree_paths(local_head) & self._repo.tree_paths(remote_head)

        clean = self._repo.merge_no_commit(remote_head, allow_unrelated=base is None)
        conflicted = set() if clean else set(self._repo.conflicted_paths())

        foreign = sorted(p for p in conflicted if self._task_id_for(p) is None)
        if foreign:
            self._repo.abort_merge()
            raise SyncFailed(f"Conflicts outside the task store: {', '.join(foreign)}")

        task_ids = sorted({tid for p in touched | conflicted if (tid := self._task_id_for(p))})
        logger.info(
            "Merging %s into %s: %d task(s) changed on both sides",
            remote_head,
            local_head,
            len(task_ids),
        )
        pending = PendingSync(
            remote=self._remote,
            branch=self._branch,
            strategy=strategy,
            local_head=local_head,
            remote_head=remote_head,
            base=base,
            task_ids=task_ids,
            merged_at=self._clock(),
        )
        try:
            return self._reconcile(pending)
        except (MalformedRecord, StorageIoError):
            self._repo.abort_merge()
            self._clear_pending()
            raise

    def _versions(self, pending: PendingSync, task_id: str) -> tuple[Task | None, Task | None, Task | None]:
        path = self._store.relative_path(task_id)

        def _load(commit: str | None) -> Task | None:
            data = self._repo.show(commit, path)
            if data is None:
                return None
            return decode(data, path=f"{commit[:8] if commit else ''}:{path.as_posix()}")

        return _load(pending.base), _load(pending.local_head), _load(pending.remote_head)

    def _reconcile(self, pending: PendingSync) -> SyncReport:
        now = pending.merged_at or self._clock()
        open_conflicts: dict[str, list[FieldConflict]] = {}
        versions: dict[str, tuple[Task | None, Task | None, Task | None]] = {}

        for task_id in pending.task_ids:
            base, local, remote = versions[task_id] = self._versions(pending, task_id)
            resolution: Resolution = resolve(pending.strategy, base, local, remote)
            try:
                record = apply_choices(resolution, base, local, remote, pending.choices.get(task_id, {}), now)
            except ConflictPending as e:
                open_conflicts.update(e.conflicts)
                # Keep the tree decodable while waiting.
                record = resolution.record
            self._write(task_id, record)

        active_conflicts = self._check_active(pending, versions, now)
        kind = "active" if active_conflicts and not open_conflicts else "fields"
        for task_id, conflicts in active_conflicts.items():
            open_conflicts.setdefault(task_id, []).extend(conflicts)

        if open_conflicts:
            self._save_pending(pending)
            logger.warning("Sync suspended: %d task(s) need manual resolution", len(open_conflicts))
            raise ConflictPending(open_conflicts, kind=kind)

        message = generate_commit_message(CommitAction.MERGE, scope=MERGE_SCOPE)
        head = self._repo.commit_merge(message)
        self._clear_pending()
        logger.info("Merge committed head=%s", head)

        self._repo.push(pending.remote, pending.branch)
        return SyncReport(SyncOutcome.MERGED, head=head, reconciled=tuple(pending.task_ids))

    def _write(self, task_id: str, record: Task | None) -> None:
        if record is None:
            self._store.remove_if_exists(task_id)
        else:
            self._store.put(record)

    def _check_active(
        self,
        pending: PendingSync,
        versions: dict[str, tuple[Task | None, Task | None, Task | None]],
        now: datetime,
    ) -> dict[str, list[FieldConflict]]:
        """
        Two clones may each have started a different task; after the merge the
        collection would hold two ACTIVE tasks. Always flagged, whatever the
        strategy: the user decides which one keeps running.
        """
        active = active_tasks(self._store.list())
        if len(active) <= 1:
            return {}

        remaining: list[Task] = []
        chosen: list[Task] = []
        for task in active:
            choice = pending.choices.get(task.id, {}).get("status")
            if choice is None:
                remaining.append(task)
                continue
            if task.id not in versions:
                versions[task.id] = self._versions(pending, task.id)
            _, local, remote = versions[task.id]
            updated = apply_field_choice(task, "status", choice, local=local, remote=remote, now=now)
            chosen.append(updated)
            if updated.status == TaskStatus.ACTIVE:
                remaining.append(updated)

        # Written only after every choice was accepted.
        for task in chosen:
            self._store.put(task)

        if len(remaining) <= 1:
            return {}

        conflicts: dict[str, list[FieldConflict]] = {}
        for task in remaining:
            if task.id not in versions:
                versions[task.id] = self._versions(pending, task.id)
            base, local, remote = versions[task.id]
            conflicts[task.id] = [
                FieldConflict(
                    "status",
                    base=base.status if base else None,
                    local=local.status if local else None,
                    remote=remote.status if remote else None,
                )
            ]
        logger.info("Competing active tasks after merge: %s", ", ".join(sorted(conflicts)))
        return conflicts


def _plain_choice(value: Any) -> Any:
    """Choices are persisted as JSON."""
    if isinstance(value, StrEnum):
        return value.value
    return value
