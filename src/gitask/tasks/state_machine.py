# src/gitask/tasks/state_machine.py

from __future__ import annotations

"""
Task lifecycle.

    pending --start--> active --stop--> pending
    pending|active --done--> done
    pending|active --abort--> aborted

Rules:
- at most one ACTIVE task per collection,
- leaving ACTIVE adds the elapsed session time to time_spent,
- done/abort on an ACTIVE task stop it implicitly first,
- every rejection happens before anything is written.

The apply_* helpers are pure; TaskStateMachine wires them to the store and
the committer so one transition becomes exactly one commit.
"""

import logging
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime

from ..core.ports import Clock, Committer, TaskRepo, local_now
from ..errors import ActiveTaskConflict, CommitFailed, InvalidTransition, StorageIoError
from ..vcs.commit_message import CommitAction, generate_commit_message
from .task_models import Task, TaskStatus

logger = logging.getLogger(__name__)


# ---- collection helpers ----


def active_tasks(collection: Iterable[Task]) -> list[Task]:
    return [t for t in collection if t.status == TaskStatus.ACTIVE]


def find_active(collection: Iterable[Task]) -> Task | None:
    active = active_tasks(collection)
    if len(active) > 1:
        raise ActiveTaskConflict(sorted(t.id for t in active))
    return active[0] if active else None


def check_can_start(collection: Iterable[Task], task: Task) -> None:
    if task.status != TaskStatus.PENDING:
        raise InvalidTransition(
            f"Task {task.short_id} is {task.status.value}; only pending tasks can be started",
            task_id=task.id,
        )
    others = [t.id for t in active_tasks(collection) if t.id != task.id]
    if others:
        raise ActiveTaskConflict(sorted(others))


def elapsed_seconds(started_at: datetime | None, now: datetime) -> float:
    if started_at is None:
        return 0.0
    return max(0.0, (now - started_at).total_seconds())


# ---- pure transitions ----


def apply_status(task: Task, target: TaskStatus, now: datetime) -> Task:
    """
    Move task to target with the time accounting of a real transition.

    No lifecycle check here: conflict resolution uses it to land on whatever
    status the user picked.
    """
    target = TaskStatus(target)
    if target == task.status:
        return replace(task)

    time_spent = task.time_spent
    started_at = task.started_at
    if task.status == TaskStatus.ACTIVE:
        time_spent += elapsed_seconds(started_at, now)
        started_at = None
    if target == TaskStatus.ACTIVE:
        started_at = now

    completed_at = max(now, task.created_at) if target.is_terminal else None
    return replace(
        task,
        status=target,
        started_at=started_at,
        completed_at=completed_at,
        time_spent=time_spent,
        updated_at=max(task.updated_at, now),
    )


def apply_start(task: Task, now: datetime) -> Task:
    if task.status != TaskStatus.PENDING:
        raise InvalidTransition(
            f"Task {task.short_id} is {task.status.value}; only pending tasks can be started",
            task_id=task.id,
        )
    return apply_status(task, TaskStatus.ACTIVE, now)


def apply_stop(task: Task, now: datetime) -> Task:
    if task.status != TaskStatus.ACTIVE:
        raise InvalidTransition(f"Task {task.short_id} is not active", task_id=task.id)
    return apply_status(task, TaskStatus.PENDING, now)


def apply_done(task: Task, now: datetime) -> Task:
    if task.status.is_terminal:
        raise InvalidTransition(f"Task {task.short_id} is already {task.status.value}", task_id=task.id)
    return apply_status(task, TaskStatus.DONE, now)


def apply_abort(task: Task, now: datetime) -> Task:
    if task.status.is_terminal:
        raise InvalidTransition(f"Task {task.short_id} is already {task.status.value}", task_id=task.id)
    return apply_status(task, TaskStatus.ABORTED, now)


# ---- commit helper ----


def commit_task_change(committer: Committer, action: CommitAction, task: Task) -> str | None:
    """
    Commit whatever the store staged for task.

    The write is already on disk; a failing commit is reported, never rolled back.
    """
    message = generate_commit_message(action, scope=task.scope, task_type=task.task_type, task_id=task.id)
    try:
        sha = committer.commit(message)
    except StorageIoError as e:
        logger.error("Commit failed after %s of task %s: %s", action.value, task.id, e)
        raise CommitFailed(f"Task {task.short_id} was saved but not committed: {e}", task=task) from e
    logger.info("Task %s: %s (commit=%s)", task.short_id, action.value, sha)
    return sha


class TaskStateMachine:
    def __init__(self, store: TaskRepo, committer: Committer, clock: Clock = local_now) -> None:
        self._store = store
        self._committer = committer
        self._clock = clock

    def start(self, task_id: str) -> Task:
        task = self._store.get(task_id)
        check_can_start(self._store.list(), task)
        return self._persist(apply_start(task, self._clock()), CommitAction.START)

    def stop(self, task_id: str | None = None) -> Task:
        active = active_tasks(self._store.list())
        if task_id is None:
            if not active:
                raise InvalidTransition("No active task to stop")
            if len(active) > 1:
                raise ActiveTaskConflict(sorted(t.id for t in active))
            task = active[0]
        else:
            task = self._store.get(task_id)
        return self._persist(apply_stop(task, self._clock()), CommitAction.STOP)

    def done(self, task_id: str) -> Task:
        task = self._store.get(task_id)
        return self._persist(apply_done(task, self._clock()), CommitAction.FINISH)

    def abort(self, task_id: str | None = None) -> Task:
        if task_id is None:
            task = find_active(self._store.list())
            if task is None:
                raise InvalidTransition("No active task to abort")
        else:
            task = self._store.get(task_id)
        return self._persist(apply_abort(task, self._clock()), CommitAction.ABORT)

    def _persist(self, task: Task, action: CommitAction) -> Task:
        self._store.put(task)
        commit_task_change(self._committer, action, task)
        return task
