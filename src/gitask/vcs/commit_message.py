# src/gitask/vcs/commit_message.py

"""
Conventional-commit style messages for task mutations.

    <type>(<scope>): <action phrase>

    <task id>

The format is part of the on-disk contract (changelog tools read it), so the
generator is pure and deterministic: no timestamps, no descriptions.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum

DEFAULT_COMMIT_TYPE = "chore"


class CommitAction(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    START = "start"
    STOP = "stop"
    FINISH = "finish"
    ABORT = "abort"
    DELETE = "delete"
    MERGE = "merge"


_ACTION_PHRASES = {
    CommitAction.CREATE: "create task",
    CommitAction.UPDATE: "update task",
    CommitAction.START: "start task",
    CommitAction.STOP: "stop task",
    CommitAction.FINISH: "finish task",
    CommitAction.ABORT: "abort task",
    CommitAction.DELETE: "delete task",
    CommitAction.MERGE: "merge remote changes",
}
_PHRASE_TO_ACTION = {v: k for k, v in _ACTION_PHRASES.items()}

_LABEL_UNSAFE = re.compile(r"[^\w.\-/]+")
_HEADER_RE = re.compile(r"^(?P<type>[^\s():]+)(?:\((?P<scope>[^()]*)\))?: (?P<phrase>.+)$")


@dataclass(frozen=True, slots=True)
class ParsedCommit:
    commit_type: str
    scope: str | None
    action: CommitAction | None
    phrase: str
    task_id: str | None


def _label(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = _LABEL_UNSAFE.sub("-", value.strip()).strip("-")
    return cleaned or None


def generate_commit_message(
    action: CommitAction | str,
    *,
    scope: str | None = None,
    task_type: str | None = None,
    task_id: str | None = None,
) -> str:
    action = CommitAction(action)
    commit_type = _label(task_type) or DEFAULT_COMMIT_TYPE
    scope_label = _label(scope)

    header = f"{commit_type}({scope_label})" if scope_label else commit_type
    header = f"{header}: {_ACTION_PHRASES[action]}"
    if not task_id:
        return header
    return f"{header}\n\n{task_id.strip()}"


def parse_commit_message(message: str) -> ParsedCommit | None:
    """Inverse of generate_commit_message; None for foreign messages."""
    lines = message.strip().splitlines()
    if not lines:
        return None
    m = _HEADER_RE.match(lines[0].strip())
    if not m:
        return None
    body = [ln.strip() for ln in lines[1:] if ln.strip()]
    phrase = m.group("phrase").strip()
    return ParsedCommit(
        commit_type=m.group("type"),
        scope=m.group("scope") or None,
        action=_PHRASE_TO_ACTION.get(phrase),
        phrase=phrase,
        task_id=body[0] if body else None,
    )
