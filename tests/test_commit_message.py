# tests/test_commit_message.py

from __future__ import annotations

from gitask.vcs.commit_message import CommitAction, generate_commit_message, parse_commit_message

TID = "0123456789abcdef0123456789abcdef"


def test_full_message_format() -> None:
    msg = generate_commit_message(CommitAction.CREATE, scope="work", task_type="docs", task_id=TID)
    assert msg == f"docs(work): create task\n\n{TID}"


def test_defaults_and_omissions() -> None:
    assert generate_commit_message(CommitAction.FINISH, task_id=TID) == f"chore: finish task\n\n{TID}"
    assert generate_commit_message(CommitAction.MERGE, scope="sync") == "chore(sync): merge remote changes"


def test_deterministic() -> None:
    a = generate_commit_message("start", scope="x", task_id=TID)
    b = generate_commit_message(CommitAction.START, scope="x", task_id=TID)
    assert a == b


def test_labels_are_sanitized_to_one_token() -> None:
    msg = generate_commit_message(CommitAction.UPDATE, scope="my scope (x)", task_type="bug fix", task_id=TID)
    header = msg.splitlines()[0]
    assert header == "bug-fix(my-scope-x): update task"


def test_parse_reverses_generate() -> None:
    msg = generate_commit_message(CommitAction.ABORT, scope="home", task_type="chore", task_id=TID)
    parsed = parse_commit_message(msg)

    assert parsed is not None
    assert parsed.commit_type == "chore"
    assert parsed.scope == "home"
    assert parsed.action == CommitAction.ABORT
    assert parsed.task_id == TID


def test_parse_foreign_messages() -> None:
    assert parse_commit_message("") is None
    assert parse_commit_message("Initial commit") is None

    parsed = parse_commit_message("feat: something else")
    assert parsed is not None and parsed.action is None and parsed.task_id is None
