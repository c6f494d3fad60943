# src/gitask/bootstrap.py

"""
Composition root.

- loads settings once (or takes injected ones, which keeps tests free of
  hidden global config reads),
- wires GitRepo + FileStore + TaskManager together,
- optionally configures logging.

Nothing here touches the filesystem beyond logging: the repository itself is
created lazily by TaskManager on the first mutation.
"""

from __future__ import annotations

import logging

from .config import Settings, get_settings
from .core.ports import Clock, CredentialPrompt, local_now
from .logging_setup import setup_logging
from .tasks.task_api import TaskManager
from .tasks.task_store import FileStore
from .vcs.auth import Credentials, RemotePolicy
from .vcs.git_repo import GitRepo

logger = logging.getLogger(__name__)


def build_remote_policy(settings: Settings, *, prompt: CredentialPrompt | None = None) -> RemotePolicy:
    credentials = None
    if settings.git_username or settings.git_password:
        credentials = Credentials(settings.git_username, settings.git_password)
    return RemotePolicy(
        credentials=credentials,
        ssh_key_paths=tuple(settings.ssh_key_paths),
        prompt=prompt,
        max_retries=settings.sync_max_retries,
        retry_backoff_seconds=settings.sync_retry_backoff_seconds,
    )


def create_task_manager(
    *,
    settings: Settings | None = None,
    prompt: CredentialPrompt | None = None,
    clock: Clock = local_now,
    configure_logging: bool = False,
) -> TaskManager:
    """
    Build a TaskManager from settings.

    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    if configure_logging:
        log_file = setup_logging(log_dir=settings.log_dir, console_level=settings.log_level)
        logger.debug("Logging to %s", log_file)

    repo = GitRepo(
        settings.root_dir,
        author_name=settings.author_name,
        author_email=settings.author_email,
        default_branch=settings.git_branch,
        timeout_seconds=settings.git_timeout_seconds,
        remote_policy=build_remote_policy(settings, prompt=prompt),
    )
    store = FileStore(repo.root / settings.tasks_subdir, repo)
    logger.debug("Task store root=%s tasks=%s", repo.root, store.tasks_dir)

    return TaskManager(
        repo,
        store,
        remote=settings.git_remote,
        branch=settings.git_branch,
        merge_strategy=settings.merge_strategy,
        fuzzy_threshold=settings.fuzzy_threshold,
        task_scopes=settings.task_scopes,
        task_types=settings.task_types,
        clock=clock,
    )
