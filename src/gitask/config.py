# src/gitask/config.py

"""Centralized settings loaded from environment variables, an optional TOML file and .env.

Precedence (highest first):
- GITASK_* environment variables (a local .env is loaded into the environment),
- the TOML config file (GITASK_CONFIG_FILE, default ~/.config/gitask/config.toml),
- built-in defaults.

Config file layout:

    [path]   root_dir, tasks_subdir
    [git]    remote, branch, username, password, ssh_keys, author_name,
             author_email, timeout_seconds
    [sync]   merge_strategy, max_retries, retry_backoff_seconds
    [log]    dir, level
    [task]   scopes, types, fuzzy_threshold
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .errors import ValidationError
from .sync.resolver import MergeStrategy

logger = logging.getLogger(__name__)

ENV_PREFIX = "GITASK"

DEFAULT_CONFIG_FILE = Path("~/.config/gitask/config.toml")
DEFAULT_TASK_SCOPES = ("other",)
DEFAULT_TASK_TYPES = ("build", "chore", "ci", "docs", "style", "refactor", "perf", "test")


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return default


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


# ---- config file ----


def load_config_file(path: Path) -> dict[str, Any]:
    """Read the TOML config; a missing file is an empty config."""
    path = path.expanduser()
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except FileNotFoundError:
        return {}
    except OSError as e:
        raise ValidationError(f"Cannot read config file {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValidationError(f"Invalid config file {path}: {e}") from e
    logger.debug("Loaded config file %s", path)
    return data


def _file_value(cfg: dict[str, Any], section: str, key: str, default: Any) -> Any:
    table = cfg.get(section)
    if not isinstance(table, dict):
        return default
    value = table.get(key, default)
    return default if value is None else value


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- Paths ----
    root_dir: Path
    tasks_subdir: str
    config_file: Path

    # ---- Logging ----
    log_dir: Path
    log_level: str

    # ---- Git ----
    git_remote: str
    git_branch: str
    git_username: str
    git_password: str = field(repr=False)
    ssh_key_paths: list[Path] = field(default_factory=list)
    author_name: str = "gitask"
    author_email: str = "gitask@auto.commit"
    git_timeout_seconds: float = 60.0

    # ---- Sync ----
    merge_strategy: MergeStrategy = MergeStrategy.FIELD
    sync_max_retries: int = 3
    sync_retry_backoff_seconds: float = 1.0

    # ---- Tasks ----
    fuzzy_threshold: float = 0.6
    task_scopes: list[str] = field(default_factory=lambda: list(DEFAULT_TASK_SCOPES))
    task_types: list[str] = field(default_factory=lambda: list(DEFAULT_TASK_TYPES))

    @property
    def tasks_dir(self) -> Path:
        return self.root_dir / self.tasks_subdir

    @staticmethod
    def from_env(config_file: Path | None = None) -> Settings:
        config_file = config_file or _env_path(_k("CONFIG_FILE"), DEFAULT_CONFIG_FILE.expanduser())
        cfg = load_config_file(config_file)

        def f(section: str, key: str, default: Any) -> Any:
            return _file_value(cfg, section, key, default)

        root_dir = _env_path(_k("ROOT_DIR"), Path(str(f("path", "root_dir", "~/.gitask"))).expanduser())
        tasks_subdir = _env(_k("TASKS_SUBDIR"), str(f("path", "tasks_subdir", "tasks")))

        log_dir = _env_path(_k("LOG_DIR"), Path(str(f("log", "dir", root_dir / ".logs"))).expanduser())
        log_level = _env(_k("LOG_LEVEL"), str(f("log", "level", "INFO"))).upper()

        git_remote = _env(_k("GIT_REMOTE"), str(f("git", "remote", "origin")))
        git_branch = _env(_k("GIT_BRANCH"), str(f("git", "branch", "main")))
        git_username = _env(_k("GIT_USERNAME"), str(f("git", "username", "")))
        git_password = _env(_k("GIT_PASSWORD"), str(f("git", "password", "")))
        ssh_keys = _env_list(_k("SSH_KEYS"), [str(p) for p in f("git", "ssh_keys", [])])
        author_name = _env(_k("AUTHOR_NAME"), str(f("git", "author_name", "gitask")))
        author_email = _env(_k("AUTHOR_EMAIL"), str(f("git", "author_email", "gitask@auto.commit")))
        git_timeout_seconds = _env_float(_k("GIT_TIMEOUT_SECONDS"), float(f("git", "timeout_seconds", 60.0)))

        raw_strategy = _env(_k("MERGE_STRATEGY"), str(f("sync", "merge_strategy", MergeStrategy.FIELD.value)))
        try:
            merge_strategy = MergeStrategy(raw_strategy.strip().lower())
        except ValueError:
            raise ValidationError(
                f"Unknown merge strategy {raw_strategy!r} (expected one of: "
                f"{', '.join(s.value for s in MergeStrategy)})"
            ) from None
        sync_max_retries = _env_int(_k("SYNC_MAX_RETRIES"), int(f("sync", "max_retries", 3)))
        sync_retry_backoff_seconds = _env_float(
            _k("SYNC_RETRY_BACKOFF_SECONDS"),
            float(f("sync", "retry_backoff_seconds", 1.0)),
        )

        fuzzy_threshold = _env_float(_k("FUZZY_THRESHOLD"), float(f("task", "fuzzy_threshold", 0.6)))
        task_scopes = _env_list(_k("TASK_SCOPES"), [str(s) for s in f("task", "scopes", DEFAULT_TASK_SCOPES)])
        task_types = _env_list(_k("TASK_TYPES"), [str(t) for t in f("task", "types", DEFAULT_TASK_TYPES)])

        return Settings(
            root_dir=root_dir,
            tasks_subdir=tasks_subdir,
            config_file=config_file,
            log_dir=log_dir,
            log_level=log_level,
            git_remote=git_remote,
            git_branch=git_branch,
            git_username=git_username,
            git_password=git_password,
            ssh_key_paths=[Path(p).expanduser() for p in ssh_keys],
            author_name=author_name,
            author_email=author_email,
            git_timeout_seconds=git_timeout_seconds,
            merge_strategy=merge_strategy,
            sync_max_retries=max(1, sync_max_retries),
            sync_retry_backoff_seconds=max(0.0, sync_retry_backoff_seconds),
            fuzzy_threshold=min(1.0, max(0.0, fuzzy_threshold)),
            task_scopes=task_scopes,
            task_types=task_types,
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
