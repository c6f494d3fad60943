# src/gitask/vcs/auth.py

"""
Authentication and retry policy for remote git operations.

Strategies are tried in order; each one is just an environment overlay for the
git subprocess:
- explicit credentials from configuration (HTTP(S) remotes),
- SSH agent, then each discovered SSH key file (SSH remotes),
- ambient git configuration (credential helpers, local remotes),
- the interactive prompt callback, as a last resort.

A failure is classified from git's stderr:
- AUTH      -> fall through to the next strategy (never retried as-is)
- TRANSIENT -> retried with linear backoff, then SyncFailed
- FATAL     -> SyncFailed immediately
"""

from __future__ import annotations

import base64
import logging
import os
import re
import subprocess
import time
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TypeVar

from ..core.ports import CredentialPrompt
from ..errors import AuthenticationFailed, SyncFailed

logger = logging.getLogger(__name__)

DEFAULT_SSH_KEY_NAMES = ("id_ed25519", "id_rsa", "id_ecdsa", "id_dsa", "github_rsa")

# Never let git or ssh block on a terminal.
NON_INTERACTIVE_ENV = {
    "GIT_TERMINAL_PROMPT": "0",
    "GIT_ASKPASS": "",
    "SSH_ASKPASS": "",
}

_AUTH_PATTERNS: tuple[str, ...] = (
    "authentication failed",
    "permission denied (publickey",
    "could not read username",
    "could not read password",
    "terminal prompts disabled",
    "invalid username or password",
    "invalid credentials",
    "http basic: access denied",
    "the requested url returned error: 401",
    "the requested url returned error: 403",
    "access denied",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "could not resolve host",
    "could not resolve hostname",
    "temporary failure in name resolution",
    "connection timed out",
    "operation timed out",
    "connection refused",
    "connection reset",
    "network is unreachable",
    "early eof",
    "the remote end hung up unexpectedly",
    "rpc failed",
    "the requested url returned error: 429",
    "the requested url returned error: 502",
    "the requested url returned error: 503",
    "the requested url returned error: 504",
)

_SCP_LIKE_RE = re.compile(r"^[\w.\-]+@[\w.\-]+:(?!//)")


class FailureKind(StrEnum):
    AUTH = "auth"
    TRANSIENT = "transient"
    FATAL = "fatal"


@dataclass(frozen=True, slots=True)
class GitFailure:
    kind: FailureKind
    matched_pattern: str | None


@dataclass(frozen=True, slots=True)
class Credentials:
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class AuthAttempt:
    name: str
    env: Mapping[str, str] = field(default_factory=dict, repr=False)


@dataclass(slots=True)
class RemotePolicy:
    """How remote commands authenticate and retry."""

    credentials: Credentials | None = None
    ssh_key_paths: Sequence[Path] = ()
    prompt: CredentialPrompt | None = None
    max_retries: int = 3
    retry_backoff_seconds: float = 1.0
    sleep: Callable[[float], None] = time.sleep
    environ: Mapping[str, str] | None = None
    home: Path | None = None


def classify_git_failure(stderr: str, stdout: str = "") -> GitFailure:
    haystack = f"{stderr}\n{stdout}".lower()
    for pattern in _AUTH_PATTERNS:
        if pattern in haystack:
            return GitFailure(FailureKind.AUTH, pattern)
    for pattern in _TRANSIENT_PATTERNS:
        if pattern in haystack:
            return GitFailure(FailureKind.TRANSIENT, pattern)
    return GitFailure(FailureKind.FATAL, None)


# ---- URL kinds ----


def is_http_url(url: str) -> bool:
    return url.lower().startswith(("http://", "https://"))


def is_ssh_url(url: str) -> bool:
    lowered = url.lower()
    return lowered.startswith(("ssh://", "git+ssh://")) or bool(_SCP_LIKE_RE.match(url))


def is_local_url(url: str) -> bool:
    return url.lower().startswith("file://") or not (
        is_http_url(url) or is_ssh_url(url) or "://" in url
    )


# ---- strategies ----


def basic_auth_attempt(name: str, credentials: Credentials) -> AuthAttempt:
    """
    Send credentials as an HTTP Authorization header.

    Passed through GIT_CONFIG_* variables so the secret never shows up in argv.
    """
    token = base64.b64encode(f"{credentials.username}:{credentials.password}".encode()).decode("ascii")
    return AuthAttempt(
        name=name,
        env={
            "GIT_CONFIG_COUNT": "1",
            "GIT_CONFIG_KEY_0": "http.extraHeader",
            "GIT_CONFIG_VALUE_0": f"Authorization: Basic {token}",
        },
    )


def ssh_attempt(name: str, key_path: Path | None = None) -> AuthAttempt:
    cmd = "ssh -o BatchMode=yes"
    if key_path is not None:
        cmd += f" -o IdentitiesOnly=yes -i '{key_path}'"
    return AuthAttempt(name=name, env={"GIT_SSH_COMMAND": cmd})


def discover_ssh_keys(configured: Sequence[Path], home: Path | None) -> list[Path]:
    candidates = [Path(p).expanduser() for p in configured]
    if not candidates and home is not None:
        candidates = [home / ".ssh" / name for name in DEFAULT_SSH_KEY_NAMES]
    return [p for p in candidates if p.is_file()]


def iter_auth_attempts(url: str, policy: RemotePolicy) -> Iterator[AuthAttempt]:
    """Yield strategies lazily so the prompt only runs when everything else failed."""
    environ = os.environ if policy.environ is None else policy.environ

    if is_local_url(url):
        yield AuthAttempt("local")
        return

    if is_http_url(url) and policy.credentials is not None and policy.credentials.password:
        yield basic_auth_attempt("config-credentials", policy.credentials)

    if is_ssh_url(url):
        if environ.get("SSH_AUTH_SOCK"):
            yield ssh_attempt("ssh-agent")
        home = policy.home if policy.home is not None else Path(environ.get("HOME", "~")).expanduser()
        for key in discover_ssh_keys(policy.ssh_key_paths, home):
            yield ssh_attempt(f"ssh-key:{key.name}", key)

    default_env: dict[str, str] = {}
    if is_ssh_url(url) and "GIT_SSH_COMMAND" not in environ:
        default_env["GIT_SSH_COMMAND"] = "ssh -o BatchMode=yes"
    yield AuthAttempt("default", default_env)

    if policy.prompt is not None and is_http_url(url):
        creds = policy.prompt(url)
        if creds is not None:
            yield basic_auth_attempt("prompt", creds)
        else:
            logger.debug("Credential prompt declined for %s", url)


# ---- runner ----

R = TypeVar("R", bound=subprocess.CompletedProcess)


def run_with_auth(
    url: str,
    policy: RemotePolicy,
    run: Callable[[Mapping[str, str]], R],
    *,
    operation: str,
) -> R:
    """
    Run a remote git command under each strategy until one succeeds.

    `run` receives the env overlay and returns a CompletedProcess; it may raise
    subprocess.TimeoutExpired, which counts as a transient failure.
    """
    tried: list[str] = []
    total_attempts = 0
    max_retries = max(1, int(policy.max_retries))

    for attempt in iter_auth_attempts(url, policy):
        tried.append(attempt.name)
        env = {**NON_INTERACTIVE_ENV, **attempt.env}
        tries = 0
        while True:
            tries += 1
            total_attempts += 1
            try:
                result = run(env)
            except subprocess.TimeoutExpired:
                logger.warning("%s timed out (strategy=%s try=%s)", operation, attempt.name, tries)
                failure = GitFailure(FailureKind.TRANSIENT, "timeout")
                stderr = "timed out"
            else:
                if result.returncode == 0:
                    logger.debug("%s succeeded strategy=%s try=%s", operation, attempt.name, tries)
                    return result
                stderr = result.stderr or ""
                failure = classify_git_failure(stderr, result.stdout or "")

            if failure.kind == FailureKind.AUTH:
                logger.info("%s: authentication with %s failed, trying next strategy", operation, attempt.name)
                break

            if failure.kind == FailureKind.FATAL:
                raise SyncFailed(f"{operation} failed: {stderr.strip()}", attempts=total_attempts)

            if tries >= max_retries:
                raise SyncFailed(
                    f"{operation} failed after {tries} attempts: {stderr.strip()}",
                    attempts=total_attempts,
                )
            backoff = float(policy.retry_backoff_seconds) * tries
            logger.warning(
                "%s: transient failure (%s), retrying in %.1fs", operation, failure.matched_pattern, backoff
            )
            policy.sleep(backoff)

    raise AuthenticationFailed(url, tried)
