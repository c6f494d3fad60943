# src/gitask/vcs/git_repo.py

"""
Thin adapter over the `git` executable.

The adapter exclusively owns the history: the file store only asks it to
stage paths, and the state machine / sync orchestrator decide when to commit.
Local command failures raise GitCommandError; remote commands go through
auth.run_with_auth (strategy fallthrough + bounded retries).
"""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from ..errors import GitCommandError, StorageIoError
from .auth import RemotePolicy, run_with_auth
from .commit_message import ParsedCommit, parse_commit_message

logger = logging.getLogger(__name__)

DEFAULT_AUTHOR_NAME = "gitask"
DEFAULT_AUTHOR_EMAIL = "gitask@auto.commit"


class HistoryRelation(StrEnum):
    UP_TO_DATE = "up_to_date"
    AHEAD = "ahead"  # local contains remote
    BEHIND = "behind"  # remote contains local: fast-forward
    DIVERGED = "diverged"  # common ancestor, neither contains the other
    UNRELATED = "unrelated"  # no common ancestor


@dataclass(frozen=True, slots=True)
class CommitInfo:
    sha: str
    parents: tuple[str, ...]
    subject: str
    body: str

    @property
    def message(self) -> str:
        return f"{self.subject}\n\n{self.body}".strip() if self.body else self.subject

    @property
    def is_merge(self) -> bool:
        return len(self.parents) > 1

    @property
    def parsed(self) -> ParsedCommit | None:
        return parse_commit_message(self.message)


class GitRepo:
    def __init__(
        self,
        root: str | Path,
        *,
        author_name: str = DEFAULT_AUTHOR_NAME,
        author_email: str = DEFAULT_AUTHOR_EMAIL,
        default_branch: str = "main",
        timeout_seconds: float = 60.0,
        remote_policy: RemotePolicy | None = None,
    ) -> None:
        self._root = Path(root).expanduser().absolute()
        self._author_name = author_name
        self._author_email = author_email
        self._default_branch = default_branch
        self._timeout = float(timeout_seconds)
        self.remote_policy = remote_policy or RemotePolicy()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def git_dir(self) -> Path:
        return self._root / ".git"

    # ---- low-level helpers ----

    def _base_env(self, extra: Mapping[str, str] | None = None) -> dict[str, str]:
        env = dict(os.environ)
        # Stable, English stderr: failure classification matches on it.
        env["LC_ALL"] = "C"
        env["GIT_TERMINAL_PROMPT"] = "0"
        if extra:
            env.update(extra)
        return env

    def _exec(
        self,
        args: Iterable[str],
        *,
        env: Mapping[str, str] | None = None,
        text: bool = True,
        cwd: Path | None = None,
    ) -> subprocess.CompletedProcess:
        cmd = ["git", *args]
        logger.debug("git %s", " ".join(cmd[1:]))
        return subprocess.run(
            cmd,
            cwd=cwd or self._root,
            capture_output=True,
            text=text,
            stdin=subprocess.DEVNULL,
            env=self._base_env(env),
            timeout=self._timeout,
        )

    def _run_git(
        self,
        *args: str,
        check: bool = True,
        text: bool = True,
        env: Mapping[str, str] | None = None,
    ) -> subprocess.CompletedProcess:
        """Run a local git command; raise GitCommandError on failure when check=True."""
        try:
            result = self._exec(args, env=env, text=text)
        except subprocess.TimeoutExpired as e:
            raise GitCommandError(f"git {' '.join(args)} timed out after {self._timeout}s") from e
        except OSError as e:
            raise GitCommandError(f"Cannot run git: {e}") from e
        if check and result.returncode != 0:
            stderr = result.stderr if text else result.stderr.decode("utf-8", "replace")
            raise GitCommandError(f"git {' '.join(args)} failed", result.returncode, stderr)
        return result

    def _author_args(self) -> list[str]:
        return [
            "-c",
            f"user.name={self._author_name}",
            "-c",
            f"user.email={self._author_email}",
            "-c",
            "commit.gpgsign=false",
        ]

    def _relative(self, path: str | Path) -> str:
        p = Path(path)
        if p.is_absolute():
            try:
                p = p.relative_to(self._root)
            except ValueError:
                p = Path(os.path.relpath(p, self._root))
        return p.as_posix()

    # ---- repository lifecycle ----

    def is_repository(self) -> bool:
        return self.git_dir.exists()

    def init(self) -> bool:
        """Create the repository if missing. Returns True when a new one was created."""
        if self.is_repository():
            return False
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIoError(f"Cannot create {self._root}: {e}") from e
        self._run_git("init", "-q")
        self._run_git("symbolic-ref", "HEAD", f"refs/heads/{self._default_branch}")
        logger.info("Initialized task repository at %s", self._root)
        return True

    @classmethod
    def clone(cls, url: str, destination: str | Path, **kwargs) -> GitRepo:
        repo = cls(destination, **kwargs)
        repo.clone_from(url)
        return repo

    def clone_from(self, url: str) -> None:
        """Clone url into root; root must be missing or empty."""
        dest = self._root
        if dest.exists() and any(dest.iterdir()):
            raise StorageIoError(f"The target directory already exists and is not empty: {dest}")
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIoError(f"Cannot create {dest.parent}: {e}") from e

        logger.info("Cloning %s to %s", url, dest)
        run_with_auth(
            url,
            self.remote_policy,
            lambda env: self._exec(["clone", "--quiet", url, str(dest)], env=env, cwd=dest.parent),
            operation=f"clone {url}",
        )
        if self.head() is None:
            # Empty remote: make sure the first commit lands on our branch.
            self._run_git("symbolic-ref", "HEAD", f"refs/heads/{self._default_branch}")
        logger.info("Successfully cloned repository")

    # ---- index / commits ----

    def stage(self, paths: Iterable[str | Path]) -> None:
        rel = [self._relative(p) for p in paths]
        if not rel:
            return
        self._run_git("add", "-A", "--", *rel)

    def has_staged_changes(self) -> bool:
        result = self._run_git("diff", "--cached", "--quiet", check=False)
        if result.returncode not in (0, 1):
            raise GitCommandError("git diff --cached failed", result.returncode, result.stderr)
        return result.returncode == 1

    def commit(self, message: str) -> str | None:
        """
        Commit the index. Returns the new commit id, or None when nothing is staged.

        Refuses while a merge is in progress: only commit_merge() may conclude it.
        """
        if self.merge_in_progress():
            raise StorageIoError("A merge is in progress; refusing to commit it as a task change")
        if not self.has_staged_changes():
            logger.debug("Nothing staged; skipping commit")
            return None
        return self._commit_index(message)

    def commit_merge(self, message: str) -> str | None:
        """Conclude the in-progress merge with message."""
        if not self.merge_in_progress():
            raise StorageIoError("No merge in progress")
        return self._commit_index(message)

    def _commit_index(self, message: str) -> str | None:
        self._run_git(*self._author_args(), "commit", "-q", "--no-verify", "-m", message)
        sha = self.head()
        logger.debug("Created commit: %s", sha)
        return sha

    def head(self) -> str | None:
        result = self._run_git("rev-parse", "--verify", "-q", "HEAD^{commit}", check=False)
        return result.stdout.strip() if result.returncode == 0 else None

    def current_branch(self) -> str:
        result = self._run_git("symbolic-ref", "--short", "-q", "HEAD", check=False)
        name = result.stdout.strip()
        return name or self._default_branch

    def log(self, limit: int = 20) -> list[CommitInfo]:
        if self.head() is None:
            return []
        out = self._run_git("log", f"-n{int(limit)}", "--format=%H%x00%P%x00%s%x00%b%x1e").stdout
        commits: list[CommitInfo] = []
        for chunk in out.split("\x1e"):
            chunk = chunk.strip("\n")
            if not chunk:
                continue
            sha, parents, subject, body = chunk.split("\x00", 3)
            commits.append(
                CommitInfo(
                    sha=sha,
                    parents=tuple(parents.split()),
                    subject=subject,
                    body=body.strip(),
                )
            )
        return commits

    # ---- remotes ----

    def remotes(self) -> list[str]:
        out = self._run_git("remote").stdout
        return [ln.strip() for ln in out.splitlines() if ln.strip()]

    def remote_url(self, remote: str) -> str | None:
        result = self._run_git("remote", "get-url", remote, check=False)
        return result.stdout.strip() if result.returncode == 0 else None

    def add_remote(self, remote: str, url: str) -> None:
        self._run_git("remote", "add", remote, url)

    def fetch(self, remote: str) -> None:
        url = self.remote_url(remote)
        if url is None:
            raise GitCommandError(f"No remote named {remote!r} found")
        logger.debug("Fetching from remote '%s'", remote)
        run_with_auth(
            url,
            self.remote_policy,
            lambda env: self._exec(["fetch", "--prune", "--quiet", remote], env=env),
            operation=f"fetch {remote}",
        )

    def push(self, remote: str, branch: str) -> None:
        url = self.remote_url(remote)
        if url is None:
            raise GitCommandError(f"No remote named {remote!r} found")
        logger.debug("Pushing %s to remote '%s'", branch, remote)
        refspec = f"refs/heads/{branch}:refs/heads/{branch}"
        run_with_auth(
            url,
            self.remote_policy,
            lambda env: self._exec(["push", "--quiet", "--set-upstream", remote, refspec], env=env),
            operation=f"push {remote}",
        )

    def remote_head(self, remote: str, branch: str) -> str | None:
        result = self._run_git(
            "rev-parse", "--verify", "-q", f"refs/remotes/{remote}/{branch}^{{commit}}", check=False
        )
        return result.stdout.strip() if result.returncode == 0 else None

    # ---- history comparison ----

    def merge_base(self, a: str, b: str) -> str | None:
        result = self._run_git("merge-base", a, b, check=False)
        return result.stdout.strip() if result.returncode == 0 and result.stdout.strip() else None

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        result = self._run_git("merge-base", "--is-ancestor", ancestor, descendant, check=False)
        if result.returncode not in (0, 1):
            raise GitCommandError("git merge-base --is-ancestor failed", result.returncode, result.stderr)
        return result.returncode == 0

    def relation(self, local: str, remote: str) -> HistoryRelation:
        if local == remote:
            return HistoryRelation.UP_TO_DATE
        if self.is_ancestor(remote, local):
            return HistoryRelation.AHEAD
        if self.is_ancestor(local, remote):
            return HistoryRelation.BEHIND
        if self.merge_base(local, remote) is None:
            return HistoryRelation.UNRELATED
        return HistoryRelation.DIVERGED

    def changed_paths(self, a: str, b: str) -> set[str]:
        out = self._run_git("diff", "--name-only", "--no-renames", "-z", a, b).stdout
        return {p for p in out.split("\x00") if p}

    def tree_paths(self, commit: str) -> set[str]:
        out = self._run_git("ls-tree", "-r", "--name-only", "-z", commit).stdout
        return {p for p in out.split("\x00") if p}

    # ---- merging ----

    def fast_forward(self, commit: str) -> None:
        self._run_git("merge", "--ff-only", "-q", commit)

    def checkout_branch_at(self, branch: str, commit: str) -> None:
        """Point a (possibly unborn) branch at commit and check it out."""
        self._run_git("checkout", "-q", "-B", branch, commit)

    def merge_no_commit(self, commit: str, *, allow_unrelated: bool = False) -> bool:
        """
        Start a merge without committing.

        Returns True when git merged cleanly, False when conflicts are left in
        the index for the caller to resolve.
        """
        args = [*self._author_args(), "merge", "--no-ff", "--no-commit", "-q"]
        if allow_unrelated:
            args.append("--allow-unrelated-histories")
        result = self._run_git(*args, commit, check=False)
        if result.returncode == 0:
            return True
        if self.merge_in_progress() and self.conflicted_paths():
            return False
        raise GitCommandError(f"git merge {commit} failed", result.returncode, result.stderr or result.stdout)

    def conflicted_paths(self) -> list[str]:
        out = self._run_git("diff", "--name-only", "--diff-filter=U", "-z").stdout
        return sorted({p for p in out.split("\x00") if p})

    def show(self, commit: str | None, path: str | Path) -> bytes | None:
        """Content of path at commit, or None when absent there."""
        if commit is None:
            return None
        result = self._run_git("show", f"{commit}:{self._relative(path)}", check=False, text=False)
        return result.stdout if result.returncode == 0 else None

    def merge_head(self) -> str | None:
        result = self._run_git("rev-parse", "--verify", "-q", "MERGE_HEAD", check=False)
        return result.stdout.strip() if result.returncode == 0 else None

    def merge_in_progress(self) -> bool:
        return self.merge_head() is not None

    def abort_merge(self) -> None:
        if self.merge_in_progress():
            self._run_git("merge", "--abort")
