# src/gitask/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from collections.abc import Iterator
from pathlib import Path

from ..core.ports import Stager
from ..errors import AmbiguousIdentifier, NotFound, StorageIoError
from .task_codec import decode, encode
from .task_models import Task

logger = logging.getLogger(__name__)

TASK_FILE_SUFFIX = ".toml"


class FileStore:
    """
    One-file-per-task store.

    Layout:
    - <tasks_dir>/<task id>.toml, flat directory
    - the file name is derived from the id only, so other tools can find a
      task without parsing every file

    Every successful put/delete stages the affected path with the stager but
    never commits: one logical action must map to one commit, and only the
    caller knows where the action ends.
    """

    def __init__(self, tasks_dir: str | Path, stager: Stager) -> None:
        self._dir = Path(tasks_dir)
        self._stager = stager

    @property
    def tasks_dir(self) -> Path:
        return self._dir

    def ensure_dir(self) -> None:
        # Created lazily: git does not track empty directories, and a clone
        # target must stay empty until the clone ran.
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIoError(f"Cannot create tasks directory {self._dir}: {e}") from e

    # ---- paths ----

    def path_for(self, task_id: str) -> Path:
        return self._dir / f"{task_id}{TASK_FILE_SUFFIX}"

    def relative_path(self, task_id: str) -> Path:
        """Path of the task file relative to the repository root (parent of tasks_dir)."""
        return self.path_for(task_id).relative_to(self._dir.parent)

    @staticmethod
    def id_from_path(path: str | Path) -> str | None:
        p = Path(path)
        if p.suffix != TASK_FILE_SUFFIX:
            return None
        return p.stem

    def _task_files(self) -> list[Path]:
        try:
            return [p for p in self._dir.iterdir() if p.is_file() and p.suffix == TASK_FILE_SUFFIX]
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StorageIoError(f"Cannot list {self._dir}: {e}") from e

    def locate(self, task_id: str) -> Path:
        """
        Resolve a full id or a unique id prefix to a task file.

        Raises NotFound / AmbiguousIdentifier.
        """
        key = (task_id or "").strip().lower()
        if not key:
            raise NotFound(task_id)

        exact = self.path_for(key)
        if exact.is_file():
            return exact

        matches = [p for p in self._task_files() if p.stem.startswith(key)]
        if not matches:
            raise NotFound(task_id)
        if len(matches) > 1:
            raise AmbiguousIdentifier(task_id, [p.stem for p in matches])
        return matches[0]

    def exists(self, task_id: str) -> bool:
        return self.path_for(task_id).is_file()

    # ---- public API ----

    def get(self, task_id: str) -> Task:
        return self._read(self.locate(task_id))

    def list(self) -> Iterator[Task]:
        """Lazily decode every task file; order is unspecified."""
        for path in self._task_files():
            yield self._read(path)

    def put(self, task: Task) -> Path:
        path = self.path_for(task.id)
        self._write_atomic(path, encode(task))
        self._stager.stage([path])
        logger.debug("Task written id=%s status=%s", task.id, task.status.value)
        return path

    def delete(self, task_id: str) -> Path:
        path = self.locate(task_id)
        try:
            path.unlink()
        except FileNotFoundError:
            raise NotFound(task_id) from None
        except OSError as e:
            raise StorageIoError(f"Cannot delete {path}: {e}") from e
        self._stager.stage([path])
        logger.debug("Task deleted id=%s", path.stem)
        return path

    def remove_if_exists(self, task_id: str) -> bool:
        """Delete and stage the task file if present. Returns whether it was there."""
        path = self.path_for(task_id)
        try:
            path.unlink()
        except FileNotFoundError:
            # git add rejects a pathspec that matches nothing.
            return False
        except OSError as e:
            raise StorageIoError(f"Cannot delete {path}: {e}") from e
        self._stager.stage([path])
        return True

    # ---- low-level helpers ----

    def _read(self, path: Path) -> Task:
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            raise NotFound(path.stem) from None
        except OSError as e:
            raise StorageIoError(f"Cannot read {path}: {e}") from e
        return decode(data, path=str(path))

    def _write_atomic(self, path: Path, data: bytes) -> None:
        """
        Write to a temp file in the same directory, fsync, then os.replace.

        A crash mid-write leaves the previous version intact.
        """
        self.ensure_dir()
        tmp_name: str | None = None
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=".", suffix=".tmp")
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            raise StorageIoError(f"Cannot write {path}: {e}") from e
        finally:
            if tmp_name is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
