# src/gitask/logging_setup.py

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FILE_NAME = "gitask.log"
LOG_FILE_MAX_BYTES = 2 * 1024 * 1024
LOG_FILE_BACKUPS = 3

_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class _ConsoleNoiseFilter(logging.Filter):
    """
    Console policy for an interactive front-end.

    gitask records pass, except the git adapter (one debug line per
    subprocess), which needs WARNING. Captured Python warnings and
    third-party loggers need ERROR.
    """

    def __init__(self, vcs_level: int = logging.WARNING) -> None:
        super().__init__()
        self._vcs_level = vcs_level

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if name == "gitask" or name.startswith("gitask."):
            if name.startswith("gitask.vcs."):
                return record.levelno >= self._vcs_level
            return True
        return record.levelno >= logging.ERROR


def _console_handler(level: int | str) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.addFilter(_ConsoleNoiseFilter())
    return handler


def _file_handler(log_file: Path, level: int | str) -> logging.Handler:
    handler = RotatingFileHandler(
        log_file,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )
    handler.setLevel(level)
    return handler


def setup_logging(
    *,
    log_dir: str | Path = "~/.gitask/.logs",
    console_level: int | str = logging.INFO,
    file_level: int | str = logging.DEBUG,
) -> Path:
    """
    Route all logging to stderr (filtered) and to a rotating file (everything
    at file_level and above, git commands included).

    Replaces any handlers already on the root logger, so calling it twice does
    not duplicate output. Returns the log file path.
    """
    directory = Path(log_dir).expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    log_file = directory / LOG_FILE_NAME

    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATE_FORMAT)
    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)

    root.setLevel(logging.DEBUG)
    for handler in (_console_handler(console_level), _file_handler(log_file, file_level)):
        handler.setFormatter(formatter)
        root.addHandler(handler)

    logging.captureWarnings(True)
    return log_file
