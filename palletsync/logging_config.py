"""Logging setup shared by the command line front end and long-running watchers."""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

from palletsync import app_paths

LOG_FILENAME = "palletsync.log"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_log_file: Optional[Path] = None
_console_handler: Optional[logging.Handler] = None


def _has_file_handler(logger: logging.Logger, path: Path) -> bool:
    target = str(path)
    return any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == target
        for handler in logger.handlers
    )


def configure_logging(level: int = logging.INFO, *, console: bool = False) -> Path:
    """Send every ``palletsync`` log record to ``palletsync.log``.

    Parameters
    ----------
    level:
        Threshold applied to the root logger. The root level is only ever
        lowered, so a host application that already logs more verbosely keeps
        its setting.
    console:
        Mirror records to ``stderr`` as well. May be enabled by a later call.

    Returns
    -------
    pathlib.Path
        Location of the log file.
    """

    global _log_file, _console_handler

    root = logging.getLogger()
    root.setLevel(min(root.level, level) if root.handlers else level)
    formatter = logging.Formatter(LOG_FORMAT)

    if _log_file is None:
        log_file = app_paths.logs_path(LOG_FILENAME)
        if not _has_file_handler(root, log_file):
            handler = logging.FileHandler(log_file, encoding="utf-8")
            handler.setFormatter(formatter)
            root.addHandler(handler)
        _log_file = log_file
        root.debug("Logging to %s", log_file)

    if console and _console_handler is None:
        _console_handler = logging.StreamHandler(sys.stderr)
        _console_handler.setFormatter(formatter)
        root.addHandler(_console_handler)

    return _log_file


def get_log_path() -> Path:
    """Return the log file location, configuring logging on first use."""

    return _log_file or configure_logging()


__all__ = ["LOG_FORMAT", "configure_logging", "get_log_path"]
