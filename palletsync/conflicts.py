"""Journal of version conflicts detected during write-back.

Each conflict is written as one JSON line to ``conflicts.log`` in the logs
directory and kept in a short in-memory history for status displays.
"""
from __future__ import annotations

import json
import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, List, Mapping, Optional, Sequence

from palletsync import app_paths

JOURNAL_LOGGER_NAME = "palletsync.sync.conflicts"
JOURNAL_FILENAME = "conflicts.log"
HISTORY_SIZE = 50

_journal = logging.getLogger(JOURNAL_LOGGER_NAME)
_history: Deque[Dict[str, object]] = deque(maxlen=HISTORY_SIZE)
_history_lock = threading.Lock()
_journal_ready = threading.Event()


def journal_logger() -> logging.Logger:
    """Return the journal logger, attaching its file handler on first use."""

    if not _journal_ready.is_set():
        with _history_lock:
            if not _journal_ready.is_set():
                try:
                    handler = logging.FileHandler(
                        app_paths.logs_path(JOURNAL_FILENAME), encoding="utf-8"
                    )
                except OSError:  # pragma: no cover - depends on filesystem permissions
                    pass
                else:
                    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
                    _journal.addHandler(handler)
                _journal.setLevel(logging.INFO)
                _journal_ready.set()
    return _journal


def record(
    document: str,
    expected_version: Optional[str],
    actual_version: Optional[str],
    *,
    pending_ids: Sequence[str] = (),
    context: Optional[Mapping[str, object]] = None,
) -> Dict[str, object]:
    """Journal one conflict and return the stored entry."""

    entry: Dict[str, object] = dict(context or {})
    entry.update(
        document=document,
        expected_version=expected_version,
        actual_version=actual_version,
        pending_ids=list(pending_ids),
        timestamp=datetime.now(timezone.utc).replace(microsecond=0).isoformat(),
    )
    journal_logger().warning(
        "%s", json.dumps(entry, ensure_ascii=False, sort_keys=True, default=str)
    )
    with _history_lock:
        _history.appendleft(entry)
    return entry


def recent(limit: int = 10) -> List[Dict[str, object]]:
    """Newest conflicts first."""

    with _history_lock:
        return [entry for _, entry in zip(range(max(limit, 0)), _history)]


def clear() -> None:
    with _history_lock:
        _history.clear()


__all__ = ["HISTORY_SIZE", "journal_logger", "clear", "recent", "record"]
