"""Background controller that keeps the sync cache in step with the remote document."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Optional

from palletsync.models import DocumentSnapshot
from palletsync.sync_cache import SyncCache

logger = logging.getLogger(__name__)


StatusPayload = Dict[str, object]
StatusCallback = Callable[[str, StatusPayload], None]

DEFAULT_INTERVAL_SECONDS = 120.0


class AutoSyncController:
    """Run :meth:`SyncCache.periodic_sync` on a daemon thread at a fixed interval.

    The first tick happens as soon as the controller starts.  Use it as a
    context manager to make sure the thread is stopped on every exit path.
    """

    def __init__(
        self,
        cache: SyncCache,
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        status_callback: Optional[StatusCallback] = None,
        sync_on_start: bool = True,
    ) -> None:
        self._cache = cache
        self._interval = max(0.01, float(interval_seconds))
        self._status_callback = status_callback
        self._sync_on_start = sync_on_start
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.ticks = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="palletsync-auto-sync", daemon=True
        )
        self._thread.start()
        logger.info("Periodic sync started (every %ss)", self._interval)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
            logger.info("Periodic sync stopped")

    def __enter__(self) -> "AutoSyncController":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _run(self) -> None:
        if not self._sync_on_start and self._stop_event.wait(self._interval):
            return
        while not self._stop_event.is_set():
            self.tick()
            if self._stop_event.wait(self._interval):
                break

    def tick(self) -> Optional[DocumentSnapshot]:
        was_dirty = self._cache.is_dirty
        snapshot = self._cache.periodic_sync()
        self.ticks += 1
        if snapshot is None:
            self._notify_status("error", {"dirty": self._cache.is_dirty})
        else:
            status = "written" if was_dirty else "refreshed"
            self._notify_status(status, {"version": snapshot.version, "count": len(snapshot)})
        return snapshot

    def _notify_status(self, status: str, payload: StatusPayload) -> None:
        if self._status_callback:
            try:
                self._status_callback(status, payload)
            except Exception:  # pragma: no cover - UI callback guard
                logger.debug("Auto sync status callback failed", exc_info=True)


__all__ = ["AutoSyncController", "DEFAULT_INTERVAL_SECONDS"]
