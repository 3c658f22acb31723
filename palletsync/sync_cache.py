"""Versioned in-memory cache of the checklist document.

The cache holds the last decoded snapshot of the remote document, its
content fingerprint, and a full copy of the records including local
mutations that have not been written back yet.  Writes are optimistic:
immediately before an upload the remote document is downloaded again and
its fingerprint compared with the version the local changes were based on.
A mismatch means somebody edited the document in the meantime; the write is
abandoned with :class:`~palletsync.errors.ConflictError` and the local
changes are kept until the caller reloads.

Every operation holds one re-entrant lock for its whole duration, so the
background controller and interactive callers never interleave a refresh,
a write-back and a mutation.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Iterable, List, Optional, Tuple

from palletsync import codec, conflicts
from palletsync.errors import ConflictError, PalletSyncError, ValidationError
from palletsync.hash import fingerprint, short_token
from palletsync.models import DocumentSnapshot, PalletTask
from palletsync.store import RecordStore

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL = 120.0

IdentityPredicate = Callable[[str], bool]


@dataclass(frozen=True)
class CacheEntry:
    snapshot: DocumentSnapshot
    last_sync_time: float
    pending_records: Tuple[PalletTask, ...]
    is_dirty: bool = False
    structural_change: bool = False


class SyncCache:
    """Keep pallet records in step with a remote checklist document."""

    def __init__(
        self,
        store: RecordStore,
        *,
        sheet_name: str = codec.DEFAULT_SHEET_NAME,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        label: Optional[str] = None,
    ) -> None:
        self._store = store
        self._sheet_name = sheet_name
        self._refresh_interval = float(refresh_interval)
        self._clock = clock
        self._label = label or repr(store)
        self._lock = threading.RLock()
        self._entry: Optional[CacheEntry] = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def lock(self) -> threading.RLock:
        """The lock serialising every cache step; re-entrant."""

        return self._lock

    @property
    def label(self) -> str:
        return self._label

    @property
    def refresh_interval(self) -> float:
        return self._refresh_interval

    @property
    def is_initialized(self) -> bool:
        return self._entry is not None

    @property
    def is_dirty(self) -> bool:
        entry = self._entry
        return bool(entry and entry.is_dirty)

    @property
    def snapshot(self) -> Optional[DocumentSnapshot]:
        entry = self._entry
        return entry.snapshot if entry else None

    @property
    def last_sync_time(self) -> Optional[float]:
        entry = self._entry
        return entry.last_sync_time if entry else None

    def pending_ids(self) -> List[str]:
        """Identities whose pending state differs from the last snapshot."""

        with self._lock:
            entry = self._entry
            if entry is None:
                return []
            return _changed_ids(entry)

    def pending_snapshot(self) -> DocumentSnapshot:
        """The last snapshot with local, not yet written, mutations applied."""

        with self._lock:
            entry = self._ensure_loaded()
            return replace(
                entry.snapshot,
                records=entry.pending_records,
                pending=entry.is_dirty,
            )

    # ------------------------------------------------------------------
    # Protocol
    # ------------------------------------------------------------------
    def refresh(self) -> DocumentSnapshot:
        """Replace the cached state with a fresh read of the remote document."""

        with self._lock:
            return self._refresh_locked()

    discard_pending = refresh

    def get_records(self) -> List[PalletTask]:
        with self._lock:
            entry = self._entry
            if entry is None:
                entry = self._load()
            elif self._is_stale(entry):
                if entry.is_dirty:
                    logger.info(
                        "Cache for %s is stale but holds %d pending changes; refresh deferred until write-back",
                        self._label,
                        len(_changed_ids(entry)),
                    )
                else:
                    entry = self._load()
            return list(entry.pending_records)

    def apply_mutation(self, predicate: IdentityPredicate, made: bool) -> int:
        """Set ``made`` on every pending record whose id satisfies ``predicate``.

        Returns the number of matched records.  Purely local: the remote is
        only contacted when the cache has never been loaded.
        """

        with self._lock:
            entry = self._ensure_loaded()
            matched = 0
            updated: List[PalletTask] = []
            for record in entry.pending_records:
                if predicate(record.id):
                    updated.append(record.with_made(made))
                    matched += 1
                else:
                    updated.append(record)
            if matched:
                self._entry = replace(entry, pending_records=tuple(updated), is_dirty=True)
                logger.debug("Applied made=%s to %d pallets in cache", made, matched)
            return matched

    def insert(self, record: PalletTask) -> PalletTask:
        """Append ``record`` to the pending records and return the stored copy.

        Text fields are trimmed before the duplicate check, matching how the
        sheet is decoded.  Inserts are written back by rewriting the data rows
        of the sheet rather than by patching individual cells.
        """

        added, _ = self._append([record], skip_existing=False)
        return added[0]

    def insert_many(self, records: Iterable[PalletTask]) -> List[str]:
        """Append every new record in one step; all or nothing.

        Records whose identity is already pending, or repeats earlier in
        ``records``, are skipped and their ids returned.  A record without a
        complete identity rejects the whole batch.
        """

        return self._append(records, skip_existing=True)[1]

    def _append(
        self, records: Iterable[PalletTask], *, skip_existing: bool
    ) -> Tuple[List[PalletTask], List[str]]:
        candidates = [record.normalized() for record in records]
        for record in candidates:
            if not record.has_identity():
                raise ValidationError(
                    "Job number, release number and pallet number are required"
                )
        with self._lock:
            entry = self._ensure_loaded()
            known = {existing.id for existing in entry.pending_records}
            added: List[PalletTask] = []
            skipped: List[str] = []
            for record in candidates:
                if record.id in known:
                    if not skip_existing:
                        raise ValidationError(f"Pallet {record.id} already exists")
                    skipped.append(record.id)
                    continue
                known.add(record.id)
                added.append(record)
            if added:
                self._entry = replace(
                    entry,
                    pending_records=entry.pending_records + tuple(added),
                    is_dirty=True,
                    structural_change=True,
                )
                logger.debug("%d pallets queued for insertion", len(added))
            return added, skipped

    def write_back(self) -> DocumentSnapshot:
        """Persist pending changes if the remote still matches the cached version."""

        with self._lock:
            entry = self._entry
            if entry is None or not entry.is_dirty:
                return self._refresh_locked()

            raw = self._store.download()
            current_version = fingerprint(raw)
            expected_version = entry.snapshot.version
            if current_version != expected_version:
                changed = _changed_ids(entry)
                conflicts.record(
                    self._label,
                    expected_version,
                    current_version,
                    pending_ids=changed,
                )
                logger.warning(
                    "Write-back aborted: %s changed remotely (expected %s, found %s)",
                    self._label,
                    short_token(expected_version),
                    short_token(current_version),
                )
                raise ConflictError(
                    "The document was modified externally. Reload before saving again.",
                    expected_version=expected_version,
                    actual_version=current_version,
                )

            if entry.structural_change:
                payload = codec.rewrite(raw, entry.pending_records, self._sheet_name)
            else:
                payload = codec.encode(raw, entry.pending_records, self._sheet_name)
            self._store.upload(payload)
            logger.info(
                "Wrote %d pallets to %s (%d changed)",
                len(entry.pending_records),
                self._label,
                len(_changed_ids(entry)),
            )

            # The upload is durable even if the confirming read below fails.
            self._entry = replace(
                entry,
                snapshot=replace(
                    entry.snapshot,
                    records=entry.pending_records,
                    version=fingerprint(payload),
                    size=len(payload),
                ),
                is_dirty=False,
                structural_change=False,
            )
            return self._refresh_locked()

    def sync(self) -> DocumentSnapshot:
        """Write back pending changes, or refresh when there are none."""

        with self._lock:
            if self.is_dirty:
                return self.write_back()
            return self._refresh_locked()

    def periodic_sync(self) -> Optional[DocumentSnapshot]:
        """One background tick: like :meth:`sync` but never raises."""

        try:
            return self.sync()
        except ConflictError as exc:
            logger.warning("Periodic sync skipped: %s", exc)
        except PalletSyncError as exc:
            logger.warning("Periodic sync failed: %s", exc)
        except Exception:
            logger.exception("Periodic sync failed unexpectedly")
        return None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _is_stale(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.last_sync_time > self._refresh_interval

    def _load(self) -> CacheEntry:
        self._entry = self._fetch_entry()
        return self._entry

    def _ensure_loaded(self) -> CacheEntry:
        if self._entry is None:
            return self._load()
        return self._entry

    def _refresh_locked(self) -> DocumentSnapshot:
        return self._load().snapshot

    def _fetch_entry(self) -> CacheEntry:
        metadata = self._store.fetch_metadata()
        raw = self._store.download()
        records = codec.decode(raw, self._sheet_name)
        snapshot = DocumentSnapshot(
            records=tuple(records),
            version=fingerprint(raw),
            modified_at=metadata.modified_at,
            size=len(raw),
        )
        logger.info(
            "Loaded %d pallets from %s (version %s)",
            len(records),
            self._label,
            short_token(snapshot.version),
        )
        return CacheEntry(
            snapshot=snapshot,
            last_sync_time=self._clock(),
            pending_records=snapshot.records,
        )


def _changed_ids(entry: CacheEntry) -> List[str]:
    base = {record.id: record for record in entry.snapshot.records}
    return [record.id for record in entry.pending_records if base.get(record.id) != record]


__all__ = ["CacheEntry", "DEFAULT_REFRESH_INTERVAL", "SyncCache"]
