"""Operations the presentation layer calls to read and change pallet status."""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Tuple

from palletsync.errors import NotFoundError
from palletsync.models import DocumentSnapshot, PalletTask
from palletsync.settings import PalletSyncSettings
from palletsync.store import RecordStore, build_store
from palletsync.sync_cache import SyncCache

logger = logging.getLogger(__name__)


class PalletService:
    """Mutation API over a :class:`SyncCache`.

    With ``write_through`` enabled every mutation is written back at once and
    the caller receives the refreshed snapshot; a
    :class:`~palletsync.errors.ConflictError` leaves the mutation pending in
    the cache.  Without it mutations are coalesced and written by the next
    periodic sync, and the caller receives the pending view.
    """

    def __init__(self, cache: SyncCache, *, write_through: bool = True) -> None:
        self.cache = cache
        self.write_through = write_through

    @classmethod
    def from_settings(
        cls,
        settings: PalletSyncSettings,
        *,
        store: Optional[RecordStore] = None,
    ) -> "PalletService":
        store = store or build_store(settings)
        cache = SyncCache(
            store,
            sheet_name=settings.sheet_name,
            refresh_interval=settings.sync_interval_seconds,
            label=settings.document,
        )
        return cls(cache, write_through=settings.write_through)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_records(self) -> List[PalletTask]:
        return self.cache.get_records()

    def get_snapshot(self) -> DocumentSnapshot:
        self.cache.get_records()
        return self.cache.pending_snapshot()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def toggle_one(self, pallet_id: str, current_made: bool) -> DocumentSnapshot:
        """Flip the made flag of one pallet from ``current_made``."""

        made = not current_made
        logger.info("Setting pallet %s made=%s", pallet_id, made)
        with self.cache.lock:
            matched = self.cache.apply_mutation(lambda candidate: candidate == pallet_id, made)
            if not matched:
                raise NotFoundError(
                    f"Pallet {pallet_id} could not be found.", missing_ids=[pallet_id]
                )
            return self._commit()

    def toggle_bulk(self, pallet_ids: Iterable[str], target_made: bool) -> DocumentSnapshot:
        """Set ``made`` on every listed pallet, or on none if any id is unknown."""

        wanted = list(dict.fromkeys(pallet_ids))
        with self.cache.lock:
            known = {record.id for record in self.cache.get_records()}
            missing = [pallet_id for pallet_id in wanted if pallet_id not in known]
            if missing:
                raise NotFoundError(
                    f"Pallets not found: {', '.join(missing)}", missing_ids=missing
                )
            if not wanted:
                return self.get_snapshot()

            selected = set(wanted)
            logger.info("Setting %d pallets made=%s", len(selected), target_made)
            self.cache.apply_mutation(selected.__contains__, target_made)
            return self._commit()

    def insert(self, record: PalletTask) -> DocumentSnapshot:
        with self.cache.lock:
            stored = self.cache.insert(record)
            logger.info("Adding pallet %s", stored.id)
            return self._commit()

    def insert_many(self, records: Iterable[PalletTask]) -> Tuple[DocumentSnapshot, List[str]]:
        """Insert every new record in one write-back.

        Records whose identity already exists (or repeats within ``records``)
        are skipped; their ids are returned alongside the snapshot.  A record
        without a complete identity rejects the batch before anything is
        queued.
        """

        batch = list(records)
        with self.cache.lock:
            # Brings a stale, clean cache up to date before the duplicate check.
            self.cache.get_records()
            skipped = self.cache.insert_many(batch)
            added = len(batch) - len(skipped)
            logger.info("Adding %d pallets, %d skipped", added, len(skipped))
            if not added:
                return self.get_snapshot(), skipped
            return self._commit(), skipped

    def force_sync(self) -> DocumentSnapshot:
        return self.cache.sync()

    def reload(self) -> DocumentSnapshot:
        """Drop pending local changes and read the document again."""

        dropped = self.cache.pending_ids()
        if dropped:
            logger.warning("Discarding %d pending changes: %s", len(dropped), ", ".join(dropped))
        return self.cache.discard_pending()

    def _commit(self) -> DocumentSnapshot:
        if self.write_through:
            return self.cache.write_back()
        return self.cache.pending_snapshot()


__all__ = ["PalletService"]
