from __future__ import annotations

import logging

import pytest

from conftest import SAMPLE_PALLETS, FakeStore, pallet
from palletsync import codec, conflicts
from palletsync.errors import ConflictError, TransportError, ValidationError
from palletsync.hash import fingerprint
from palletsync.sync_cache import SyncCache


def _cache(store: FakeStore, clock, interval: float = 120.0) -> SyncCache:
    return SyncCache(store, refresh_interval=interval, clock=clock, label="checklist")


def test_first_read_downloads_once_then_serves_from_memory(store, clock) -> None:
    cache = _cache(store, clock)

    first = cache.get_records()
    second = cache.get_records()

    assert first == second == list(SAMPLE_PALLETS)
    assert store.downloads == 1
    assert cache.is_initialized
    assert cache.snapshot.version == fingerprint(store.raw)
    assert cache.last_sync_time == clock.now


def test_stale_cache_refreshes_on_read(store, clock) -> None:
    cache = _cache(store, clock, interval=60)
    cache.get_records()

    clock.advance(61)
    store.edit_externally([pallet("1", "1", "1")])
    records = cache.get_records()

    assert store.downloads == 2
    assert [record.id for record in records] == ["1::1::1"]


def test_stale_but_dirty_cache_keeps_pending_records(store, clock) -> None:
    cache = _cache(store, clock, interval=60)
    cache.apply_mutation(lambda pallet_id: pallet_id == "5::12::3", True)

    clock.advance(61)
    records = cache.get_records()

    assert store.downloads == 1
    assert cache.is_dirty
    assert next(record for record in records if record.id == "5::12::3").made is True


def test_deferred_refresh_is_reported(store, clock, caplog) -> None:
    cache = _cache(store, clock, interval=60)
    cache.apply_mutation(lambda pallet_id: pallet_id == "5::12::3", True)
    clock.advance(61)

    with caplog.at_level(logging.INFO, logger="palletsync.sync_cache"):
        cache.get_records()

    messages = [rec for rec in caplog.records if "refresh deferred" in rec.getMessage()]
    assert len(messages) == 1
    assert messages[0].levelno == logging.INFO
    assert "1 pending changes" in messages[0].getMessage()


def test_apply_mutation_is_local_until_write_back(store, clock) -> None:
    cache = _cache(store, clock)
    cache.get_records()

    matched = cache.apply_mutation(lambda pallet_id: pallet_id == "5::12::3", True)

    assert matched == 1
    assert cache.is_dirty
    assert store.downloads == 1
    assert store.uploads == 0
    record = cache.pending_snapshot().find("5::12::3")
    assert record.made is True
    assert record.status == "completed"
    assert cache.snapshot.find("5::12::3").made is False
    assert cache.pending_ids() == ["5::12::3"]


def test_apply_mutation_without_matches_stays_clean(store, clock) -> None:
    cache = _cache(store, clock)

    assert cache.apply_mutation(lambda pallet_id: False, True) == 0
    assert not cache.is_dirty


def test_write_back_uploads_and_refreshes(store, clock) -> None:
    cache = _cache(store, clock)
    cache.apply_mutation(lambda pallet_id: pallet_id.startswith("7::1::"), True)

    snapshot = cache.write_back()

    assert store.uploads == 1
    assert not cache.is_dirty
    assert snapshot.version == fingerprint(store.raw)
    made = {record.id: record.made for record in store.records()}
    assert made == {
        "5::12::1": False,
        "5::12::2": True,
        "5::12::3": False,
        "7::1::1": True,
        "7::1::2": True,
    }


def test_write_back_when_clean_only_refreshes(store, clock) -> None:
    cache = _cache(store, clock)
    cache.get_records()

    cache.write_back()

    assert store.uploads == 0
    assert store.downloads == 2


def test_external_edit_causes_conflict_and_keeps_pending(store, clock) -> None:
    cache = _cache(store, clock)
    cache.apply_mutation(lambda pallet_id: pallet_id == "5::12::1", True)
    store.edit_externally(list(SAMPLE_PALLETS) + [pallet("9", "9", "9")])
    external = store.raw

    with pytest.raises(ConflictError) as excinfo:
        cache.write_back()

    assert excinfo.value.actual_version == fingerprint(external)
    assert excinfo.value.expected_version == cache.snapshot.version
    assert store.uploads == 0
    assert store.raw == external
    assert cache.is_dirty
    assert cache.pending_snapshot().find("5::12::1").made is True

    (entry,) = conflicts.recent()
    assert entry["document"] == "checklist"
    assert entry["pending_ids"] == ["5::12::1"]


def test_discard_pending_after_conflict_reloads_remote(store, clock) -> None:
    cache = _cache(store, clock)
    cache.apply_mutation(lambda pallet_id: pallet_id == "5::12::1", True)
    store.edit_externally([pallet("9", "9", "9")])
    with pytest.raises(ConflictError):
        cache.sync()

    snapshot = cache.discard_pending()

    assert not cache.is_dirty
    assert [record.id for record in snapshot.records] == ["9::9::9"]


def test_refresh_failure_leaves_entry_unchanged(store, clock) -> None:
    cache = _cache(store, clock)
    before = cache.refresh()
    last_sync = cache.last_sync_time

    clock.advance(500)
    store.break_transport()
    with pytest.raises(TransportError):
        cache.refresh()

    assert cache.snapshot == before
    assert cache.last_sync_time == last_sync


def test_insert_rewrites_document(store, clock) -> None:
    cache = _cache(store, clock)
    new_pallet = pallet("5", "13", "1", size="48x40", notes="added")

    cache.insert(new_pallet)
    cache.write_back()

    records = store.records()
    assert records[-1] == new_pallet
    assert len(records) == len(SAMPLE_PALLETS) + 1


def test_insert_validation(store, clock) -> None:
    cache = _cache(store, clock)

    with pytest.raises(ValidationError):
        cache.insert(pallet("5", "", "1"))
    with pytest.raises(ValidationError):
        cache.insert(pallet("5", "12", "1"))
    assert not cache.is_dirty


def test_insert_trims_identity_before_duplicate_check(store, clock) -> None:
    cache = _cache(store, clock)

    with pytest.raises(ValidationError):
        cache.insert(pallet(" 5", "12 ", "1"))

    stored = cache.insert(pallet(" 8 ", "2", "1", size=" 48x40 "))
    cache.write_back()

    assert stored.id == "8::2::1"
    assert stored.size == "48x40"
    ids = [record.id for record in store.records()]
    assert ids.count("8::2::1") == 1
    assert ids.count("5::12::1") == 1


def test_insert_many_rejects_whole_batch_on_blank_identity(store, clock) -> None:
    cache = _cache(store, clock)
    cache.get_records()

    with pytest.raises(ValidationError):
        cache.insert_many([pallet("6", "1", "1"), pallet("6", "", "2")])

    assert not cache.is_dirty
    assert cache.pending_ids() == []
    assert cache.write_back().records == tuple(SAMPLE_PALLETS)
    assert store.uploads == 0


def test_sync_refreshes_when_clean(store, clock) -> None:
    cache = _cache(store, clock)
    cache.get_records()
    store.edit_externally([pallet("2", "2", "2")])

    snapshot = cache.sync()

    assert [record.id for record in snapshot.records] == ["2::2::2"]
    assert store.uploads == 0


def test_periodic_sync_swallows_errors(store, clock, caplog) -> None:
    cache = _cache(store, clock)
    cache.get_records()
    store.break_transport()

    with caplog.at_level(logging.WARNING, logger="palletsync.sync_cache"):
        assert cache.periodic_sync() is None

    assert "Periodic sync failed" in caplog.text


def test_periodic_sync_swallows_conflicts(store, clock) -> None:
    cache = _cache(store, clock)
    cache.apply_mutation(lambda pallet_id: True, True)
    store.edit_externally(SAMPLE_PALLETS[:1])

    assert cache.periodic_sync() is None
    assert cache.is_dirty


def test_periodic_sync_writes_pending_changes(store, clock) -> None:
    cache = _cache(store, clock)
    cache.apply_mutation(lambda pallet_id: pallet_id == "7::1::2", True)

    snapshot = cache.periodic_sync()

    assert snapshot is not None
    assert snapshot.find("7::1::2").made is True
    assert store.uploads == 1


def test_upload_failure_keeps_changes_pending(store, clock) -> None:
    cache = _cache(store, clock)
    cache.apply_mutation(lambda pallet_id: pallet_id == "7::1::2", True)

    original_upload = store.upload

    def failing_upload(raw: bytes) -> None:
        raise TransportError("upload rejected")

    store.upload = failing_upload
    with pytest.raises(TransportError):
        cache.write_back()

    assert cache.is_dirty
    store.upload = original_upload
    cache.write_back()
    assert codec.decode(store.raw)[-1].made is True


def test_failed_confirming_read_still_marks_upload_clean(store, clock) -> None:
    cache = _cache(store, clock)
    cache.apply_mutation(lambda pallet_id: pallet_id == "5::12::1", True)

    original_upload = store.upload

    def upload_then_drop_connection(raw: bytes) -> None:
        original_upload(raw)
        store.fail_with = TransportError("connection reset")

    store.upload = upload_then_drop_connection
    with pytest.raises(TransportError):
        cache.write_back()

    assert store.uploads == 1
    assert not cache.is_dirty
    assert cache.snapshot.version == fingerprint(store.raw)
    assert cache.snapshot.find("5::12::1").made is True

    store.fail_with = None
    store.upload = original_upload
    cache.apply_mutation(lambda pallet_id: pallet_id == "5::12::3", True)
    cache.write_back()

    assert store.uploads == 2
    assert conflicts.recent() == []
    made = {record.id: record.made for record in store.records()}
    assert made["5::12::1"] is True
    assert made["5::12::3"] is True
