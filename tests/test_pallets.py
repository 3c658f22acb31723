from __future__ import annotations

import pytest

from conftest import SAMPLE_PALLETS, FakeStore, pallet
from palletsync.errors import ConflictError, NotFoundError, ValidationError
from palletsync.pallets import PalletService
from palletsync.settings import PalletSyncSettings
from palletsync.sync_cache import SyncCache


def _service(store: FakeStore, clock, *, write_through: bool = True) -> PalletService:
    return PalletService(SyncCache(store, clock=clock), write_through=write_through)


def test_toggle_one_flips_exactly_one_pallet(store, clock) -> None:
    service = _service(store, clock)

    snapshot = service.toggle_one("5::12::3", current_made=False)

    assert snapshot.find("5::12::3").made is True
    before = {record.id: record.made for record in SAMPLE_PALLETS}
    after = {record.id: record.made for record in store.records()}
    changed = [pallet_id for pallet_id in before if before[pallet_id] != after[pallet_id]]
    assert changed == ["5::12::3"]
    others = [record for record in store.records() if record.id != "5::12::3"]
    assert others == [record for record in SAMPLE_PALLETS if record.id != "5::12::3"]
    assert not service.cache.is_dirty


def test_toggle_one_uses_callers_current_value(store, clock) -> None:
    service = _service(store, clock)

    snapshot = service.toggle_one("5::12::2", current_made=True)

    assert snapshot.find("5::12::2").made is False


def test_toggle_one_unknown_id(store, clock) -> None:
    service = _service(store, clock)

    with pytest.raises(NotFoundError) as excinfo:
        service.toggle_one("1::2::3", current_made=False)

    assert excinfo.value.missing_ids == ("1::2::3",)
    assert store.uploads == 0


def test_toggle_bulk_is_all_or_nothing(store, clock) -> None:
    service = _service(store, clock)
    ids = ["5::12::1", "5::12::3", "7::1::1", "missing::1::1", "7::1::2"]

    with pytest.raises(NotFoundError) as excinfo:
        service.toggle_bulk(ids, True)

    assert excinfo.value.missing_ids == ("missing::1::1",)
    assert "missing::1::1" in str(excinfo.value)
    assert not service.cache.is_dirty
    assert service.get_records() == list(SAMPLE_PALLETS)
    assert store.uploads == 0


def test_toggle_bulk_sets_every_listed_pallet(store, clock) -> None:
    service = _service(store, clock)

    snapshot = service.toggle_bulk(["5::12::1", "7::1::1", "5::12::1"], True)

    assert snapshot.find("5::12::1").made is True
    assert snapshot.find("7::1::1").made is True
    assert snapshot.find("5::12::3").made is False
    assert store.uploads == 1


def test_toggle_bulk_empty_list_is_a_no_op(store, clock) -> None:
    service = _service(store, clock)

    snapshot = service.toggle_bulk([], True)

    assert len(snapshot) == len(SAMPLE_PALLETS)
    assert store.uploads == 0


def test_coalesced_mutations_wait_for_sync(store, clock) -> None:
    service = _service(store, clock, write_through=False)

    service.toggle_one("5::12::1", current_made=False)
    pending = service.toggle_bulk(["7::1::1", "7::1::2"], True)

    assert pending.pending is True
    assert store.uploads == 0
    assert pending.find("7::1::2").made is True

    synced = service.force_sync()

    assert store.uploads == 1
    assert synced.find("5::12::1").made is True
    assert synced.find("7::1::2").made is True


def test_conflict_propagates_and_leaves_mutation_pending(store, clock) -> None:
    service = _service(store, clock)
    service.get_records()
    store.edit_externally(SAMPLE_PALLETS[:4])

    with pytest.raises(ConflictError):
        service.toggle_one("5::12::1", current_made=False)

    assert service.cache.is_dirty
    assert service.get_snapshot().find("5::12::1").made is True

    reloaded = service.reload()

    assert reloaded.find("5::12::1").made is False
    assert len(reloaded) == 4
    assert not service.cache.is_dirty


def test_insert_adds_row(store, clock) -> None:
    service = _service(store, clock)

    snapshot = service.insert(pallet("8", "2", "1", size="48x40"))

    assert snapshot.find("8::2::1") is not None
    assert store.records()[-1].id == "8::2::1"


def test_insert_rejects_duplicates_and_blank_identity(store, clock) -> None:
    service = _service(store, clock)

    with pytest.raises(ValidationError):
        service.insert(pallet("5", "12", "1"))
    with pytest.raises(ValidationError):
        service.insert(pallet(" ", "12", "1"))
    assert store.uploads == 0


def test_insert_many_skips_existing(store, clock) -> None:
    service = _service(store, clock)

    snapshot, skipped = service.insert_many(
        [pallet("5", "12", "1"), pallet("6", "1", "1"), pallet("6", "1", "1")]
    )

    assert skipped == ["5::12::1", "6::1::1"]
    assert snapshot.find("6::1::1") is not None
    assert store.uploads == 1


def test_insert_with_padded_identity_is_a_duplicate(store, clock) -> None:
    service = _service(store, clock)

    with pytest.raises(ValidationError):
        service.insert(pallet(" 5", "12", "1"))

    snapshot = service.insert(pallet("8 ", " 2", "1"))

    assert snapshot.find("8::2::1") is not None
    assert [record.id for record in store.records()].count("5::12::1") == 1
    assert store.uploads == 1


def test_insert_many_is_all_or_nothing(store, clock) -> None:
    service = _service(store, clock, write_through=False)

    with pytest.raises(ValidationError):
        service.insert_many([pallet("6", "1", "1"), pallet("6", "", "2")])

    assert not service.cache.is_dirty
    assert service.cache.pending_ids() == []
    assert service.get_snapshot().find("6::1::1") is None
    service.force_sync()
    assert store.uploads == 0


def test_from_settings_uses_local_document(tmp_path, workbook_bytes) -> None:
    document = tmp_path / "Release-CheckList.xlsx"
    document.write_bytes(workbook_bytes)
    settings = PalletSyncSettings(document=str(document), sync_interval_seconds=30, write_through=False)

    service = PalletService.from_settings(settings)

    assert service.write_through is False
    assert service.cache.refresh_interval == 30
    assert [record.id for record in service.get_records()] == [record.id for record in SAMPLE_PALLETS]
