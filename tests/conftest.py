from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path
from typing import List, Optional, Sequence

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Application directories are resolved on import; keep them out of the real home.
os.environ.setdefault("PALLETSYNC_HOME", tempfile.mkdtemp(prefix="palletsync-tests-"))

from palletsync import codec, conflicts  # noqa: E402
from palletsync.errors import TransportError  # noqa: E402
from palletsync.models import PalletTask, RemoteMetadata  # noqa: E402


def pallet(job: str, release: str, number: str, *, made: bool = False, **extra: str) -> PalletTask:
    return PalletTask(job_number=job, release_number=release, pallet_number=number, made=made, **extra)


SAMPLE_PALLETS: Sequence[PalletTask] = (
    pallet("5", "12", "1", size="48x40", elevation="A"),
    pallet("5", "12", "2", size="48x40", elevation="B", made=True),
    pallet("5", "12", "3", size="36x36", elevation="A"),
    pallet("7", "1", "1", size="48x40", notes="rush"),
    pallet("7", "1", "2", size="36x36"),
)


class FakeStore:
    """In-memory store that counts remote calls."""

    def __init__(self, raw: bytes) -> None:
        self.raw = raw
        self.downloads = 0
        self.uploads = 0
        self.metadata_calls = 0
        self.fail_with: Optional[Exception] = None
        self.uploaded: List[bytes] = []

    def fetch_metadata(self) -> RemoteMetadata:
        self.metadata_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        return RemoteMetadata(modified_at=None, size=len(self.raw))

    def download(self) -> bytes:
        self.downloads += 1
        if self.fail_with is not None:
            raise self.fail_with
        return self.raw

    def upload(self, raw: bytes) -> None:
        self.uploads += 1
        if self.fail_with is not None:
            raise self.fail_with
        self.raw = raw
        self.uploaded.append(raw)

    # Test helpers -----------------------------------------------------
    def edit_externally(self, records: Sequence[PalletTask]) -> None:
        self.raw = codec.new_workbook(records)

    def break_transport(self) -> None:
        self.fail_with = TransportError("network unreachable")

    def records(self) -> List[PalletTask]:
        return codec.decode(self.raw)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def workbook_bytes() -> bytes:
    return codec.new_workbook(SAMPLE_PALLETS)


@pytest.fixture
def store(workbook_bytes: bytes) -> FakeStore:
    return FakeStore(workbook_bytes)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def _reset_conflicts():
    conflicts.clear()
    yield
    conflicts.clear()
