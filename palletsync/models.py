"""Domain types for pallet tracking."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional, Tuple

ID_SEPARATOR = "::"
STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
TEXT_FIELDS: Tuple[str, ...] = (
    "job_number",
    "release_number",
    "pallet_number",
    "size",
    "elevation",
    "acc_list",
    "shipped_date",
    "notes",
)


def make_pallet_id(job_number: str, release_number: str, pallet_number: str) -> str:
    """Return the composite identity used for a pallet row."""

    return ID_SEPARATOR.join((job_number, release_number, pallet_number))


@dataclass(frozen=True)
class PalletTask:
    """One pallet row of the release checklist."""

    job_number: str
    release_number: str
    pallet_number: str
    size: str = ""
    elevation: str = ""
    made: bool = False
    acc_list: str = ""
    shipped_date: str = ""
    notes: str = ""

    @property
    def id(self) -> str:
        return make_pallet_id(self.job_number, self.release_number, self.pallet_number)

    @property
    def status(self) -> str:
        return STATUS_COMPLETED if self.made else STATUS_PENDING

    def has_identity(self) -> bool:
        return all(
            value.strip()
            for value in (self.job_number, self.release_number, self.pallet_number)
        )

    def normalized(self) -> "PalletTask":
        """Return a copy with text fields trimmed the way the sheet is read back."""

        return replace(
            self,
            **{
                name: getattr(self, name).strip()
                for name in TEXT_FIELDS
                if isinstance(getattr(self, name), str)
            },
        )

    def with_made(self, made: bool) -> "PalletTask":
        return replace(self, made=bool(made))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "jobNumber": self.job_number,
            "releaseNumber": self.release_number,
            "palletNumber": self.pallet_number,
            "size": self.size,
            "elevation": self.elevation,
            "made": self.made,
            "accList": self.acc_list,
            "shippedDate": self.shipped_date,
            "notes": self.notes,
            "status": self.status,
        }


@dataclass(frozen=True)
class RemoteMetadata:
    modified_at: Optional[datetime]
    size: int


@dataclass(frozen=True)
class DocumentSnapshot:
    """The decoded content of one remote read together with its version token."""

    records: Tuple[PalletTask, ...]
    version: str
    modified_at: Optional[datetime] = None
    size: int = 0
    read_only: bool = False
    pending: bool = field(default=False, compare=False)

    def find(self, pallet_id: str) -> Optional[PalletTask]:
        for record in self.records:
            if record.id == pallet_id:
                return record
        return None

    def __len__(self) -> int:
        return len(self.records)


__all__ = [
    "DocumentSnapshot",
    "ID_SEPARATOR",
    "PalletTask",
    "RemoteMetadata",
    "STATUS_COMPLETED",
    "STATUS_PENDING",
    "make_pallet_id",
]
