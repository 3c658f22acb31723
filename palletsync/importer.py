"""Import pallet rows from CSV exports or checklist workbooks."""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List

from palletsync import codec
from palletsync.errors import SchemaError
from palletsync.models import PalletTask
from palletsync.pallets import PalletService

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    """Represents the outcome of an import operation."""

    inserted: int = 0
    skipped: int = 0
    skipped_ids: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.inserted + self.skipped


class ImporterError(Exception):
    """Raised when an import process fails."""


def parse_csv(text: str) -> List[PalletTask]:
    """Parse CSV text laid out like the checklist columns.

    The first non-blank line is treated as the header.  Rows without a job,
    release and pallet number are skipped.
    """

    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) < 2:
        raise ImporterError("CSV file must have at least a header row and one data row")
    try:
        rows = list(csv.reader(lines[1:]))
    except csv.Error as exc:
        raise ImporterError(f"Failed to read CSV data: {exc}") from exc
    pallets = codec.records_from_rows([value.strip() for value in row] for row in rows)
    logger.info("Parsed %d pallets from CSV", len(pallets))
    return pallets


def parse_workbook(raw: bytes, sheet_name: str = codec.DEFAULT_SHEET_NAME) -> List[PalletTask]:
    """Parse an ``.xlsx`` payload, falling back to its first worksheet."""

    try:
        workbook = codec.open_workbook(raw, data_only=True)
    except SchemaError as exc:
        raise ImporterError(str(exc)) from exc
    try:
        if sheet_name in workbook.sheetnames:
            worksheet = workbook[sheet_name]
        elif workbook.worksheets:
            worksheet = workbook.worksheets[0]
        else:
            raise ImporterError("No worksheet found in workbook")
        pallets = codec.decode_sheet(worksheet)
    finally:
        workbook.close()
    logger.info("Parsed %d pallets from worksheet %s", len(pallets), worksheet.title)
    return pallets


def read_file(path: str | Path) -> List[PalletTask]:
    """Parse ``path`` according to its suffix (``.csv`` or ``.xlsx``)."""

    path = Path(path)
    suffix = path.suffix.lower()
    try:
        if suffix == ".csv":
            return parse_csv(path.read_text(encoding="utf-8-sig"))
        if suffix in (".xlsx", ".xlsm"):
            return parse_workbook(path.read_bytes())
    except OSError as exc:
        raise ImporterError(f"Failed to read {path}: {exc}") from exc
    raise ImporterError(f"Unsupported import file type: {path.suffix or path.name}")


def import_records(service: PalletService, pallets: Iterable[PalletTask]) -> ImportResult:
    """Insert ``pallets`` through ``service``, skipping identities already present."""

    pallets = list(pallets)
    if not pallets:
        return ImportResult()
    _snapshot, skipped_ids = service.insert_many(pallets)
    result = ImportResult(
        inserted=len(pallets) - len(skipped_ids),
        skipped=len(skipped_ids),
        skipped_ids=skipped_ids,
    )
    logger.info("Import finished: %d inserted, %d skipped", result.inserted, result.skipped)
    return result


def import_file(service: PalletService, path: str | Path) -> ImportResult:
    return import_records(service, read_file(path))


__all__ = [
    "ImportResult",
    "ImporterError",
    "import_file",
    "import_records",
    "parse_csv",
    "parse_workbook",
    "read_file",
]
