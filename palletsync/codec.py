"""Conversion between the release checklist workbook and pallet records.

The checklist is an ``.xlsx`` workbook with a single data worksheet
(``PalletTracker`` by default).  Row 1 holds the headers and every following
row describes one pallet in a fixed column order:

``A`` job number, ``B`` release number, ``C`` pallet number, ``D`` size,
``E`` elevation, ``F`` made flag, ``G`` accessory list, ``H`` shipped date,
``I`` notes.

Two write paths exist.  :func:`encode` patches only the made-flag cells of
rows it can match by identity, leaving every other cell, sheet and style of
the workbook alone.  :func:`rewrite` replaces the data rows wholesale and is
used when records were inserted.
"""
from __future__ import annotations

import io
import logging
import zipfile
from datetime import date, datetime, time
from typing import Iterable, List, Mapping, Optional, Sequence

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.workbook.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from palletsync.errors import SchemaError
from palletsync.models import PalletTask, make_pallet_id

logger = logging.getLogger(__name__)

DEFAULT_SHEET_NAME = "PalletTracker"

COLUMNS: Sequence[str] = (
    "job_number",
    "release_number",
    "pallet_number",
    "size",
    "elevation",
    "made",
    "acc_list",
    "shipped_date",
    "notes",
)
HEADERS: Sequence[str] = (
    "Job #",
    "Release #",
    "Pallet #",
    "Size",
    "Elevation",
    "Made",
    "Acc List",
    "Shipped Date",
    "Notes",
)
MADE_COLUMN = COLUMNS.index("made") + 1
MADE_TRUE = "X"
MADE_FALSE = ""
_TRUTHY_FLAGS = {"x", "true"}


def cell_text(value: object) -> str:
    """Render a cell value the way the spreadsheet displays it, trimmed."""

    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def parse_made(value: object) -> bool:
    return cell_text(value).casefold() in _TRUTHY_FLAGS


def format_made(made: bool) -> str:
    return MADE_TRUE if made else MADE_FALSE


def open_workbook(raw: bytes, *, data_only: bool) -> Workbook:
    try:
        return load_workbook(io.BytesIO(raw), data_only=data_only)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise SchemaError(f"Document is not a readable workbook: {exc}") from exc


def _require_sheet(workbook: Workbook, sheet_name: str) -> Worksheet:
    if sheet_name not in workbook.sheetnames:
        available = ", ".join(workbook.sheetnames) or "none"
        raise SchemaError(
            f'Sheet "{sheet_name}" not found in workbook. Available sheets: {available}'
        )
    return workbook[sheet_name]


def _save(workbook: Workbook) -> bytes:
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def row_to_record(values: Sequence[object]) -> Optional[PalletTask]:
    """Build a record from one row of cell values, ``None`` if it has no identity."""

    padded = list(values[: len(COLUMNS)]) + [None] * (len(COLUMNS) - len(values))
    fields = {}
    for name, value in zip(COLUMNS, padded):
        if name == "made":
            fields[name] = parse_made(value)
        else:
            fields[name] = cell_text(value)
    if not (fields["job_number"] and fields["release_number"] and fields["pallet_number"]):
        return None
    return PalletTask(**fields)


def records_from_rows(rows: Iterable[Sequence[object]]) -> List[PalletTask]:
    records: List[PalletTask] = []
    for values in rows:
        record = row_to_record(values)
        if record is not None:
            records.append(record)
    return records


def decode_sheet(worksheet: Worksheet) -> List[PalletTask]:
    return records_from_rows(
        worksheet.iter_rows(min_row=2, max_col=len(COLUMNS), values_only=True)
    )


def decode(raw: bytes, sheet_name: str = DEFAULT_SHEET_NAME) -> List[PalletTask]:
    """Return the pallet records of ``raw`` in document row order."""

    workbook = open_workbook(raw, data_only=True)
    try:
        worksheet = _require_sheet(workbook, sheet_name)
        records = decode_sheet(worksheet)
    finally:
        workbook.close()
    logger.debug("Decoded %d pallets from sheet %s", len(records), sheet_name)
    return records


def _row_identity(worksheet: Worksheet, row_index: int) -> Optional[str]:
    job, release, pallet = (
        cell_text(worksheet.cell(row=row_index, column=column).value) for column in (1, 2, 3)
    )
    if not (job and release and pallet):
        return None
    return make_pallet_id(job, release, pallet)


def encode(
    raw: bytes,
    records: Iterable[PalletTask],
    sheet_name: str = DEFAULT_SHEET_NAME,
) -> bytes:
    """Patch the made-flag cells of ``raw`` from ``records``.

    Rows whose identity does not appear in ``records`` are left untouched and
    records without a matching row are not appended.
    """

    by_id: Mapping[str, PalletTask] = {record.id: record for record in records}
    workbook = open_workbook(raw, data_only=False)
    worksheet = _require_sheet(workbook, sheet_name)

    patched = 0
    for row_index in range(2, worksheet.max_row + 1):
        pallet_id = _row_identity(worksheet, row_index)
        if pallet_id is None:
            continue
        record = by_id.get(pallet_id)
        if record is None:
            continue
        worksheet.cell(row=row_index, column=MADE_COLUMN).value = format_made(record.made)
        patched += 1

    logger.debug("Patched %d made cells in sheet %s", patched, sheet_name)
    return _save(workbook)


def record_to_row(record: PalletTask) -> List[str]:
    row: List[str] = []
    for name in COLUMNS:
        if name == "made":
            row.append(format_made(record.made))
        else:
            row.append(getattr(record, name))
    return row


def rewrite(
    raw: bytes,
    records: Sequence[PalletTask],
    sheet_name: str = DEFAULT_SHEET_NAME,
) -> bytes:
    """Replace every data row of the sheet with ``records``, keeping the header."""

    workbook = open_workbook(raw, data_only=False)
    worksheet = _require_sheet(workbook, sheet_name)
    previous_last_row = worksheet.max_row

    for offset, record in enumerate(records):
        for column, value in enumerate(record_to_row(record), start=1):
            worksheet.cell(row=2 + offset, column=column).value = value

    for row_index in range(2 + len(records), previous_last_row + 1):
        for column in range(1, len(COLUMNS) + 1):
            worksheet.cell(row=row_index, column=column).value = None

    logger.debug("Rewrote %d rows in sheet %s", len(records), sheet_name)
    return _save(workbook)


def new_workbook(
    records: Sequence[PalletTask] = (),
    sheet_name: str = DEFAULT_SHEET_NAME,
) -> bytes:
    """Return a fresh checklist workbook containing ``records``."""

    workbook = Workbook()
    worksheet = workbook.active
    worksheet.title = sheet_name
    worksheet.append(list(HEADERS))
    for record in records:
        worksheet.append(record_to_row(record))
    return _save(workbook)


__all__ = [
    "COLUMNS",
    "DEFAULT_SHEET_NAME",
    "HEADERS",
    "MADE_COLUMN",
    "cell_text",
    "decode",
    "decode_sheet",
    "encode",
    "open_workbook",
    "format_made",
    "new_workbook",
    "parse_made",
    "records_from_rows",
    "rewrite",
    "row_to_record",
]
