"""Read-only projections of pallet records used by list and filter screens.

None of these helpers reorder or modify the records they are given; the
document row order is preserved inside each group.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence, Tuple

from palletsync.models import STATUS_COMPLETED, STATUS_PENDING, PalletTask

STATUS_ALL = "all"
SEARCH_FIELDS: Tuple[str, ...] = (
    "job_number",
    "release_number",
    "pallet_number",
    "size",
    "elevation",
    "notes",
)


@dataclass
class JobGroup:
    job_number: str
    release_number: str
    pallets: List[PalletTask]

    @property
    def total_count(self) -> int:
        return len(self.pallets)

    @property
    def completed_count(self) -> int:
        return sum(1 for pallet in self.pallets if pallet.made)

    @property
    def completion_percentage(self) -> int:
        return _percentage(self.completed_count, self.total_count)


@dataclass
class FilterOptions:
    search_query: str = ""
    status_filter: str = STATUS_ALL
    job_filter: Sequence[str] = field(default_factory=list)
    size_filter: Sequence[str] = field(default_factory=list)


@dataclass(frozen=True)
class CompletionStats:
    total: int
    completed: int
    pending: int
    percentage: int


def _percentage(part: int, total: int) -> int:
    if total <= 0:
        return 0
    # Half-up rounding, matching the spreadsheet's ROUND.
    return int(part * 100 / total + 0.5)


def _numeric_key(value: str) -> Tuple[int, float, str]:
    """Sort numbers numerically ahead of free text."""

    text = value.strip()
    digits = ""
    for char in text:
        if char.isdigit() or (char == "-" and not digits):
            digits += char
        else:
            break
    try:
        return (0, float(int(digits)), text)
    except ValueError:
        return (1, 0.0, text.casefold())


def group_by_job_and_release(pallets: Iterable[PalletTask]) -> List[JobGroup]:
    groups: Dict[Tuple[str, str], JobGroup] = {}
    for pallet in pallets:
        key = (pallet.job_number, pallet.release_number)
        group = groups.get(key)
        if group is None:
            group = groups[key] = JobGroup(pallet.job_number, pallet.release_number, [])
        group.pallets.append(pallet)
    return sorted(
        groups.values(),
        key=lambda group: (_numeric_key(group.job_number), _numeric_key(group.release_number)),
    )


def _matches(pallet: PalletTask, options: FilterOptions) -> bool:
    query = options.search_query.strip().casefold()
    if query:
        haystack = " ".join(getattr(pallet, name) for name in SEARCH_FIELDS).casefold()
        if query not in haystack:
            return False
    if options.status_filter in (STATUS_PENDING, STATUS_COMPLETED):
        if pallet.status != options.status_filter:
            return False
    if options.job_filter and pallet.job_number not in options.job_filter:
        return False
    if options.size_filter and pallet.size not in options.size_filter:
        return False
    return True


def filter_pallets(pallets: Iterable[PalletTask], options: FilterOptions) -> List[PalletTask]:
    return [pallet for pallet in pallets if _matches(pallet, options)]


def unique_values(pallets: Iterable[PalletTask], field_name: str) -> List[str]:
    """Distinct non-empty values of ``field_name``, numbers sorted numerically."""

    values = {getattr(pallet, field_name) for pallet in pallets}
    return sorted((value for value in values if isinstance(value, str) and value), key=_numeric_key)


def completion_stats(pallets: Iterable[PalletTask]) -> CompletionStats:
    items = list(pallets)
    total = len(items)
    completed = sum(1 for pallet in items if pallet.made)
    return CompletionStats(
        total=total,
        completed=completed,
        pending=total - completed,
        percentage=_percentage(completed, total),
    )


__all__ = [
    "CompletionStats",
    "FilterOptions",
    "JobGroup",
    "STATUS_ALL",
    "completion_stats",
    "filter_pallets",
    "group_by_job_and_release",
    "unique_values",
]
