"""Command line front end for the pallet checklist."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from typing import Optional

from palletsync import conflicts, importer
from palletsync.auto_sync import AutoSyncController
from palletsync.errors import ConflictError, PalletSyncError
from palletsync.hash import short_token
from palletsync.logging_config import configure_logging
from palletsync.models import DocumentSnapshot, PalletTask
from palletsync.pallets import PalletService
from palletsync.settings import load_settings
from palletsync.version import __version__
from palletsync.views import (
    FilterOptions,
    completion_stats,
    filter_pallets,
    group_by_job_and_release,
    unique_values,
)


def _open_service() -> PalletService:
    return PalletService.from_settings(load_settings())


def _persist(service: PalletService, snapshot: DocumentSnapshot) -> DocumentSnapshot:
    # A one-shot command exits before any background tick could write.
    if service.write_through:
        return snapshot
    return service.force_sync()


def _print_summary(snapshot: DocumentSnapshot) -> None:
    stats = completion_stats(snapshot.records)
    print(
        f"{stats.completed}/{stats.total} pallets made ({stats.percentage}%), "
        f"{stats.pending} pending"
    )
    if snapshot.pending:
        print("Local changes are waiting to be written back.")


def _print_error(exc: Exception) -> int:
    print(f"Error: {exc}", file=sys.stderr)
    if isinstance(exc, ConflictError):
        print("Run 'palletsync sync --discard' to reload the document.", file=sys.stderr)
    return 1


def command_status(args: argparse.Namespace) -> int:
    try:
        service = _open_service()
        snapshot = service.get_snapshot()
    except PalletSyncError as exc:
        return _print_error(exc)

    print(f"Document : {service.cache.label}")
    print(f"Version  : {short_token(snapshot.version)}")
    if snapshot.modified_at:
        print(f"Modified : {snapshot.modified_at.isoformat()}")
    _print_summary(snapshot)
    jobs = unique_values(snapshot.records, "job_number")
    if jobs:
        print(f"Jobs     : {', '.join(jobs)}")
    for entry in conflicts.recent(limit=args.conflicts):
        print(
            f"Conflict at {entry['timestamp']}: expected {short_token(str(entry['expected_version']))}, "
            f"found {short_token(str(entry['actual_version']))}"
        )
    return 0


def command_list(args: argparse.Namespace) -> int:
    try:
        service = _open_service()
        records = service.get_records()
    except PalletSyncError as exc:
        return _print_error(exc)

    options = FilterOptions(
        search_query=args.search or "",
        status_filter=args.status,
        job_filter=args.job or [],
        size_filter=args.size or [],
    )
    matching = filter_pallets(records, options)
    if args.json:
        print(json.dumps([pallet.to_dict() for pallet in matching], indent=2))
        return 0

    for group in group_by_job_and_release(matching):
        print(
            f"Job {group.job_number} / Release {group.release_number}: "
            f"{group.completed_count}/{group.total_count} ({group.completion_percentage}%)"
        )
        for pallet in group.pallets:
            mark = "x" if pallet.made else " "
            details = " ".join(value for value in (pallet.size, pallet.elevation) if value)
            print(f"  [{mark}] {pallet.id}  {details}".rstrip())
    return 0


def command_toggle(args: argparse.Namespace) -> int:
    try:
        service = _open_service()
        if args.made is None:
            record = service.get_snapshot().find(args.pallet_id)
            current = record.made if record else False
        else:
            current = not args.made
        snapshot = _persist(service, service.toggle_one(args.pallet_id, current))
    except PalletSyncError as exc:
        return _print_error(exc)

    record = snapshot.find(args.pallet_id)
    if record is not None:
        print(f"{record.id}: {record.status}")
    _print_summary(snapshot)
    return 0


def command_bulk(args: argparse.Namespace) -> int:
    try:
        service = _open_service()
        snapshot = _persist(service, service.toggle_bulk(args.pallet_ids, args.made))
    except PalletSyncError as exc:
        return _print_error(exc)

    print(f"Updated {len(set(args.pallet_ids))} pallets.")
    _print_summary(snapshot)
    return 0


def command_add(args: argparse.Namespace) -> int:
    record = PalletTask(
        job_number=args.job_number.strip(),
        release_number=args.release_number.strip(),
        pallet_number=args.pallet_number.strip(),
        size=args.size.strip(),
        elevation=args.elevation.strip(),
        made=args.made,
        acc_list=args.acc_list.strip(),
        shipped_date=args.shipped_date.strip(),
        notes=args.notes.strip(),
    )
    try:
        service = _open_service()
        snapshot = _persist(service, service.insert(record))
    except PalletSyncError as exc:
        return _print_error(exc)

    print(f"Added pallet {record.id}.")
    _print_summary(snapshot)
    return 0


def command_import(args: argparse.Namespace) -> int:
    try:
        service = _open_service()
        result = importer.import_file(service, args.path)
        if result.inserted and not service.write_through:
            service.force_sync()
    except (importer.ImporterError, PalletSyncError) as exc:
        return _print_error(exc)

    print(f"Imported {result.inserted} pallets, skipped {result.skipped} existing.")
    return 0


def command_sync(args: argparse.Namespace) -> int:
    try:
        service = _open_service()
        snapshot = service.reload() if args.discard else service.force_sync()
    except PalletSyncError as exc:
        return _print_error(exc)

    print(f"Synchronised version {short_token(snapshot.version)}.")
    _print_summary(snapshot)
    return 0


def command_watch(args: argparse.Namespace) -> int:
    settings = load_settings()
    try:
        service = PalletService.from_settings(settings)
    except PalletSyncError as exc:
        return _print_error(exc)
    interval = args.interval or settings.sync_interval_seconds

    def _report(status: str, payload: dict) -> None:
        if status == "error":
            print("Sync failed, see the log for details.", file=sys.stderr)
        else:
            print(f"{status}: {payload['count']} pallets, version {short_token(str(payload['version']))}")

    controller = AutoSyncController(service.cache, interval_seconds=interval, status_callback=_report)
    print(f"Watching {settings.document} every {interval}s. Press Ctrl+C to stop.")
    try:
        with controller:
            while controller.is_running:
                time.sleep(1.0)
    except KeyboardInterrupt:
        print("Stopping.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Pallet checklist synchronisation tool")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", action="store_true", help="Log debug messages")
    subparsers = parser.add_subparsers(dest="command", required=True)

    status_parser = subparsers.add_parser("status", help="Show document version and progress")
    status_parser.add_argument("--conflicts", type=int, default=5, help="Number of recent conflicts to show")
    status_parser.set_defaults(func=command_status)

    list_parser = subparsers.add_parser("list", help="List pallets grouped by job and release")
    list_parser.add_argument("--job", action="append", help="Only show this job (repeatable)")
    list_parser.add_argument("--size", action="append", help="Only show this size (repeatable)")
    list_parser.add_argument(
        "--status",
        choices=("all", "pending", "completed"),
        default="all",
        help="Filter by completion status",
    )
    list_parser.add_argument("--search", help="Text to look for in pallet fields")
    list_parser.add_argument("--json", action="store_true", help="Print matching pallets as JSON")
    list_parser.set_defaults(func=command_list)

    toggle_parser = subparsers.add_parser("toggle", help="Flip the made flag of one pallet")
    toggle_parser.add_argument("pallet_id", help="Pallet id in the form JOB::RELEASE::PALLET")
    made_group = toggle_parser.add_mutually_exclusive_group()
    made_group.add_argument("--made", dest="made", action="store_true", default=None)
    made_group.add_argument("--not-made", dest="made", action="store_false", default=None)
    toggle_parser.set_defaults(func=command_toggle)

    bulk_parser = subparsers.add_parser("bulk", help="Set the made flag of several pallets")
    bulk_group = bulk_parser.add_mutually_exclusive_group(required=True)
    bulk_group.add_argument("--made", dest="made", action="store_true", default=None)
    bulk_group.add_argument("--not-made", dest="made", action="store_false", default=None)
    bulk_parser.add_argument("pallet_ids", nargs="+", help="Pallet ids to update")
    bulk_parser.set_defaults(func=command_bulk)

    add_parser = subparsers.add_parser("add", help="Add a pallet row")
    add_parser.add_argument("job_number")
    add_parser.add_argument("release_number")
    add_parser.add_argument("pallet_number")
    add_parser.add_argument("--size", default="")
    add_parser.add_argument("--elevation", default="")
    add_parser.add_argument("--acc-list", default="")
    add_parser.add_argument("--shipped-date", default="")
    add_parser.add_argument("--notes", default="")
    add_parser.add_argument("--made", action="store_true", help="Mark the new pallet as made")
    add_parser.set_defaults(func=command_add)

    import_parser = subparsers.add_parser("import", help="Import pallets from a CSV or XLSX file")
    import_parser.add_argument("path")
    import_parser.set_defaults(func=command_import)

    sync_parser = subparsers.add_parser("sync", help="Write back pending changes or refresh")
    sync_parser.add_argument(
        "--discard",
        action="store_true",
        help="Drop pending local changes and reload the document",
    )
    sync_parser.set_defaults(func=command_sync)

    watch_parser = subparsers.add_parser("watch", help="Keep synchronising until interrupted")
    watch_parser.add_argument("--interval", type=int, help="Seconds between syncs")
    watch_parser.set_defaults(func=command_watch)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO, console=args.command == "watch")
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
