"""Remote stores holding the checklist document.

Every store speaks the same three-call protocol: fetch the document
metadata, download the full content, upload the full content.  There is no
partial or row-level write and no server-side conditional write, which is
why the sync cache compares content fingerprints before every upload.
"""
from __future__ import annotations

import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from google.auth import exceptions as google_auth_exceptions

from palletsync import drive_api
from palletsync.errors import NotFoundError, TransportError, ValidationError
from palletsync.models import RemoteMetadata
from palletsync.settings import PalletSyncSettings

logger = logging.getLogger(__name__)

LOCAL_SUFFIXES = {".xlsx", ".xlsm"}


class RecordStore(Protocol):
    def fetch_metadata(self) -> RemoteMetadata:
        ...

    def download(self) -> bytes:
        ...

    def upload(self, raw: bytes) -> None:
        ...


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    cleaned = value
    if cleaned.endswith("Z"):
        cleaned = cleaned[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(cleaned)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class LocalFileRecordStore:
    """Checklist stored as a file on a local or mounted filesystem."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def __repr__(self) -> str:
        return f"LocalFileRecordStore({str(self.path)!r})"

    def fetch_metadata(self) -> RemoteMetadata:
        try:
            stat = self.path.stat()
        except FileNotFoundError as exc:
            raise NotFoundError(f"Document not found: {self.path}") from exc
        except OSError as exc:
            raise TransportError(f"Document metadata unavailable: {exc}") from exc
        return RemoteMetadata(
            modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            size=stat.st_size,
        )

    def download(self) -> bytes:
        try:
            return self.path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError(f"Document not found: {self.path}") from exc
        except OSError as exc:
            raise TransportError(f"Document could not be read: {exc}") from exc

    def upload(self, raw: bytes) -> None:
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            handle, temp_name = tempfile.mkstemp(prefix=".palletsync_", dir=str(directory))
            try:
                with os.fdopen(handle, "wb") as stream:
                    stream.write(raw)
                os.replace(temp_name, self.path)
            except BaseException:
                if os.path.exists(temp_name):
                    os.remove(temp_name)
                raise
        except OSError as exc:
            raise TransportError(f"Document could not be written: {exc}") from exc
        logger.debug("Wrote %d bytes to %s", len(raw), self.path)


_TRANSPORT_FAILURES = (
    drive_api.HttpError,
    google_auth_exceptions.GoogleAuthError,
    OSError,
)


class DriveRecordStore:
    """Checklist stored as a file in Google Drive."""

    def __init__(
        self,
        service,
        *,
        file_id: Optional[str] = None,
        file_name: Optional[str] = None,
        folder_id: Optional[str] = None,
    ) -> None:
        if not file_id and not file_name:
            raise ValueError("Either file_id or file_name must be provided")
        self._service = service
        self._configured_id = file_id or None
        self._file_name = file_name
        self._folder_id = folder_id or None
        self._resolved_id: Optional[str] = file_id or None

    def __repr__(self) -> str:
        target = self._configured_id or self._file_name
        return f"DriveRecordStore({target!r})"

    def _translate(self, exc: Exception, action: str) -> Exception:
        if isinstance(exc, drive_api.HttpError) and drive_api.http_status(exc) == 404:
            if not self._configured_id:
                self._resolved_id = None
            return NotFoundError(f"Drive document not found while trying to {action}")
        return TransportError(f"Drive request failed while trying to {action}: {exc}")

    def _file_id(self) -> str:
        if self._resolved_id:
            return self._resolved_id
        try:
            metadata = drive_api.find_file(self._service, str(self._file_name), self._folder_id)
        except _TRANSPORT_FAILURES as exc:
            raise self._translate(exc, "locate the document") from exc
        if not metadata:
            raise NotFoundError(f"Drive document not found: {self._file_name}")
        self._resolved_id = str(metadata["id"])
        logger.info("Resolved Drive document %s to id %s", self._file_name, self._resolved_id)
        return self._resolved_id

    def fetch_metadata(self) -> RemoteMetadata:
        file_id = self._file_id()
        try:
            metadata = drive_api.get_metadata(self._service, file_id)
        except _TRANSPORT_FAILURES as exc:
            raise self._translate(exc, "fetch metadata") from exc
        try:
            size = int(metadata.get("size") or 0)
        except (TypeError, ValueError):
            size = 0
        return RemoteMetadata(modified_at=_parse_iso(metadata.get("modifiedTime")), size=size)

    def download(self) -> bytes:
        file_id = self._file_id()
        try:
            return drive_api.download_file(self._service, file_id)
        except _TRANSPORT_FAILURES as exc:
            raise self._translate(exc, "download") from exc

    def upload(self, raw: bytes) -> None:
        file_id = self._file_id()
        try:
            drive_api.update_file(self._service, file_id, raw)
        except _TRANSPORT_FAILURES as exc:
            raise self._translate(exc, "upload") from exc
        logger.debug("Uploaded %d bytes to Drive file %s", len(raw), file_id)


def is_local_target(document: str) -> bool:
    candidate = Path(os.path.expanduser(document))
    if candidate.suffix.lower() in LOCAL_SUFFIXES and (
        candidate.is_absolute() or candidate.parent != Path(".")
    ):
        return True
    return candidate.exists()


def build_store(settings: PalletSyncSettings, *, service=None) -> RecordStore:
    """Factory used by the service layer to construct the configured store."""

    document = settings.document
    if not document:
        raise ValidationError("No checklist document configured")

    if service is None and is_local_target(document):
        return LocalFileRecordStore(document)

    if service is None:
        service = drive_api.init_client(settings.credentials_path, settings.token_path)
    if Path(document).suffix.lower() in LOCAL_SUFFIXES or settings.folder_id:
        return DriveRecordStore(service, file_name=Path(document).name, folder_id=settings.folder_id)
    return DriveRecordStore(service, file_id=document)


__all__ = [
    "DriveRecordStore",
    "LocalFileRecordStore",
    "RecordStore",
    "build_store",
    "is_local_target",
]
