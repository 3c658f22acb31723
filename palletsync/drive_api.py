"""Google Drive API helpers for the pallet checklist document."""
from __future__ import annotations

import io
import os
from pathlib import Path
from typing import Dict, List, Optional

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseDownload, MediaIoBaseUpload

from palletsync.errors import TransportError
from palletsync.google_credentials import (
    CredentialsFileInvalidError,
    is_service_account_file,
    load_service_account_data,
)

DEFAULT_SCOPES = ["https://www.googleapis.com/auth/drive"]
XLSX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
METADATA_FIELDS = "id, name, modifiedTime, size"


class AuthenticationError(TransportError):
    """Raised when Drive credentials cannot be loaded or refreshed."""


def _oauth_credentials(secret_path: str, token_path: str, scopes: List[str]):
    credentials = None
    if token_path and os.path.exists(token_path):
        credentials = Credentials.from_authorized_user_file(token_path, scopes)

    if not credentials or not credentials.valid:
        if credentials and credentials.expired and credentials.refresh_token:
            credentials.refresh(Request())
        else:
            flow = InstalledAppFlow.from_client_secrets_file(secret_path, scopes)
            credentials = flow.run_local_server(port=0)
        if token_path:
            os.makedirs(os.path.dirname(token_path) or ".", exist_ok=True)
            with open(token_path, "w", encoding="utf-8") as handle:
                handle.write(credentials.to_json())
    return credentials


def init_client(
    credentials_path: str,
    token_path: str = "",
    scopes: Optional[List[str]] = None,
):
    """Initialise a Drive API client.

    A service account key is used directly.  Any other client secret goes
    through the installed-app OAuth flow, caching the user token at
    ``token_path``.
    """

    scopes = scopes or DEFAULT_SCOPES
    path = Path(os.path.expanduser(credentials_path))
    if not path.exists():
        raise AuthenticationError(f"Credentials file not found: {path}")

    try:
        if is_service_account_file(path):
            credentials = service_account.Credentials.from_service_account_info(
                load_service_account_data(path), scopes=scopes
            )
        else:
            credentials = _oauth_credentials(str(path), token_path, scopes)
    except (CredentialsFileInvalidError, GoogleAuthError, ValueError) as exc:
        raise AuthenticationError(str(exc) or "Credentials could not be loaded") from exc

    return build("drive", "v3", credentials=credentials, cache_discovery=False)


def http_status(exc: HttpError) -> int:
    status = getattr(exc, "status_code", None)
    if status is not None:
        try:
            return int(status)
        except (TypeError, ValueError):
            return 0
    resp = getattr(exc, "resp", None)
    if resp is not None:
        try:
            return int(getattr(resp, "status", 0))
        except (TypeError, ValueError):
            return 0
    return 0


def find_file(service, name: str, parent_id: Optional[str] = None) -> Optional[Dict]:
    """Return metadata of the first non-trashed file called ``name``."""

    escaped_name = name.replace("'", "\\'")
    query_parts = [f"name = '{escaped_name}'", "trashed = false"]
    if parent_id:
        query_parts.append(f"'{parent_id}' in parents")
    response = (
        service.files()
        .list(
            q=" and ".join(query_parts),
            spaces="drive",
            fields=f"files({METADATA_FIELDS})",
            pageSize=1,
        )
        .execute()
    )
    files = response.get("files", [])
    if not files:
        return None
    return files[0]


def get_metadata(service, file_id: str) -> Dict:
    return service.files().get(fileId=file_id, fields=METADATA_FIELDS).execute()


def download_file(service, file_id: str) -> bytes:
    """Download a file's content as bytes."""

    request = service.files().get_media(fileId=file_id)
    buffer = io.BytesIO()
    downloader = MediaIoBaseDownload(buffer, request)
    done = False
    while not done:
        _, done = downloader.next_chunk()
    return buffer.getvalue()


def update_file(service, file_id: str, content: bytes, mime_type: str = XLSX_MIME_TYPE) -> Dict:
    """Replace the content of an existing file."""

    media = MediaIoBaseUpload(io.BytesIO(content), mimetype=mime_type, resumable=False)
    return (
        service.files()
        .update(fileId=file_id, media_body=media, fields=METADATA_FIELDS)
        .execute()
    )


__all__ = [
    "AuthenticationError",
    "DEFAULT_SCOPES",
    "HttpError",
    "XLSX_MIME_TYPE",
    "download_file",
    "find_file",
    "get_metadata",
    "http_status",
    "init_client",
    "update_file",
]
