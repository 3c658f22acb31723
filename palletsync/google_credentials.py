"""Inspection of the Google credential file configured for the Drive store.

Two kinds of file are accepted: a service account key, used as is, and an
OAuth client secret (``installed`` or ``web``), which goes through the
browser consent flow in :mod:`palletsync.drive_api`.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Mapping, Sequence

__all__ = [
    "CLIENT_SECRET_FIELDS",
    "CredentialsFileInvalidError",
    "KIND_CLIENT_SECRET",
    "KIND_SERVICE_ACCOUNT",
    "SERVICE_ACCOUNT_FIELDS",
    "credentials_kind",
    "is_service_account_file",
    "load_json_file",
    "load_service_account_data",
]

KIND_SERVICE_ACCOUNT = "service_account"
KIND_CLIENT_SECRET = "client_secret"

SERVICE_ACCOUNT_FIELDS: Sequence[str] = (
    "type",
    "project_id",
    "private_key_id",
    "private_key",
    "client_email",
    "token_uri",
)
CLIENT_SECRET_FIELDS: Sequence[str] = ("client_id", "client_secret", "token_uri")


class CredentialsFileInvalidError(Exception):
    """Raised when a credential JSON file is unreadable or missing required data."""


def load_json_file(path: Path) -> Mapping[str, object]:
    """Read ``path`` as a JSON object, tolerating a UTF-8 byte order mark."""

    try:
        text = Path(path).read_text(encoding="utf-8-sig").strip()
    except OSError as exc:
        raise CredentialsFileInvalidError(f"Credentials file could not be read: {exc}") from exc
    if not text:
        raise CredentialsFileInvalidError("Credentials file is empty.")

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise CredentialsFileInvalidError(f"Credentials JSON parse error: {exc.msg}") from exc
    if not isinstance(payload, Mapping):
        raise CredentialsFileInvalidError("Credentials JSON must contain an object.")
    return payload


def _missing(data: Mapping[str, object], fields: Sequence[str]) -> list[str]:
    return [
        name
        for name in fields
        if not isinstance(data.get(name), str) or not str(data.get(name)).strip()
    ]


def credentials_kind(payload: Mapping[str, object]) -> str:
    """Classify a parsed credential file.

    Raises :class:`CredentialsFileInvalidError` for anything that is neither a
    service account key nor an OAuth client secret.
    """

    if payload.get("type") == "service_account":
        return KIND_SERVICE_ACCOUNT
    for section in ("installed", "web"):
        client = payload.get(section)
        if isinstance(client, Mapping):
            missing = _missing(client, CLIENT_SECRET_FIELDS)
            if missing:
                raise CredentialsFileInvalidError(
                    f"JSON missing fields: {', '.join(f'{section}.{name}' for name in missing)}"
                )
            return KIND_CLIENT_SECRET
    raise CredentialsFileInvalidError(
        "Credentials JSON is neither a service account key nor an OAuth client secret."
    )


def is_service_account_file(path: Path) -> bool:
    return credentials_kind(load_json_file(path)) == KIND_SERVICE_ACCOUNT


def _normalise_private_key(key: str) -> str:
    # Keys pasted through some editors arrive with literal "\n" sequences.
    key = key.replace("\r\n", "\n").replace("\r", "\n").replace("\\n", "\n")
    return key if key.endswith("\n") else key + "\n"


def load_service_account_data(path: Path) -> Dict[str, object]:
    """Return validated service account data without modifying ``path``."""

    data: Dict[str, object] = dict(load_json_file(path))
    missing = _missing(data, SERVICE_ACCOUNT_FIELDS)
    if data.get("type") != "service_account" and "type" not in missing:
        missing.append("type")
    if missing:
        raise CredentialsFileInvalidError(f"JSON missing fields: {', '.join(sorted(missing))}")

    data["private_key"] = _normalise_private_key(str(data["private_key"]))
    return data
