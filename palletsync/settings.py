"""Application configuration helpers for PalletSync."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

from palletsync import app_paths
from palletsync.codec import DEFAULT_SHEET_NAME

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = "settings.json"
DEFAULT_DOCUMENT_NAME = "Release-CheckList.xlsx"
DEFAULT_SYNC_INTERVAL = 120
MIN_SYNC_INTERVAL = 15
MAX_SYNC_INTERVAL = 3600

ENV_OVERRIDES: Mapping[str, str] = {
    "document": "PALLETSYNC_DOCUMENT",
    "folder_id": "PALLETSYNC_FOLDER_ID",
    "credentials_path": "PALLETSYNC_CREDENTIALS_PATH",
    "token_path": "PALLETSYNC_TOKEN_PATH",
    "sheet_name": "PALLETSYNC_SHEET_NAME",
    "sync_interval_seconds": "PALLETSYNC_SYNC_INTERVAL",
    "write_through": "PALLETSYNC_WRITE_THROUGH",
}

_TRUE_WORDS = frozenset({"true", "1", "yes", "on"})
_FALSE_WORDS = frozenset({"false", "0", "no", "off"})


@dataclass
class PalletSyncSettings:
    """Where the checklist lives and how often it is synchronised.

    ``document`` is either a Google Drive file id, a file name looked up in
    ``folder_id``, or a path to a local ``.xlsx`` file.
    """

    document: str
    credentials_path: str = ""
    token_path: str = ""
    folder_id: str = ""
    sheet_name: str = DEFAULT_SHEET_NAME
    sync_interval_seconds: int = DEFAULT_SYNC_INTERVAL
    write_through: bool = True

    def to_json(self) -> Dict[str, object]:
        return asdict(self)


def default_settings_path() -> Path:
    return app_paths.config_path(SETTINGS_FILENAME)


def _defaults() -> Dict[str, object]:
    return {
        "document": str(app_paths.data_path(DEFAULT_DOCUMENT_NAME)),
        "credentials_path": str(app_paths.config_path("credentials.json")),
        "token_path": str(app_paths.tokens_path("token.json")),
        "folder_id": "",
        "sheet_name": DEFAULT_SHEET_NAME,
        "sync_interval_seconds": DEFAULT_SYNC_INTERVAL,
        "write_through": True,
    }


def parse_bool(value: object, default: bool = True) -> bool:
    """Read a flag from JSON or the environment; unrecognised values keep ``default``."""

    if isinstance(value, bool):
        return value
    word = str(value).strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    logger.warning("Ignoring unrecognised boolean setting %r", value)
    return default


def clamp_interval(value: object) -> int:
    try:
        interval = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return DEFAULT_SYNC_INTERVAL
    return max(MIN_SYNC_INTERVAL, min(MAX_SYNC_INTERVAL, interval))


def _read_settings_file(path: Path) -> Dict[str, object]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Settings file %s could not be read: %s", path, exc)
        return {}
    if isinstance(payload, Mapping):
        return dict(payload)
    return {}


def load_settings(path: Optional[Path] = None) -> PalletSyncSettings:
    """Load settings from ``path``, creating the file with defaults when absent.

    Environment variables listed in :data:`ENV_OVERRIDES` take precedence over
    the file and are never written back.
    """

    path = Path(path) if path else default_settings_path()
    data = _defaults()
    stored = _read_settings_file(path)
    if not path.exists():
        save_settings(PalletSyncSettings(**data), path)  # type: ignore[arg-type]

    for key, value in stored.items():
        if key not in data:
            continue
        if key == "write_through":
            data[key] = parse_bool(value)
        elif isinstance(value, (str, int)):
            data[key] = value

    for key, env_var in ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value:
            data[key] = value

    return PalletSyncSettings(
        document=str(data["document"]).strip(),
        credentials_path=str(data["credentials_path"]),
        token_path=str(data["token_path"]),
        folder_id=str(data["folder_id"]).strip(),
        sheet_name=str(data["sheet_name"]).strip() or DEFAULT_SHEET_NAME,
        sync_interval_seconds=clamp_interval(data["sync_interval_seconds"]),
        write_through=parse_bool(data["write_through"]),
    )


def save_settings(settings: PalletSyncSettings, path: Optional[Path] = None) -> None:
    path = Path(path) if path else default_settings_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        json.dump(settings.to_json(), handle, indent=2)


__all__ = [
    "DEFAULT_SYNC_INTERVAL",
    "ENV_OVERRIDES",
    "PalletSyncSettings",
    "clamp_interval",
    "default_settings_path",
    "load_settings",
    "parse_bool",
    "save_settings",
]
