"""Centralised helpers for managing PalletSync application directories."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable

_APP_ENV_VARS: Iterable[str] = ("LOCALAPPDATA", "APPDATA")


def _detect_base_directory() -> Path:
    override = os.environ.get("PALLETSYNC_HOME")
    if override:
        return Path(override).expanduser().resolve()
    for env_var in _APP_ENV_VARS:
        value = os.environ.get(env_var)
        if value:
            return Path(value).expanduser().resolve() / "PalletSync"
    return Path.home().resolve() / ".palletsync"


APP_DIR: Path = _detect_base_directory()
TOKENS_DIR: Path = APP_DIR / "tokens"
LOGS_DIR: Path = APP_DIR / "logs"
DATA_DIR: Path = APP_DIR / "data"


def ensure_directory(path: Path) -> Path:
    """Ensure that ``path`` exists, returning the :class:`~pathlib.Path`."""

    path.mkdir(parents=True, exist_ok=True)
    return path


def ensure_app_structure() -> None:
    """Create the base directories required for application data."""

    for directory in (APP_DIR, TOKENS_DIR, LOGS_DIR, DATA_DIR):
        ensure_directory(directory)


def _rooted(base: Path, parts: Iterable[str]) -> Path:
    ensure_app_structure()
    target = base.joinpath(*parts)
    if target.parent and not target.parent.exists():
        target.parent.mkdir(parents=True, exist_ok=True)
    return target


def data_path(*parts: str) -> Path:
    """Return a path rooted inside :data:`DATA_DIR`, creating parent directories."""

    return _rooted(DATA_DIR, parts)


def logs_path(*parts: str) -> Path:
    return _rooted(LOGS_DIR, parts)


def tokens_path(*parts: str) -> Path:
    return _rooted(TOKENS_DIR, parts)


def config_path(*parts: str) -> Path:
    return _rooted(APP_DIR, parts)


__all__ = [
    "APP_DIR",
    "TOKENS_DIR",
    "LOGS_DIR",
    "DATA_DIR",
    "config_path",
    "data_path",
    "ensure_app_structure",
    "ensure_directory",
    "logs_path",
    "tokens_path",
]
