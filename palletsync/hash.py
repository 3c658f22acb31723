"""Content fingerprints used as optimistic concurrency tokens."""
from __future__ import annotations

import hashlib

SHORT_TOKEN_LENGTH = 12


def fingerprint(raw: bytes) -> str:
    """Return the SHA-256 hex digest of ``raw`` exactly as downloaded."""

    return hashlib.sha256(raw).hexdigest()


def short_token(token: str | None) -> str:
    """Abbreviate a fingerprint for log output."""

    if not token:
        return "-"
    return token[:SHORT_TOKEN_LENGTH]


__all__ = ["fingerprint", "short_token"]
