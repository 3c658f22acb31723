"""Exception hierarchy shared by the synchronisation engine."""
from __future__ import annotations

from typing import Iterable, Optional, Tuple


class PalletSyncError(Exception):
    """Base exception for pallet synchronisation errors."""


class NotFoundError(PalletSyncError):
    """Raised when the remote document or a requested pallet does not exist."""

    def __init__(self, message: str, *, missing_ids: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.missing_ids: Tuple[str, ...] = tuple(missing_ids)


class ConflictError(PalletSyncError):
    """Raised when the remote document changed since the last local read."""

    def __init__(
        self,
        message: str,
        *,
        expected_version: Optional[str] = None,
        actual_version: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.expected_version = expected_version
        self.actual_version = actual_version


class SchemaError(PalletSyncError):
    """Raised when the document does not contain the expected worksheet."""


class TransportError(PalletSyncError):
    """Raised when the remote store cannot be reached or rejects the request."""


class ValidationError(PalletSyncError, ValueError):
    """Raised when a pallet record is rejected before it reaches the cache."""


__all__ = [
    "ConflictError",
    "NotFoundError",
    "PalletSyncError",
    "SchemaError",
    "TransportError",
    "ValidationError",
]
