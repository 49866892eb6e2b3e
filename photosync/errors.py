"""Error types shared by server and client.

Filesystem and network failures are not wrapped: they surface as the builtin
``OSError`` and ``httpx.HTTPError`` families.
"""

from typing import Any, Optional


class PhotoSyncError(Exception):
    """Base class for PhotoSync errors."""


class ValidationError(PhotoSyncError, ValueError):
    """Bad filename, extension, size or fingerprint. Permanent; never retried."""


class InvalidPath(PhotoSyncError, ValueError):
    """A path would resolve outside the storage root."""


class FileTooLarge(ValidationError):
    """Upload exceeds the configured maximum size."""

    def __init__(self, max_bytes: int) -> None:
        super().__init__(f"File size exceeds maximum allowed size of {max_bytes // (1024 * 1024)}MB")
        self.max_bytes = max_bytes


class ConflictError(PhotoSyncError):
    """Fingerprint already has a canonical record. Resolve to that record, not a failure."""

    def __init__(self, fingerprint: str, existing: Optional[Any] = None) -> None:
        super().__init__(f"Fingerprint already stored: {fingerprint}")
        self.fingerprint = fingerprint
        self.existing = existing
