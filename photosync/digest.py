"""Content fingerprints: SHA-256 of file bytes as lowercase hex.

Both sides of the wire normalize with the same function, so lookups and
comparisons only ever see the normalized form.
"""

import hashlib
import re
from typing import BinaryIO, Optional

from photosync.errors import ValidationError

CHUNK_SIZE = 1024 * 1024
ALGORITHM_PREFIX = "sha256:"

_FINGERPRINT = re.compile(r"[0-9a-f]{64}")


def compute_digest(stream: BinaryIO) -> str:
    """Read stream to the end and return its SHA-256 hex digest.

    If the stream is seekable, its position is restored afterwards (also on error)
    so the caller can re-read the same bytes, e.g. to upload them.
    Raises OSError if the stream cannot be read.
    """
    start: Optional[int] = None
    try:
        if stream.seekable():
            start = stream.tell()
    except (AttributeError, OSError):
        start = None
    h = hashlib.sha256()
    try:
        while True:
            chunk = stream.read(CHUNK_SIZE)
            if not chunk:
                break
            h.update(chunk)
    finally:
        if start is not None:
            stream.seek(start)
    return h.hexdigest()


def compute_digest_bytes(body: bytes) -> str:
    """SHA-256 hex digest of an in-memory body."""
    return hashlib.sha256(body).hexdigest()


def normalize(raw: Optional[str]) -> str:
    """Trim, drop an optional ``sha256:`` prefix and lowercase. Blank input gives ""."""
    if raw is None:
        return ""
    value = raw.strip()
    # Loop so the result never starts with a prefix again (normalize is idempotent).
    while value[: len(ALGORITHM_PREFIX)].lower() == ALGORITHM_PREFIX:
        value = value[len(ALGORITHM_PREFIX):].strip()
    return value.lower()


def is_valid(raw: Optional[str]) -> bool:
    """True if raw normalizes to exactly 64 hex characters."""
    return bool(_FINGERPRINT.fullmatch(normalize(raw)))


def validate(raw: Optional[str]) -> str:
    """Return the normalized fingerprint or raise ValidationError."""
    value = normalize(raw)
    if not _FINGERPRINT.fullmatch(value):
        raise ValidationError(f"Invalid fingerprint: {raw!r}")
    return value
