"""Upload acceptance: fingerprint, dedup, place, record. Reconciles duplicate races."""

import logging
from datetime import datetime
from typing import BinaryIO, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from photosync import digest
from photosync.errors import ConflictError, ValidationError
from photosync.server.photos import index
from photosync.server.photos.models import CheckHashesResult, StoredPhoto, UploadResult
from photosync.server.photos.storage import PhotoStorage, remaining_length

log = logging.getLogger(__name__)


async def check_fingerprints(session: AsyncSession, raw_hashes: Iterable[str]) -> CheckHashesResult:
    """
    Split fingerprints into existing and missing. Every entry must be a valid
    fingerprint (ValidationError otherwise). Output is de-duplicated and normalized.
    """
    normalized = []
    seen = set()
    for raw in raw_hashes:
        fp = digest.validate(raw)
        if fp not in seen:
            seen.add(fp)
            normalized.append(fp)
    if not normalized:
        return CheckHashesResult(existing=[], missing=[])
    found = await index.existing(session, normalized)
    return CheckHashesResult(
        existing=[fp for fp in normalized if fp in found],
        missing=[fp for fp in normalized if fp not in found],
    )


async def find_duplicate(session: AsyncSession, claimed_fingerprint: Optional[str]) -> Optional[UploadResult]:
    """If the claimed fingerprint is already stored, the duplicate result; else None."""
    if not claimed_fingerprint or not digest.is_valid(claimed_fingerprint):
        return None
    canonical = await index.find_by_fingerprint(session, digest.normalize(claimed_fingerprint))
    if canonical is None:
        return None
    log.info("Duplicate short-circuit fingerprint=%s id=%s", canonical.fingerprint, canonical.id)
    return UploadResult.for_photo(canonical, is_duplicate=True)


async def accept_upload(
    session: AsyncSession,
    storage: PhotoStorage,
    stream: BinaryIO,
    original_filename: str,
    date_taken: datetime,
    claimed_fingerprint: Optional[str] = None,
) -> UploadResult:
    """
    Store one upload unless its content is already known. The stream must be seekable.
    A lost insert race (ConflictError) deletes the file just placed and returns the
    canonical record marked as duplicate.
    """
    fingerprint = digest.compute_digest(stream)
    if claimed_fingerprint:
        claimed = digest.validate(claimed_fingerprint)
        if claimed != fingerprint:
            raise ValidationError("Uploaded content does not match the supplied hash")

    canonical = await index.find_by_fingerprint(session, fingerprint)
    if canonical is not None:
        log.info("Duplicate photo detected: %s (id=%s)", fingerprint, canonical.id)
        return UploadResult.for_photo(canonical, is_duplicate=True)

    size = remaining_length(stream) or 0
    stored_path = storage.store(stream, original_filename, date_taken)
    try:
        photo = StoredPhoto.create(original_filename, stored_path, fingerprint, size, date_taken)
        await index.record_new(session, photo)
    except ConflictError as e:
        storage.delete(stored_path)
        log.info("Concurrent duplicate resolved: %s -> canonical %s", fingerprint, e.existing.id)
        return UploadResult.for_photo(e.existing, is_duplicate=True)
    except Exception:
        storage.delete(stored_path)
        raise
    log.info("Photo uploaded: %s -> %s", photo.id, stored_path)
    return UploadResult.for_photo(photo, is_duplicate=False)


async def delete_photo(session: AsyncSession, storage: PhotoStorage, photo_id: str) -> bool:
    """Remove record and backing file. False if no such record."""
    photo = await index.remove(session, photo_id)
    if photo is None:
        return False
    if not storage.delete(photo.stored_path):
        log.warning("delete_photo: record %s had no file at %s", photo_id, photo.stored_path)
    log.info("Photo deleted: %s", photo_id)
    return True
