"""Dedup index: fingerprint lookups and insert-if-absent over the photos table."""

import logging
from typing import Iterable, List, Optional, Set

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from photosync.errors import ConflictError
from photosync.server.photos.models import StoredPhoto

log = logging.getLogger(__name__)

_CHUNK = 500  # stay under SQLite parameter limit


async def existing(session: AsyncSession, fingerprints: Iterable[str]) -> Set[str]:
    """Return the subset of (normalized) fingerprints already stored. Empty input: no query."""
    wanted = list(set(fingerprints))
    out: Set[str] = set()
    for i in range(0, len(wanted), _CHUNK):
        part = wanted[i : i + _CHUNK]
        result = await session.execute(
            select(StoredPhoto.fingerprint).where(StoredPhoto.fingerprint.in_(part))
        )
        out.update(row[0] for row in result.all())
    return out


async def find_by_fingerprint(session: AsyncSession, fingerprint: str) -> Optional[StoredPhoto]:
    """Return the canonical record for fingerprint, or None."""
    result = await session.execute(
        select(StoredPhoto).where(StoredPhoto.fingerprint == fingerprint.lower())
    )
    return result.scalar_one_or_none()


async def find_by_id(session: AsyncSession, photo_id: str) -> Optional[StoredPhoto]:
    """Return record by id or None."""
    return await session.get(StoredPhoto, photo_id)


async def record_new(session: AsyncSession, photo: StoredPhoto) -> StoredPhoto:
    """
    Insert photo and flush. If the fingerprint is already taken (e.g. a concurrent
    upload of the same content won), roll back and raise ConflictError carrying the
    canonical record. The session must not hold other pending changes.
    """
    session.add(photo)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        canonical = await find_by_fingerprint(session, photo.fingerprint)
        if canonical is None:
            # Unique violation on something other than fingerprint (stored_path)
            raise
        log.info("record_new conflict fingerprint=%s canonical=%s", photo.fingerprint, canonical.id)
        raise ConflictError(photo.fingerprint, existing=canonical)
    return photo


async def list_page(session: AsyncSession, skip: int, take: int) -> List[StoredPhoto]:
    """Records ordered by capture date, newest first."""
    result = await session.execute(
        select(StoredPhoto)
        .order_by(StoredPhoto.date_taken.desc(), StoredPhoto.uploaded_at.desc())
        .offset(skip)
        .limit(take)
    )
    return list(result.scalars().all())


async def count(session: AsyncSession) -> int:
    """Total number of stored records."""
    result = await session.execute(select(func.count()).select_from(StoredPhoto))
    return int(result.scalar_one())


async def remove(session: AsyncSession, photo_id: str) -> Optional[StoredPhoto]:
    """Delete record by id and return it, or None if absent. Caller removes the file."""
    photo = await session.get(StoredPhoto, photo_id)
    if photo is None:
        return None
    await session.delete(photo)
    await session.flush()
    return photo
