"""Photo API routes: check hashes, upload, list, get, download, delete."""

import logging
import tempfile
from datetime import datetime, timezone
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from photosync.errors import FileTooLarge
from photosync.server.auth.dependencies import require_api_key
from photosync.server.config import get_settings
from photosync.server.db.session import get_db
from photosync.server.limiter import BULK_LIMIT, READ_LIMIT, limiter
from photosync.server.photos import index, service
from photosync.server.photos.models import (
    CheckHashesRequest,
    CheckHashesResult,
    PhotoListResponse,
    PhotoResponse,
    UploadResult,
)
from photosync.server.photos.storage import PhotoStorage, get_storage

router = APIRouter(prefix="/api/photos", tags=["photos"], dependencies=[Depends(require_api_key)])
log = logging.getLogger(__name__)

# Uploads up to this size stay in memory while spooling; larger ones go to a temp file
_SPOOL_MEMORY_BYTES = 8 * 1024 * 1024
MAX_PAGE_SIZE = 100


def _as_utc(value: Optional[datetime]) -> datetime:
    """Default to now; treat naive timestamps as UTC."""
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@router.post("/check", response_model=CheckHashesResult)
@limiter.limit(BULK_LIMIT)
async def check_hashes(
    request: Request,
    body: CheckHashesRequest,
    session: Annotated[AsyncSession, Depends(get_db)],
) -> CheckHashesResult:
    """Return which of the given fingerprints already exist on the server."""
    max_hashes = get_settings().max_check_hashes
    if len(body.hashes) > max_hashes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Maximum {max_hashes} hashes can be checked at once.",
        )
    try:
        result = await service.check_fingerprints(session, body.hashes)
    except ValueError as e:
        log.warning("check_hashes rejected: %s", e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    log.info("check_hashes requested=%d existing=%d", len(body.hashes), len(result.existing))
    return result


@router.post("/upload", response_model=UploadResult)
@limiter.limit(BULK_LIMIT)
async def upload_photo(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
    storage: Annotated[PhotoStorage, Depends(get_storage)],
    filename: Annotated[str, Query(min_length=1)],
    date_taken: Optional[datetime] = None,
    fingerprint: Annotated[Optional[str], Query(alias="hash")] = None,
) -> UploadResult:
    """
    Upload one photo. Query params: filename, date_taken (ISO 8601), optional hash.
    Body: raw file bytes. When hash names content already stored, the body is not read.
    """
    duplicate = await service.find_duplicate(session, fingerprint)
    if duplicate is not None:
        return duplicate

    max_bytes = storage.max_file_size_bytes
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=str(FileTooLarge(max_bytes)),
        )

    with tempfile.SpooledTemporaryFile(max_size=_SPOOL_MEMORY_BYTES) as spool:
        received = 0
        async for chunk in request.stream():
            received += len(chunk)
            if received > max_bytes:
                log.warning("upload_photo filename=%r exceeded %d bytes", filename, max_bytes)
                raise HTTPException(
                    status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                    detail=str(FileTooLarge(max_bytes)),
                )
            spool.write(chunk)
        if received == 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="No file provided or file is empty.",
            )
        spool.seek(0)
        try:
            result = await service.accept_upload(
                session, storage, spool, filename, _as_utc(date_taken), claimed_fingerprint=fingerprint
            )
        except FileTooLarge as e:
            raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail=str(e))
        except ValueError as e:
            log.warning("Invalid upload attempt filename=%r: %s", filename, e)
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except OSError:
            log.exception("Error storing photo filename=%r", filename)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="An error occurred while uploading the photo.",
            )
    # Commit before responding so a retried upload always sees this record
    try:
        await session.commit()
    except Exception:
        log.exception("upload_photo commit failed filename=%r", filename)
        if not result.is_duplicate:
            storage.delete(result.stored_path)
        raise
    log.info(
        "upload_photo filename=%r size=%d duplicate=%s path=%s",
        filename, received, result.is_duplicate, result.stored_path,
    )
    return result


@router.get("", response_model=PhotoListResponse)
@limiter.limit(READ_LIMIT)
async def list_photos(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
    skip: int = 0,
    take: int = 50,
) -> PhotoListResponse:
    """Page through stored photos, newest capture date first."""
    skip = max(0, skip)
    take = min(max(1, take), MAX_PAGE_SIZE)
    photos = await index.list_page(session, skip, take)
    total = await index.count(session)
    return PhotoListResponse(
        photos=[PhotoResponse.model_validate(p) for p in photos],
        total_count=total,
        skip=skip,
        take=take,
    )


@router.get("/{photo_id}", response_model=PhotoResponse)
@limiter.limit(READ_LIMIT)
async def get_photo(
    request: Request,
    photo_id: str,
    session: Annotated[AsyncSession, Depends(get_db)],
) -> PhotoResponse:
    """Return one stored photo record."""
    photo = await index.find_by_id(session, photo_id)
    if photo is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Photo not found.")
    return PhotoResponse.model_validate(photo)


@router.get("/{photo_id}/file")
@limiter.limit(BULK_LIMIT)
async def download_photo(
    request: Request,
    photo_id: str,
    session: Annotated[AsyncSession, Depends(get_db)],
    storage: Annotated[PhotoStorage, Depends(get_storage)],
) -> FileResponse:
    """Download the stored bytes of one photo."""
    photo = await index.find_by_id(session, photo_id)
    if photo is None or not storage.exists(photo.stored_path):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Photo not found.")
    target = storage.resolve_absolute_path(photo.stored_path)
    return FileResponse(
        path=target,
        filename=photo.original_filename,
        media_type="application/octet-stream",
    )


@router.delete("/{photo_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(BULK_LIMIT)
async def delete_photo(
    request: Request,
    photo_id: str,
    session: Annotated[AsyncSession, Depends(get_db)],
    storage: Annotated[PhotoStorage, Depends(get_storage)],
) -> Response:
    """Delete a photo record and its file."""
    try:
        deleted = await service.delete_photo(session, storage, photo_id)
    except ValueError as e:
        log.warning("delete_photo %s rejected: %s", photo_id, e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Photo not found.")
    await session.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
