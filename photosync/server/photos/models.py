"""StoredPhoto SQLAlchemy model and Pydantic schemas."""

import uuid
from datetime import datetime, timezone
from typing import List

from pydantic import BaseModel, ConfigDict
from sqlalchemy import BigInteger, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from photosync.errors import ValidationError
from photosync.server.db.session import Base
from photosync.server.photos.storage import sanitize_filename


class StoredPhoto(Base):
    """Canonical record for one piece of content. Fingerprint is unique."""

    __tablename__ = "photos"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    stored_path: Mapped[str] = mapped_column(String(1024), nullable=False, unique=True)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    date_taken: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    @classmethod
    def create(
        cls,
        original_filename: str,
        stored_path: str,
        fingerprint: str,
        file_size: int,
        date_taken: datetime,
    ) -> "StoredPhoto":
        """Build a new record with a fresh id and upload time. Raises ValidationError on bad input."""
        if not original_filename or not original_filename.strip():
            raise ValidationError("Original filename cannot be empty")
        if not stored_path or not stored_path.strip():
            raise ValidationError("Stored path cannot be empty")
        if not fingerprint or not fingerprint.strip():
            raise ValidationError("Fingerprint cannot be empty")
        if file_size <= 0:
            raise ValidationError("File size must be positive")
        return cls(
            id=str(uuid.uuid4()),
            original_filename=sanitize_filename(original_filename),
            stored_path=stored_path,
            fingerprint=fingerprint.lower(),
            file_size=file_size,
            date_taken=date_taken,
            uploaded_at=datetime.now(timezone.utc),
        )


# Pydantic schemas for API
class CheckHashesRequest(BaseModel):
    """Fingerprints to look up."""

    hashes: List[str]


class CheckHashesResult(BaseModel):
    """Which fingerprints the server already has."""

    existing: List[str]
    missing: List[str]


class UploadResult(BaseModel):
    """Outcome of an upload. is_duplicate: content was already stored."""

    id: str
    stored_path: str
    uploaded_at: datetime
    is_duplicate: bool

    @classmethod
    def for_photo(cls, photo: StoredPhoto, is_duplicate: bool) -> "UploadResult":
        return cls(
            id=photo.id,
            stored_path=photo.stored_path,
            uploaded_at=photo.uploaded_at,
            is_duplicate=is_duplicate,
        )


class PhotoResponse(BaseModel):
    """Stored photo as returned by API."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    original_filename: str
    stored_path: str
    fingerprint: str
    file_size: int
    date_taken: datetime
    uploaded_at: datetime


class PhotoListResponse(BaseModel):
    """One page of photos plus the total count."""

    photos: List[PhotoResponse]
    total_count: int
    skip: int
    take: int
