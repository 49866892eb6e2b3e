"""Sync batch, progress and result types shared by the orchestrator and the CLI."""

import functools
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, List, Optional


class ItemState(str, Enum):
    UNSYNCED = "unsynced"
    HASHING = "hashing"
    CHECKED_EXISTING = "checked_existing"
    CHECKED_MISSING = "checked_missing"
    UPLOADING = "uploading"
    SYNCED = "synced"
    FAILED = "failed"


class BatchState(str, Enum):
    IDLE = "idle"
    HASHING = "hashing"
    CHECKING_EXISTING = "checking_existing"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchState.COMPLETED, BatchState.CANCELLED, BatchState.FAILED)


@dataclass(frozen=True)
class PhotoDescriptor:
    """
    One local photo to sync. open() returns a fresh binary stream each call; the
    orchestrator opens it once to fingerprint and again to upload.
    """

    local_id: str
    filename: str
    captured_at: datetime
    open: Callable[[], BinaryIO] = field(compare=False, repr=False)

    @classmethod
    def from_path(
        cls,
        path: Path,
        local_id: Optional[str] = None,
        captured_at: Optional[datetime] = None,
    ) -> "PhotoDescriptor":
        """Describe a file on disk. captured_at defaults to the file's mtime (UTC)."""
        path = Path(path)
        if captured_at is None:
            captured_at = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        return cls(
            local_id=local_id or str(path.resolve()),
            filename=path.name,
            captured_at=captured_at,
            open=functools.partial(open, path, "rb"),
        )


@dataclass(frozen=True)
class SyncProgress:
    """Snapshot of a running batch. completed + failed never exceeds total."""

    total: int
    completed: int = 0
    failed: int = 0
    current_filename: Optional[str] = None
    is_cancelled: bool = False
    sequence: int = 0

    def __post_init__(self) -> None:
        if self.total < 0 or self.completed < 0 or self.failed < 0:
            raise ValueError("Progress counters cannot be negative")
        if self.completed + self.failed > self.total:
            raise ValueError(
                f"completed ({self.completed}) + failed ({self.failed}) exceeds total ({self.total})"
            )

    @property
    def fraction(self) -> float:
        return self.completed / self.total if self.total > 0 else 0.0

    @property
    def is_complete(self) -> bool:
        return self.completed + self.failed >= self.total


@dataclass(frozen=True)
class UploadResult:
    """Server response to an upload."""

    id: str
    stored_path: str
    uploaded_at: str
    is_duplicate: bool

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "UploadResult":
        return cls(
            id=str(data["id"]),
            stored_path=str(data["stored_path"]),
            uploaded_at=str(data.get("uploaded_at", "")),
            is_duplicate=bool(data.get("is_duplicate", False)),
        )


@dataclass
class SyncReport:
    """Outcome of one sync_batch run."""

    state: BatchState
    progress: SyncProgress
    synced: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    uploaded: Dict[str, UploadResult] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.state is BatchState.COMPLETED and not self.failed


@dataclass(frozen=True)
class SyncOptions:
    """Retry and concurrency tunables for the orchestrator."""

    max_retries: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    max_concurrent_uploads: int = 4
    max_concurrent_hashing: int = 4
    check_batch_size: int = 500

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.backoff_base < 0 or self.backoff_max < 0:
            raise ValueError("backoff values must be >= 0")
        if self.max_concurrent_uploads < 1 or self.max_concurrent_hashing < 1:
            raise ValueError("concurrency limits must be >= 1")
        if not 1 <= self.check_batch_size <= 1000:
            raise ValueError("check_batch_size must be between 1 and 1000")

    def backoff(self, attempt: int) -> float:
        """Delay before retry number attempt + 1."""
        return min(self.backoff_max, self.backoff_base * (2 ** attempt))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncOptions":
        """Build from a config mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


ProgressCallback = Callable[[SyncProgress], None]
