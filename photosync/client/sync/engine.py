"""Sync logic: fingerprint a batch, ask the server which already exist, upload the rest.

A run moves through HASHING, CHECKING_EXISTING and UPLOADING and ends COMPLETED,
CANCELLED or FAILED. Robustness principles:
- An item counts as completed only after the server has confirmed it (found by the
  existence check or accepted by an upload). Nothing else goes into sync state.
- One item failing never aborts the batch. Only a failed existence check does, since
  without it we cannot know what to upload.
- Uploads are idempotent on the server (same bytes give the same record), so a retry
  after an ambiguous failure is safe.
- Cancellation is cooperative: work already started finishes, nothing new starts.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, List, Optional, Sequence, Set, TypeVar

import httpx

from photosync import digest
from photosync.client.api.client import PhotoSyncAPI
from photosync.client.sync.models import (
    BatchState,
    ItemState,
    PhotoDescriptor,
    ProgressCallback,
    SyncOptions,
    SyncProgress,
    SyncReport,
    UploadResult,
)
from photosync.client.sync.state import SyncStateStore

log = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS = frozenset({408, 429})


class _Cancelled(Exception):
    """Raised inside a worker when cancellation is seen between retry attempts."""


def is_retryable(exc: BaseException) -> bool:
    """Transport failures, timeouts, 408, 429 and 5xx are worth another attempt."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code in RETRYABLE_STATUS or code >= 500
    return False


def retry_delay(exc: BaseException, attempt: int, options: SyncOptions) -> float:
    """Exponential backoff; a numeric Retry-After on 429 replaces it (capped at backoff_max)."""
    delay = options.backoff(attempt)
    if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == 429:
        retry_after = exc.response.headers.get("Retry-After")
        if retry_after and retry_after.isdigit():
            delay = min(options.backoff_max, float(retry_after))
    return delay


def _describe(exc: BaseException) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        detail = ""
        try:
            detail = exc.response.json().get("detail", "")
        except Exception:
            detail = exc.response.text[:200]
        return f"HTTP {exc.response.status_code}: {detail}".rstrip(": ")
    return f"{type(exc).__name__}: {exc}"


class _BatchRun:
    """State of one sync_batch call. Item transitions and progress emission share one lock."""

    def __init__(
        self,
        api: PhotoSyncAPI,
        batch: Sequence[PhotoDescriptor],
        options: SyncOptions,
        on_progress: Optional[ProgressCallback],
        cancel_event: threading.Event,
        state_store: Optional[SyncStateStore],
    ) -> None:
        self.api = api
        self.batch = list(batch)
        self.options = options
        self.on_progress = on_progress
        self.cancel_event = cancel_event
        self.state_store = state_store
        self.state = BatchState.IDLE
        self.items: List[ItemState] = [ItemState.UNSYNCED] * len(self.batch)
        self.fingerprints: List[Optional[str]] = [None] * len(self.batch)
        self.report = SyncReport(state=BatchState.IDLE, progress=SyncProgress(total=len(self.batch)))
        self._completed = 0
        self._failed = 0
        self._sequence = 0
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def _set_state(self, state: BatchState) -> None:
        log.debug("Batch state %s -> %s", self.state.value, state.value)
        self.state = state

    def _emit(self, current_filename: Optional[str] = None, is_cancelled: bool = False) -> SyncProgress:
        """Build and publish the next snapshot. Caller holds the lock."""
        self._sequence += 1
        progress = SyncProgress(
            total=len(self.batch),
            completed=self._completed,
            failed=self._failed,
            current_filename=current_filename,
            is_cancelled=is_cancelled,
            sequence=self._sequence,
        )
        self.report.progress = progress
        if self.on_progress:
            try:
                self.on_progress(progress)
            except Exception:
                log.exception("Progress callback raised; continuing sync")
        return progress

    def _transition(self, idx: int, state: ItemState) -> None:
        with self._lock:
            self.items[idx] = state
            self._emit(self.batch[idx].filename)

    def _mark_failed(self, idx: int, message: str) -> None:
        d = self.batch[idx]
        with self._lock:
            self.items[idx] = ItemState.FAILED
            self._failed += 1
            self.report.failed[d.local_id] = message
            self._emit(d.filename)
        log.warning("Sync %s (%s) failed: %s", d.filename, d.local_id, message)

    def _mark_synced(self, idx: int, existing: bool, result: Optional[UploadResult] = None) -> None:
        d = self.batch[idx]
        fp = self.fingerprints[idx] or ""
        with self._lock:
            self.items[idx] = ItemState.SYNCED
            self._completed += 1
            self.report.synced.append(d.local_id)
            if existing:
                self.report.skipped.append(d.local_id)
            if result is not None:
                self.report.uploaded[d.local_id] = result
            if self.state_store is not None:
                try:
                    self.state_store.mark_synced(
                        d.local_id,
                        fp,
                        photo_id=result.id if result else "",
                        stored_path=result.stored_path if result else "",
                    )
                except OSError as e:
                    log.warning("Could not persist sync state for %s: %s", d.local_id, e)
            self._emit(d.filename)

    def _with_retry(self, call: Callable[[], T], what: str) -> T:
        """Run call, retrying retryable httpx errors with backoff. Raises _Cancelled if cancelled while waiting."""
        attempt = 0
        while True:
            try:
                return call()
            except httpx.HTTPError as e:
                if not is_retryable(e) or attempt >= self.options.max_retries:
                    raise
                delay = retry_delay(e, attempt, self.options)
                log.warning(
                    "%s: %s, retry in %.1fs (attempt %d/%d)",
                    what, _describe(e), delay, attempt + 1, self.options.max_retries + 1,
                )
                if self.cancel_event.wait(delay):
                    raise _Cancelled()
                attempt += 1

    # --- Phase 1: fingerprints ---

    def _hash_one(self, idx: int) -> None:
        if self.cancelled:
            return
        d = self.batch[idx]
        self._transition(idx, ItemState.HASHING)
        try:
            with d.open() as stream:
                fp = digest.compute_digest(stream)
        except OSError as e:
            self._mark_failed(idx, f"Could not read {d.filename}: {e}")
            return
        except Exception as e:
            log.exception("Hashing %s failed", d.filename)
            self._mark_failed(idx, _describe(e))
            return
        self.fingerprints[idx] = fp

    def hash_all(self) -> None:
        self._set_state(BatchState.HASHING)
        with ThreadPoolExecutor(max_workers=self.options.max_concurrent_hashing) as executor:
            futures = [executor.submit(self._hash_one, i) for i in range(len(self.batch))]
            for fut in as_completed(futures):
                fut.result()

    # --- Phase 2: existence check ---

    def check_existing(self) -> Set[str]:
        """Ask the server about every distinct fingerprint, check_batch_size at a time."""
        self._set_state(BatchState.CHECKING_EXISTING)
        distinct: List[str] = []
        seen: Set[str] = set()
        for fp in self.fingerprints:
            if fp and fp not in seen:
                seen.add(fp)
                distinct.append(fp)
        existing: Set[str] = set()
        size = self.options.check_batch_size
        for start in range(0, len(distinct), size):
            chunk = distinct[start:start + size]
            result = self._with_retry(lambda: self.api.check_hashes(chunk), "Existence check")
            existing.update(digest.normalize(fp) for fp in result.get("existing", []))
        log.info("Existence check: %d distinct, %d already on server", len(distinct), len(existing))
        return existing

    # --- Phase 3: uploads ---

    def _upload_group(self, fp: str, indices: List[int]) -> None:
        """Upload the first descriptor of a same-content group; every member gets the outcome."""
        if self.cancelled:
            return
        first = self.batch[indices[0]]
        for idx in indices:
            self._transition(idx, ItemState.UPLOADING)
        try:
            with first.open() as stream:
                body = stream.read()
        except OSError as e:
            for idx in indices:
                self._mark_failed(idx, f"Could not read {first.filename}: {e}")
            return
        try:
            data = self._with_retry(
                lambda: self.api.upload_photo(body, first.filename, first.captured_at, fingerprint=fp),
                f"Upload {first.filename}",
            )
            result = UploadResult.from_json(data)
        except _Cancelled:
            log.info("Upload %s cancelled between retries", first.filename)
            for idx in indices:
                self._transition(idx, ItemState.CHECKED_MISSING)
            return
        except (httpx.HTTPError, ValueError, KeyError) as e:
            message = _describe(e)
            for idx in indices:
                self._mark_failed(idx, message)
            return
        except Exception as e:
            log.exception("Upload %s failed", first.filename)
            message = _describe(e)
            for idx in indices:
                self._mark_failed(idx, message)
            return
        log.info(
            "Uploaded %s -> %s%s", first.filename, result.stored_path,
            " (duplicate)" if result.is_duplicate else "",
        )
        for idx in indices:
            self._mark_synced(idx, existing=False, result=result)

    def upload_missing(self, groups: Dict[str, List[int]]) -> None:
        self._set_state(BatchState.UPLOADING)
        with ThreadPoolExecutor(max_workers=self.options.max_concurrent_uploads) as executor:
            futures = [executor.submit(self._upload_group, fp, idxs) for fp, idxs in groups.items()]
            for fut in as_completed(futures):
                fut.result()

    # --- Driver ---

    def _finish(self, state: BatchState, error: Optional[str] = None) -> SyncReport:
        self._set_state(state)
        with self._lock:
            self.report.state = state
            self.report.error = error
            self._emit(is_cancelled=state is BatchState.CANCELLED)
        log.info(
            "Sync batch %s: total=%d completed=%d failed=%d",
            state.value, len(self.batch), self._completed, self._failed,
        )
        return self.report

    def run(self) -> SyncReport:
        log.info("Sync batch started (%d photos)", len(self.batch))
        with self._lock:
            self._emit()
        if self.cancelled:
            return self._finish(BatchState.CANCELLED)

        self.hash_all()
        if self.cancelled:
            return self._finish(BatchState.CANCELLED)

        try:
            existing = self.check_existing()
        except _Cancelled:
            return self._finish(BatchState.CANCELLED)
        except (httpx.HTTPError, ValueError) as e:
            log.error("Existence check failed: %s", _describe(e))
            return self._finish(BatchState.FAILED, error=f"Existence check failed: {_describe(e)}")
        except Exception as e:
            log.exception("Existence check failed")
            return self._finish(BatchState.FAILED, error=f"Existence check failed: {_describe(e)}")

        groups: Dict[str, List[int]] = {}
        for idx, fp in enumerate(self.fingerprints):
            if fp is None:
                continue
            if fp in existing:
                self._transition(idx, ItemState.CHECKED_EXISTING)
                self._mark_synced(idx, existing=True)
            else:
                self._transition(idx, ItemState.CHECKED_MISSING)
                groups.setdefault(fp, []).append(idx)

        if self.cancelled:
            return self._finish(BatchState.CANCELLED)
        if groups:
            log.info(
                "Uploading %d distinct photos (%d workers)", len(groups), self.options.max_concurrent_uploads,
            )
            self.upload_missing(groups)
        if self.cancelled:
            return self._finish(BatchState.CANCELLED)
        return self._finish(BatchState.COMPLETED)


def sync_batch(
    api: PhotoSyncAPI,
    batch: Sequence[PhotoDescriptor],
    options: Optional[SyncOptions] = None,
    on_progress: Optional[ProgressCallback] = None,
    cancel_event: Optional[threading.Event] = None,
    state_store: Optional[SyncStateStore] = None,
) -> SyncReport:
    """
    Sync one batch: (1) fingerprint every photo; (2) ask the server which fingerprints
    it already has; (3) mark those synced; (4) upload the rest with retry. Returns a
    SyncReport whose progress satisfies completed + failed <= total.

    on_progress receives a SyncProgress after every item transition, never from two
    threads at once, with an increasing sequence. Set cancel_event to stop starting new
    work. When state_store is given, every confirmed item is recorded there.
    """
    run = _BatchRun(
        api,
        batch,
        options or SyncOptions(),
        on_progress,
        cancel_event or threading.Event(),
        state_store,
    )
    return run.run()


class SyncEngine:
    """
    Wraps sync_batch for one run and owns its cancellation flag. cancel() may be called
    from any thread (UI, signal handler) while run() is in progress.
    """

    def __init__(
        self,
        api: PhotoSyncAPI,
        batch: Sequence[PhotoDescriptor],
        options: Optional[SyncOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
        state_store: Optional[SyncStateStore] = None,
    ) -> None:
        self._api = api
        self._batch = list(batch)
        self._options = options
        self._on_progress = on_progress
        self._state_store = state_store
        self._cancel = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """Stop starting new work. In-flight hashes and uploads finish."""
        log.info("Sync cancellation requested")
        self._cancel.set()

    def run(self) -> SyncReport:
        """Run the batch. Returns the report (state CANCELLED if cancel() was called)."""
        return sync_batch(
            self._api,
            self._batch,
            options=self._options,
            on_progress=self._on_progress,
            cancel_event=self._cancel,
            state_store=self._state_store,
        )
