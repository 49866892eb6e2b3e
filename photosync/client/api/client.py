"""HTTP client for the PhotoSync server API."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from photosync.client.config import get_base_url

log = logging.getLogger(__name__)

DEFAULT_API_KEY_HEADER = "X-API-Key"


class PhotoSyncAPI:
    """
    Client for the PhotoSync server: health, existence check, upload, list, get, delete.
    Every call makes a single attempt; retry policy belongs to the sync orchestrator.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        api_key_header: str = DEFAULT_API_KEY_HEADER,
    ) -> None:
        self._base_url = (base_url or get_base_url()).rstrip("/")
        self._api_key = api_key
        self._api_key_header = api_key_header
        log.debug("API client base_url=%s", self._base_url)

    @property
    def base_url(self) -> str:
        return self._base_url

    def _headers(self) -> Dict[str, str]:
        out = {"Accept": "application/json"}
        if self._api_key:
            out[self._api_key_header] = self._api_key
        return out

    def set_api_key(self, api_key: Optional[str]) -> None:
        """Set or clear the API key."""
        self._api_key = api_key

    def health(self) -> Dict[str, Any]:
        """GET /health. No API key needed."""
        with httpx.Client(timeout=10.0) as client:
            r = client.get(f"{self._base_url}/health", headers={"Accept": "application/json"})
            r.raise_for_status()
            return r.json()

    def check_hashes(self, fingerprints: List[str]) -> Dict[str, List[str]]:
        """POST /api/photos/check. Returns {existing, missing}. Empty input makes no request."""
        if not fingerprints:
            return {"existing": [], "missing": []}
        log.debug("POST /api/photos/check count=%d", len(fingerprints))
        with httpx.Client(timeout=60.0) as client:
            r = client.post(
                f"{self._base_url}/api/photos/check",
                json={"hashes": list(fingerprints)},
                headers={**self._headers(), "Content-Type": "application/json"},
            )
            r.raise_for_status()
            data = r.json()
            return {
                "existing": list(data.get("existing") or []),
                "missing": list(data.get("missing") or []),
            }

    def upload_photo(
        self,
        body: bytes,
        filename: str,
        date_taken: datetime,
        fingerprint: Optional[str] = None,
    ) -> Dict[str, Any]:
        """POST /api/photos/upload with the raw bytes. Returns the UploadResult JSON."""
        log.debug("upload_photo filename=%s size=%d", filename, len(body))
        # 2 min base + 30 sec per MB, cap 15 min
        timeout = 120.0 + min(780.0, len(body) / (1024 * 1024) * 30)
        params = {"filename": filename, "date_taken": date_taken.isoformat()}
        if fingerprint:
            params["hash"] = fingerprint
        with httpx.Client(timeout=timeout) as client:
            r = client.post(
                f"{self._base_url}/api/photos/upload",
                params=params,
                content=body,
                headers={**self._headers(), "Content-Type": "application/octet-stream"},
            )
            r.raise_for_status()
            return r.json()

    def list_photos(self, skip: int = 0, take: int = 50) -> Dict[str, Any]:
        """GET /api/photos?skip=&take=. Returns {photos, total_count, skip, take}."""
        with httpx.Client(timeout=30.0) as client:
            r = client.get(
                f"{self._base_url}/api/photos",
                params={"skip": skip, "take": take},
                headers=self._headers(),
            )
            r.raise_for_status()
            return r.json()

    def get_photo(self, photo_id: str) -> Dict[str, Any]:
        """GET /api/photos/{id}."""
        with httpx.Client(timeout=30.0) as client:
            r = client.get(f"{self._base_url}/api/photos/{photo_id}", headers=self._headers())
            r.raise_for_status()
            return r.json()

    def delete_photo(self, photo_id: str) -> None:
        """DELETE /api/photos/{id}. Treats 404 as success (already gone)."""
        log.debug("delete_photo id=%s", photo_id)
        with httpx.Client(timeout=30.0) as client:
            r = client.delete(f"{self._base_url}/api/photos/{photo_id}", headers=self._headers())
            if r.status_code == 404:
                log.debug("delete_photo id=%s: already gone (404)", photo_id)
                return
            r.raise_for_status()
