"""On-device record of photos already known to the server (sync_state.json)."""

import json
import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from photosync.client.sync.models import PhotoDescriptor

log = logging.getLogger(__name__)


class SyncStateStore:
    """
    Maps local_id -> {fingerprint, photo_id, stored_path}. A missing or corrupt file
    reads as empty. Each mark_synced rewrites the file so an interrupted run keeps
    what it finished.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        if path is None:
            from photosync.client.config import get_sync_state_path

            path = get_sync_state_path()
        self._path = Path(path)
        self._lock = threading.Lock()
        self._synced: Dict[str, Dict[str, str]] = {}
        self.load()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Dict[str, Dict[str, str]]:
        """Reload from disk and return a copy of the mapping."""
        with self._lock:
            self._synced = self._read()
            return dict(self._synced)

    def _read(self) -> Dict[str, Dict[str, str]]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            log.warning("Sync state %s unreadable, starting empty: %s", self._path, e)
            return {}
        synced = data.get("synced") if isinstance(data, dict) else None
        if not isinstance(synced, dict):
            return {}
        return {k: v for k, v in synced.items() if isinstance(v, dict)}

    def _write(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps({"synced": self._synced}, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self._path)

    def mark_synced(self, local_id: str, fingerprint: str, photo_id: str = "", stored_path: str = "") -> None:
        with self._lock:
            self._synced[local_id] = {
                "fingerprint": fingerprint,
                "photo_id": photo_id,
                "stored_path": stored_path,
            }
            self._write()

    def is_synced(self, local_id: str) -> bool:
        with self._lock:
            return local_id in self._synced

    def fingerprint_of(self, local_id: str) -> Optional[str]:
        with self._lock:
            entry = self._synced.get(local_id)
            return entry.get("fingerprint") if entry else None

    def pending(self, batch: Iterable[PhotoDescriptor]) -> List[PhotoDescriptor]:
        """Descriptors from batch that are not yet recorded as synced, order kept."""
        with self._lock:
            return [d for d in batch if d.local_id not in self._synced]

    def clear(self) -> None:
        with self._lock:
            self._synced = {}
            self._write()
