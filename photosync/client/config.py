"""Client configuration: server base URL and sync tunables, stored as JSON in the config dir."""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict

from photosync.client.sync.models import SyncOptions

log = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8080"


def _config_dir() -> Path:
    """Platform-specific config directory (no admin). PHOTOSYNC_CONFIG_DIR overrides."""
    override = os.environ.get("PHOTOSYNC_CONFIG_DIR", "").strip()
    if override:
        return Path(override)
    if os.name == "nt":
        base = os.environ.get("APPDATA", os.path.expanduser("~"))
        return Path(base) / "PhotoSync"
    if os.environ.get("XDG_CONFIG_HOME"):
        return Path(os.environ["XDG_CONFIG_HOME"]) / "photosync"
    return Path.home() / ".config" / "photosync"


def get_config_dir() -> Path:
    d = _config_dir()
    d.mkdir(parents=True, exist_ok=True)
    return d


def get_config_path() -> Path:
    """Path to config.json."""
    return get_config_dir() / "config.json"


def get_sync_state_path() -> Path:
    """Path to the file recording which local photos are already on the server."""
    return get_config_dir() / "sync_state.json"


def get_log_path() -> Path:
    return get_config_dir() / "photosync.log"


def _load() -> Dict[str, Any]:
    path = get_config_path()
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as e:
        log.warning("Could not read config %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def _save(data: Dict[str, Any]) -> None:
    get_config_path().write_text(json.dumps(data, indent=2), encoding="utf-8")


def get_base_url() -> str:
    """PHOTOSYNC_BASE_URL if set, else the saved base_url, else http://localhost:8080."""
    env = os.environ.get("PHOTOSYNC_BASE_URL", "").strip()
    if env:
        return env.rstrip("/")
    raw = _load().get("base_url")
    if isinstance(raw, str) and raw.strip():
        return raw.strip().rstrip("/")
    return DEFAULT_BASE_URL


def set_base_url(url: str) -> None:
    """Persist the server base URL (trailing slash removed)."""
    data = _load()
    data["base_url"] = (url or "").strip().rstrip("/")
    _save(data)


def get_sync_options() -> SyncOptions:
    """Saved sync tunables; unknown or invalid keys fall back to defaults."""
    raw = _load().get("sync")
    if not isinstance(raw, dict):
        return SyncOptions()
    try:
        return SyncOptions.from_dict(raw)
    except (TypeError, ValueError) as e:
        log.warning("Invalid sync options in config, using defaults: %s", e)
        return SyncOptions()


def set_sync_options(options: SyncOptions) -> None:
    """Persist sync tunables under the "sync" key."""
    data = _load()
    data["sync"] = options.to_dict()
    _save(data)
