"""Configuration from environment (no hardcoded secrets)."""

from pathlib import Path
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ALLOWED_EXTENSIONS = ".jpg,.jpeg,.png,.gif,.webp,.heic,.heif"


class Settings(BaseSettings):
    """Server settings from env."""

    model_config = SettingsConfigDict(env_prefix="PHOTOSYNC_", extra="ignore")

    # Storage
    storage_base_path: Path = Path("./photos")
    db_path: Path = Path("./photosync.db")
    max_file_size_mb: int = 50
    # Comma-separated, with leading dots (kept as a string so pydantic-settings does not JSON-decode it)
    allowed_extensions: str = DEFAULT_ALLOWED_EXTENSIONS

    # Credential boundary: shared secret sent in api_key_header_name
    api_key: str = ""
    api_key_header_name: str = "X-API-Key"

    # Upper bound on fingerprints per existence check request
    max_check_hashes: int = 1000

    # CORS: comma-separated origins
    cors_origins: str = ""

    # Server
    host: str = "0.0.0.0"
    port: int = 8080

    # Logging (empty log_file = stderr only; level DEBUG|INFO|WARNING|ERROR)
    log_level: str = "INFO"
    log_file: str = ""

    @field_validator("max_file_size_mb")
    @classmethod
    def _check_max_file_size(cls, v: int) -> int:
        if not 1 <= v <= 500:
            raise ValueError("max_file_size_mb must be between 1 and 500")
        return v

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024

    @property
    def allowed_extensions_set(self) -> frozenset:
        """Allowed extensions, lowercased, each with a leading dot."""
        out = set()
        for ext in self.allowed_extensions.split(","):
            ext = ext.strip().lower()
            if not ext:
                continue
            out.add(ext if ext.startswith(".") else f".{ext}")
        return frozenset(out)

    @property
    def cors_origins_list(self) -> List[str]:
        """CORS origins as a list (split on comma)."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


def get_settings() -> Settings:
    """Return application settings."""
    return Settings()
