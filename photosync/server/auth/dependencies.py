"""FastAPI dependency for the shared-secret API key."""

import hmac
import logging
from typing import Optional

from fastapi import HTTPException, Request, status

from photosync.server.config import get_settings

log = logging.getLogger(__name__)


def _client_host(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def api_key_matches(expected: str, provided: str) -> bool:
    """Constant-time comparison of UTF-8 encoded keys."""
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


async def require_api_key(request: Request) -> None:
    """Reject the request with 401 unless it carries the configured API key."""
    settings = get_settings()
    provided: Optional[str] = request.headers.get(settings.api_key_header_name)
    if not settings.api_key:
        log.error("API key not configured (PHOTOSYNC_API_KEY); rejecting request")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key is required.",
        )
    if not provided:
        log.warning("API request without API key from %s", _client_host(request))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key is required.",
        )
    if not api_key_matches(settings.api_key, provided):
        log.warning("Invalid API key attempt from %s", _client_host(request))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key.",
        )
