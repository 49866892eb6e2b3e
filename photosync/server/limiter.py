"""Request quotas for the photo API.

Bulk operations (check, upload, delete, download) get a quota sized for a phone
syncing thousands of photos; listing and metadata reads get a tighter one.
Requests carrying an API key are counted per key, so several devices behind one
NAT address do not share a quota.
"""

import hashlib

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from photosync.server.config import get_settings

BULK_LIMIT = "600/minute"
READ_LIMIT = "120/minute"


def quota_key(request: Request) -> str:
    """Hashed API key when present, else the client address."""
    provided = request.headers.get(get_settings().api_key_header_name)
    if provided:
        return "key:" + hashlib.sha256(provided.encode("utf-8")).hexdigest()[:16]
    return get_remote_address(request)


limiter = Limiter(key_func=quota_key)
