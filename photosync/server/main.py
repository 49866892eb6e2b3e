"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from photosync import __version__
from photosync.server.config import get_settings
from photosync.server.db.session import init_db
from photosync.server.limiter import limiter
from photosync.server.photos.routes import router as photos_router

log = logging.getLogger(__name__)

_MIN_API_KEY_LENGTH = 32


_LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def _setup_logging() -> None:
    """Send photosync.server.* records to stderr and, when PHOTOSYNC_LOG_FILE is set, to that file."""
    settings = get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    formatter = logging.Formatter(_LOG_FORMAT)
    server_log = logging.getLogger("photosync.server")
    server_log.setLevel(level)
    server_log.handlers.clear()
    handlers = [logging.StreamHandler()]
    log_file = str(settings.log_file or "").strip()
    if log_file:
        try:
            handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
        except OSError as e:
            server_log.warning("Log file %s unavailable, using stderr only: %s", log_file, e)
    for handler in handlers:
        handler.setFormatter(formatter)
        server_log.addHandler(handler)


_setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and the storage root on startup."""
    settings = get_settings()
    log.info("PhotoSync server starting")
    log.info("Photo storage path: %s", settings.storage_base_path)
    log.info("Max file size: %dMB", settings.max_file_size_mb)
    if not settings.api_key:
        log.error("PHOTOSYNC_API_KEY is not set; all API requests will be rejected")
    elif len(settings.api_key) < _MIN_API_KEY_LENGTH:
        log.warning("PHOTOSYNC_API_KEY is shorter than %d characters", _MIN_API_KEY_LENGTH)
    settings.storage_base_path.mkdir(parents=True, exist_ok=True)
    await init_db()
    log.info("Startup complete")
    yield
    log.info("Shutdown")


# No interactive docs or schema: every route outside /health requires the API key
app = FastAPI(
    title="PhotoSync API",
    version=__version__,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)

settings = get_settings()
if settings.cors_origins_list:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Harden every response; photo metadata and bytes are never cached by intermediaries."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "no-referrer"
    if request.url.path.startswith("/api/photos"):
        response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    """Log the failure with the request line; the client only sees a plain 500."""
    if isinstance(exc, HTTPException):
        raise exc
    log.error("%s %s failed", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(photos_router)


def _health_payload() -> dict:
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/health")
@limiter.exempt
def health() -> JSONResponse:
    """Liveness check. No API key, exempt from rate limiting."""
    return JSONResponse(content=_health_payload())


@app.get("/api/health")
@limiter.exempt
def api_health() -> JSONResponse:
    """Same as /health under the API prefix."""
    return JSONResponse(content=_health_payload())


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run("photosync.server.main:app", host=settings.host, port=settings.port)
