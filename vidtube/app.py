from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from vidtube.api.error_handling import register_exception_handlers
from vidtube.api.routes import router
from vidtube.config import Settings
from vidtube.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

_settings = Settings.from_env()

__version__ = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    from vidtube.service.runtime import get_runtime

    get_runtime()
    logger.info("startup_complete", version=__version__)

    yield

    try:
        await get_runtime().close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="VidTube Accounts", version=__version__, lifespan=lifespan)


def _allowed_origins() -> List[str]:
    if _settings.cors_origins:
        return _settings.cors_origins
    return [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag the request with X-Request-ID (client supplied or generated)."""
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if request.url.path.startswith("/api/") or request.url.path == "/healthz":
        response.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, private")
    return response


register_exception_handlers(app)
app.include_router(router)


# Placeholder-mode uploads are served from the shared filesystem
if not _settings.media_configured:
    MEDIA_DIR = Path(_settings.shared_fs_root) / "media"
    try:
        MEDIA_DIR.mkdir(parents=True, exist_ok=True)
        app.mount("/media", StaticFiles(directory=MEDIA_DIR), name="media")
    except OSError as exc:
        logger.warning("media_dir_unavailable", path=str(MEDIA_DIR), error=str(exc))


@app.get("/healthz")
async def health() -> JSONResponse:
    """Report store connectivity and build version."""
    from vidtube.service.runtime import get_runtime

    checks: Dict[str, Dict[str, Any]] = {}
    healthy = True
    try:
        runtime = get_runtime()
        runtime.store.verify_connection()
        checks["store"] = {
            "status": "healthy",
            "type": "memory" if runtime.settings.use_memory_store else "postgres",
        }
        checks["media"] = {
            "status": "healthy",
            "mode": "cloudinary" if runtime.media.is_configured else "placeholder",
        }
    except Exception as exc:
        healthy = False
        logger.error("health_check_failed", error_type=type(exc).__name__, error=str(exc))
        checks["store"] = {"status": "unhealthy", "error": type(exc).__name__}

    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "version": __version__,
            "checks": checks,
        },
    )
