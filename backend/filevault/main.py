"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from filevault.auth.sessions import SessionStore
from filevault.cache import CacheFactory, close_cache, is_alive, open_cache
from filevault.config import Settings, get_settings
from filevault.db.session import Database
from filevault.errors import FileVaultError, Unauthorized
from filevault.files.routes import router as files_router
from filevault.files.service import FileStore
from filevault.files.storage import BlobStorage
from filevault.jobs.queue import JobQueue
from filevault.limiter import limiter
from filevault.logging_config import setup_logging
from filevault.users.routes import router as users_router
from filevault.users.service import count_users

log = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    cache_factory: CacheFactory = open_cache,
) -> FastAPI:
    """
    Build the app. Database, cache and blob root are opened in the lifespan and
    reach handlers through app.state, never through module globals.
    """
    settings = settings or get_settings()
    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Open database, cache and blob root on startup; close on shutdown."""
        log.info("Startup: opening database and cache")
        database = Database(settings)
        await database.init()
        cache = cache_factory(settings)
        blobs = BlobStorage(settings.storage_base_path)
        blobs.ensure_root()
        app.state.settings = settings
        app.state.database = database
        app.state.cache = cache
        app.state.blobs = blobs
        app.state.sessions = SessionStore(cache, settings.session_ttl_seconds)
        app.state.thumbnail_queue = JobQueue(cache, settings.thumbnail_queue, settings.job_max_attempts)
        app.state.welcome_queue = JobQueue(cache, settings.welcome_queue, settings.job_max_attempts)
        log.info("Startup complete")
        try:
            yield
        finally:
            await close_cache(cache)
            await database.dispose()
            log.info("Shutdown")

    app = FastAPI(title="filevault API", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        """Add security headers to all responses."""
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response

    @app.exception_handler(FileVaultError)
    async def filevault_error_handler(request: Request, exc: FileVaultError):
        """Render core errors as {"detail": message} with their status."""
        headers = None
        if isinstance(exc, Unauthorized):
            log.debug("Unauthorized %s %s: %s", request.method, request.url.path, exc.reason)
            headers = {"WWW-Authenticate": "Bearer"}
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message},
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Return generic 500 without leaking stack trace or internals."""
        if isinstance(exc, HTTPException):
            raise exc
        log.exception("Unhandled exception: %s", exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    limiter.enabled = settings.rate_limit_enabled
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.include_router(users_router)
    app.include_router(files_router)

    @app.get("/health")
    @limiter.exempt
    def health() -> JSONResponse:
        """Liveness check. Exempt from rate limiting."""
        return JSONResponse(content={"status": "ok"})

    @app.get("/status")
    async def get_status(request: Request) -> dict:
        """Whether the cache and the database answer."""
        return {
            "redis": await is_alive(request.app.state.cache),
            "db": await request.app.state.database.is_alive(),
        }

    @app.get("/stats")
    async def get_stats(request: Request) -> dict:
        """Number of users and files."""
        async with request.app.state.database.session() as session:
            users = await count_users(session)
            files = await FileStore(session, request.app.state.blobs).count()
        return {"users": users, "files": files}

    return app
