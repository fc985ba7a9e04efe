"""FastAPI application entry point."""

from __future__ import annotations

import json
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from syncnite.api.health import router as health_router
from syncnite.api.playnite import router as playnite_router
from syncnite.api.plex import router as plex_router
from syncnite.config import Settings
from syncnite.database import create_engine
from syncnite.exceptions import (
    FatalIOError,
    InternalServerError,
    LockedError,
    NotFoundError,
    RemoteError,
    ScanIncompleteError,
    ValidationError,
)
from syncnite.models.base import Base
from syncnite.services.sync_manager import SyncManager

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)


def ensure_data_dirs(settings: Settings) -> None:
    """Create the data directory layout without touching existing content."""
    if settings.data_dir.exists() and not settings.data_dir.is_dir():
        msg = f"Data path exists but is not a directory: {settings.data_dir}"
        raise NotADirectoryError(msg)

    for path in (
        settings.playnite_db_root,
        settings.playnite_media_root,
        settings.plex_db_root,
        settings.plex_media_root,
        settings.snapshot_dir,
        settings.installed_path.parent,
    ):
        if not path.exists():
            path.mkdir(parents=True)
            logger.info("Created data directory: %s", path)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime()
    _configure_logging(settings.debug)
    logger.info("Starting Syncnite (debug=%s)", settings.debug)

    db_url = settings.database_url
    if db_url.startswith("sqlite"):
        db_path = db_url.split("///", 1)[-1] if "///" in db_url else None
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    try:
        engine, session_factory = create_engine(settings)
        app.state.engine = engine
        app.state.session_factory = session_factory
    except Exception as exc:
        logger.critical(
            "Failed to initialize database: %s. Check database path and permissions.", exc
        )
        raise

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as exc:
        logger.critical("Failed to create database schema: %s.", exc)
        raise

    try:
        ensure_data_dirs(settings)
    except Exception as exc:
        logger.critical("Failed to initialize data directory at %s: %s.", settings.data_dir, exc)
        raise

    app.state.sync_manager = SyncManager(settings, session_factory)
    if not settings.plex_configured:
        logger.info("Plex server not configured; pull sync disabled")

    yield

    try:
        await engine.dispose()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)

    logger.info("Syncnite stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    docs_enabled = settings.debug or settings.expose_docs

    app = FastAPI(
        title="Syncnite",
        description="Delta synchronization server for Playnite and Plex libraries",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    app.state.settings = settings

    app.add_middleware(GZipMiddleware, minimum_size=500)

    app.include_router(health_router)
    app.include_router(playnite_router)
    app.include_router(plex_router)

    # Domain errors

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        logger.warning("ValidationError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=400, content={"detail": str(exc), "code": exc.code})

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        logger.debug("NotFound in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=404, content={"detail": "Not found", "code": exc.code})

    @app.exception_handler(LockedError)
    async def locked_error_handler(request: Request, exc: LockedError) -> JSONResponse:
        return JSONResponse(
            status_code=423,
            content={"detail": "Sync already in progress", "code": exc.code},
        )

    @app.exception_handler(ScanIncompleteError)
    async def scan_incomplete_handler(
        request: Request, exc: ScanIncompleteError
    ) -> JSONResponse:
        logger.error("Scan incomplete in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=502, content={"detail": str(exc), "code": exc.code})

    @app.exception_handler(RemoteError)
    async def remote_error_handler(request: Request, exc: RemoteError) -> JSONResponse:
        logger.error("RemoteError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=502,
            content={"detail": "Remote library unavailable", "code": exc.code},
        )

    @app.exception_handler(FatalIOError)
    async def fatal_io_error_handler(request: Request, exc: FatalIOError) -> JSONResponse:
        logger.error(
            "FatalIOError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Storage operation failed", "code": exc.code},
        )

    # Global exception handlers: safety net for unhandled exceptions

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = str(loc[-1]) if loc else "unknown"
            errors.append({"field": field, "message": err.get("msg", "Invalid value")})
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return JSONResponse(status_code=422, content={"detail": errors})

    @app.exception_handler(OSError)
    async def os_error_handler(request: Request, exc: OSError) -> JSONResponse:
        if isinstance(exc, (ConnectionError, TimeoutError)):
            raise exc
        logger.error("OSError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Storage operation failed"},
        )

    @app.exception_handler(json.JSONDecodeError)
    async def json_error_handler(request: Request, exc: json.JSONDecodeError) -> JSONResponse:
        logger.error(
            "JSONDecodeError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Data integrity error"},
        )

    @app.exception_handler(InternalServerError)
    async def internal_server_error_handler(
        request: Request, exc: InternalServerError
    ) -> JSONResponse:
        logger.error(
            "InternalServerError in %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
        logger.error(
            "OperationalError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "Database temporarily unavailable"},
        )

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "syncnite.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
