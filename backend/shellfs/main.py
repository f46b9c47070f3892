"""shellfs FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shellfs import __version__
from shellfs.config import settings
from shellfs.database import async_session, init_db
from shellfs.errors import (
    ConflictError,
    FileSystemError,
    InvalidTargetError,
    MigrationError,
    NotFoundError,
    ReadOnlyError,
    StorageUnavailableError,
)
from shellfs.services import init_services, shutdown_services

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[FileSystemError], int] = {
    NotFoundError: 404,
    ConflictError: 409,
    InvalidTargetError: 400,
    ReadOnlyError: 403,
    StorageUnavailableError: 503,
    MigrationError: 500,
}


@asynccontextmanager
async def _lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    # === STARTUP ===
    _setup_logging()

    Path(settings.data_dir).mkdir(parents=True, exist_ok=True)

    await init_db()
    logger.info("shellfs v%s started — listening on %s:%s", __version__, settings.host, settings.port)

    await init_services(async_session)

    try:
        yield
    finally:
        # === SHUTDOWN ===
        await shutdown_services()
        logger.info("shellfs shutting down")


def _setup_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    for noisy in ("aiosqlite", "httpx", "httpcore", "apscheduler"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


async def _filesystem_error_handler(request: Request, exc: FileSystemError) -> JSONResponse:
    status_code = 500
    for error_type in type(exc).__mro__:
        if error_type in ERROR_STATUS:
            status_code = ERROR_STATUS[error_type]
            break
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__, "path": exc.path},
    )


def create_app() -> FastAPI:
    """Application factory."""
    from shellfs.api.routes import api_router

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        debug=settings.debug,
        lifespan=_lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(FileSystemError, _filesystem_error_handler)

    # Mount API routes
    app.include_router(api_router, prefix=settings.api_prefix)

    return app


app = create_app()


def run(**kwargs: Any) -> None:
    import uvicorn

    uvicorn.run(
        "shellfs.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        workers=settings.uvicorn_workers,
        log_level=settings.log_level.lower(),
        **kwargs,
    )


if __name__ == "__main__":
    run()
