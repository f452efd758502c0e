"""FastAPI application exposing triggers and site endpoints."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import AppSettings, get_settings, validate_settings
from ..scheduler.orchestrator import SchedulingOrchestrator
from ..storage.sqlite import DatabaseManager
from ..storage.types import NotFoundError, ScanConflictError
from ..utils.logging import get_structured_logger, setup_logging
from .routers import cron_router, sites_router
from .types import APIError, ErrorResponse

logger = get_structured_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start the scan engine and drain in-flight scans on shutdown."""
    logger.info("Starting sitewatch API application")

    settings = app.state.settings
    db = DatabaseManager(settings.database)
    orchestrator = SchedulingOrchestrator(
        settings=settings,
        db=db,
        fetcher=getattr(app.state, "fetcher", None),
        notifier=getattr(app.state, "notifier", None),
    )
    await orchestrator.setup()
    app.state.orchestrator = orchestrator

    logger.info("Sitewatch API application started")
    try:
        yield
    finally:
        logger.info("Shutting down sitewatch API application")
        try:
            await orchestrator.cleanup()
        finally:
            await db.cleanup()
            app.state.orchestrator = None
        logger.info("Sitewatch API application shutdown complete")


def create_app(settings: Optional[AppSettings] = None) -> FastAPI:
    """Create and configure FastAPI application."""
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title="Sitewatch API",
        description="Sitemap change monitoring: scan triggers, diffs and notifications",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    setup_middleware(app)
    setup_exception_handlers(app)
    setup_routers(app)

    logger.debug("FastAPI application created and configured")
    return app


def setup_middleware(app: FastAPI) -> None:
    """Request logging middleware."""

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "HTTP request failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                process_time=loop.time() - start_time,
            )
            raise

        logger.info(
            "HTTP request",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            process_time=loop.time() - start_time,
        )
        return response


def _error(status_code: int, error: str, message: str, exc: Exception) -> JSONResponse:
    body = ErrorResponse(error=error, message=message, details={"type": type(exc).__name__})
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def setup_exception_handlers(app: FastAPI) -> None:
    """Map domain errors onto HTTP status codes."""

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error(404, "NOT_FOUND", str(exc), exc)

    @app.exception_handler(ScanConflictError)
    async def conflict_handler(request: Request, exc: ScanConflictError) -> JSONResponse:
        return _error(409, "CONFLICT", str(exc), exc)

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return _error(422, "VALIDATION_ERROR", str(exc), exc)

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
        logger.warning("API error", error=str(exc), path=request.url.path)
        return _error(400, "API_ERROR", str(exc), exc)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unexpected error",
            error=str(exc),
            path=request.url.path,
            method=request.method,
            exc_info=True,
        )
        return _error(500, "INTERNAL_ERROR", "An unexpected error occurred", exc)


def setup_routers(app: FastAPI) -> None:
    """Setup API routers."""

    @app.get("/health")
    async def health_check(request: Request) -> dict:
        """Database-backed health check."""
        orchestrator = getattr(request.app.state, "orchestrator", None)
        healthy = bool(orchestrator and await orchestrator.db.health_check())
        return {
            "status": "healthy" if healthy else "unhealthy",
            "version": __version__,
            "in_flight_scans": orchestrator.dispatcher.pending_count if orchestrator else 0,
        }

    app.include_router(cron_router, prefix="/api/cron", tags=["Cron Triggers"])
    app.include_router(sites_router, prefix="/api", tags=["Sites"])


def main() -> None:
    """Run the FastAPI application."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.json_logs)
    validate_settings(settings)

    logger.info(
        "Starting sitewatch API server",
        host=settings.api.host,
        port=settings.api.port,
    )
    uvicorn.run(
        "sitewatch.api.app:create_app",
        factory=True,
        host=settings.api.host,
        port=settings.api.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=True,
    )


if __name__ == "__main__":
    main()
