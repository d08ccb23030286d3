"""FastAPI application factory for Rollbook.

This module creates and configures the FastAPI application with:
- Lifespan management (database, directory cache and search service wiring)
- Middleware configuration (CORS, request ID, logging)
- Exception handlers
- API routers
"""

import time
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rollbook.config import Settings, get_settings
from rollbook.core.exceptions import RollbookError
from rollbook.core.logging import (
    clear_correlation_id,
    configure_logging,
    get_logger,
    set_correlation_id,
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifespan events.

    Startup configures logging, opens the database, builds the directory
    cache and the search service, and registers the service for DI.
    Shutdown reverses it.

    Args:
        app: The FastAPI application instance

    Yields:
        None: Control back to the application
    """
    from rollbook.core.database import close_db, get_session_factory, init_db
    from rollbook.repositories import SqlDocumentStore, SqlPartitionRegistry
    from rollbook.services.directory_cache import DirectoryCache
    from rollbook.services.monitor import PerformanceMonitor
    from rollbook.services.search import StudentSearchService, set_search_service

    settings = get_settings()

    # ========================================
    # Startup
    # ========================================
    configure_logging(settings)
    startup_logger = get_logger(__name__)

    await init_db(settings)

    session_factory = get_session_factory()
    store = SqlDocumentStore(session_factory)
    registry = SqlPartitionRegistry(session_factory)
    cache = DirectoryCache(store, registry, settings=settings)
    monitor = PerformanceMonitor(cache)
    set_search_service(
        StudentSearchService(cache, store, registry, settings=settings, monitor=monitor)
    )
    await cache.init()

    startup_logger.info(
        "Application starting",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.app_env.value,
        debug=settings.debug,
    )

    yield

    # ========================================
    # Shutdown
    # ========================================
    await cache.shutdown()
    set_search_service(None)
    await close_db()

    startup_logger.info("Application shutting down", app_name=settings.app_name)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Optional settings override for testing

    Returns:
        FastAPI: Configured application instance
    """
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Student directory lookups over a partitioned document store, "
            "served from a routed, partially loaded in-memory cache."
        ),
        version=settings.app_version,
        lifespan=lifespan,
    )

    configure_middleware(app, settings)
    configure_exception_handlers(app)
    configure_routes(app)

    return app


def configure_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure application middleware.

    Args:
        app: The FastAPI application instance
        settings: Application settings
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def logging_middleware(request: Request, call_next: Any) -> Any:
        """Log requests and responses with correlation ID."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        set_correlation_id(request_id)

        request_logger = get_logger("rollbook.request")
        start_time = time.perf_counter()

        request_logger.info(
            "Request started",
            method=request.method,
            path=request.url.path,
        )

        try:
            response = await call_next(request)
            duration_ms = (time.perf_counter() - start_time) * 1000
            request_logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )
            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            request_logger.error(
                "Request failed",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 2),
                error=str(exc),
            )
            raise

        finally:
            clear_correlation_id()


def configure_exception_handlers(app: FastAPI) -> None:
    """Configure global exception handlers.

    Args:
        app: The FastAPI application instance
    """
    exception_logger = get_logger("rollbook.exceptions")

    @app.exception_handler(RollbookError)
    async def rollbook_exception_handler(
        request: Request, exc: RollbookError
    ) -> JSONResponse:
        """Render Rollbook errors as structured error responses."""
        request_id = getattr(request.state, "request_id", None)

        server_side = exc.status_code >= 500
        log = exception_logger.error if server_side else exception_logger.warning
        log(
            "Application error" if server_side else "Client error",
            error_code=exc.code,
            error_message=exc.message,
            status_code=exc.status_code,
            path=request.url.path,
        )

        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(request_id=request_id),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions with a consistent error response."""
        request_id = getattr(request.state, "request_id", None)

        exception_logger.exception(
            "Unhandled exception",
            error_type=type(exc).__name__,
            error_message=str(exc),
            path=request.url.path,
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "code": "INTERNAL_SERVER_ERROR",
                    "message": "An unexpected error occurred",
                    "request_id": request_id,
                }
            },
        )


def configure_routes(app: FastAPI) -> None:
    """Configure application routes.

    Args:
        app: The FastAPI application instance
    """

    @app.get(
        "/health/live",
        tags=["Health"],
        summary="Liveness probe",
        description="Returns OK if the service is running",
    )
    async def liveness() -> dict[str, str]:
        """Liveness probe for container orchestration."""
        return {"status": "ok"}

    @app.get(
        "/health/ready",
        tags=["Health"],
        summary="Readiness probe",
        description="Returns OK if the document store is reachable",
    )
    async def readiness() -> dict[str, Any]:
        """Readiness probe checking the document store and the cache."""
        from rollbook.core.database import check_db_connection
        from rollbook.services.search import get_search_service

        db_ok = await check_db_connection()
        try:
            cache_state = get_search_service().cache.state.value
        except RuntimeError:
            cache_state = "unavailable"

        return {
            "status": "ok" if db_ok else "error",
            "checks": {
                "database": "ok" if db_ok else "error",
                "cache": cache_state,
            },
        }

    @app.get(
        "/",
        tags=["Root"],
        summary="API root",
        description="Returns API information",
    )
    async def root() -> dict[str, str]:
        """API root endpoint with service information."""
        settings = get_settings()
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "docs": "/docs",
            "health": "/health/live",
        }

    from rollbook.api.v1.router import router as v1_router

    app.include_router(v1_router, prefix="/api/v1")


# Create the application instance
app = create_app()


def cli() -> None:
    """CLI entry point for running the application."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "rollbook.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.value.lower(),
    )


if __name__ == "__main__":
    cli()
