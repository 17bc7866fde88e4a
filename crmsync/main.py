"""FastAPI application entry point."""

from __future__ import annotations

import importlib
import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from crmsync import __version__
from crmsync.api.health import router as health_router
from crmsync.api.sync import router as sync_router
from crmsync.config import Settings
from crmsync.database import create_engine
from crmsync.destinations import hubspot
from crmsync.destinations.registry import DestinationRegistry
from crmsync.exceptions import (
    ConfigurationError,
    DestinationError,
    SynchronizationError,
)
from crmsync.jobs.backend import AsyncioJobBackend
from crmsync.jobs.lock_store import create_lock_store
from crmsync.jobs.sync_job import SyncJob
from crmsync.models.base import Base
from crmsync.services.schema_service import check_sync_state_schema

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)

HUBSPOT_DESTINATION = "hubspot"


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
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.INFO if debug else logging.WARNING)


def load_registry(import_string: str) -> DestinationRegistry:
    """Import the host application's registry from ``package.module:attribute``.

    An empty string yields an empty registry.
    """
    if not import_string:
        logger.warning("No REGISTRY configured; no entity types will be synchronized")
        return DestinationRegistry()

    module_name, sep, attribute = import_string.partition(":")
    if not sep or not module_name or not attribute:
        msg = f"REGISTRY must look like 'package.module:attribute', got {import_string!r}"
        raise ConfigurationError(msg)

    module = importlib.import_module(module_name)
    registry = getattr(module, attribute, None)
    if callable(registry) and not isinstance(registry, DestinationRegistry):
        registry = registry()
    if not isinstance(registry, DestinationRegistry):
        msg = f"{import_string} is not a DestinationRegistry"
        raise ConfigurationError(msg)
    return registry


def register_configured_destinations(registry: DestinationRegistry, settings: Settings) -> None:
    """Register destinations whose credentials come from settings.

    A destination the host application registered itself is left alone.
    """
    if not settings.hubspot_access_token:
        return
    if HUBSPOT_DESTINATION in registry.destination_names():
        logger.info(
            "Destination %s is registered by the host application; "
            "HUBSPOT_ACCESS_TOKEN is not used",
            HUBSPOT_DESTINATION,
        )
        return
    registry.register_destination(HUBSPOT_DESTINATION, hubspot.adapter_from_settings(settings))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime_security()
    _configure_logging(settings.debug)
    logger.info("Starting crmsync (debug=%s)", settings.debug)

    try:
        engine, session_factory = create_engine(settings)
        app.state.engine = engine
        app.state.session_factory = session_factory
    except Exception as exc:
        logger.critical(
            "Failed to initialize database: %s. Check DATABASE_URL and permissions.", exc
        )
        raise

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as exc:
        logger.critical("Failed to create database schema: %s.", exc)
        raise

    await check_sync_state_schema(engine)

    lock_store = create_lock_store(settings)
    job_backend = AsyncioJobBackend()
    app.state.lock_store = lock_store
    app.state.job_backend = job_backend
    app.state.sync_job = SyncJob(
        app.state.registry,
        session_factory,
        lock_store,
        job_backend,
        lock_ttl_seconds=settings.enqueue_lock_ttl_seconds,
        max_attempts=settings.job_max_attempts,
    )
    logger.info(
        "Registered destinations: %s", ", ".join(app.state.registry.destination_names()) or "none"
    )

    yield

    try:
        await job_backend.close()
    except Exception as exc:
        logger.error("Error during job backend shutdown: %s", exc, exc_info=True)

    close_lock_store = getattr(lock_store, "close", None)
    if close_lock_store is not None:
        try:
            await close_lock_store()
        except Exception as exc:
            logger.error("Error during lock store shutdown: %s", exc, exc_info=True)

    try:
        await engine.dispose()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)

    logger.info("crmsync stopped")


def create_app(
    settings: Settings | None = None,
    registry: DestinationRegistry | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()
    if registry is None:
        registry = load_registry(settings.registry)
    register_configured_destinations(registry, settings)

    docs_enabled = settings.debug or settings.expose_docs

    app = FastAPI(
        title="crmsync",
        description="Mirror database entities into external CRMs",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    app.state.settings = settings
    app.state.registry = registry

    app.include_router(health_router)
    app.include_router(sync_router)

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

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(
        request: Request, exc: ConfigurationError
    ) -> JSONResponse:
        logger.warning(
            "ConfigurationError in %s %s: %s", request.method, request.url.path, exc
        )
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(SynchronizationError)
    async def synchronization_error_handler(
        request: Request, exc: SynchronizationError
    ) -> JSONResponse:
        logger.error(
            "SynchronizationError in %s %s: %s", request.method, request.url.path, exc
        )
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    @app.exception_handler(DestinationError)
    async def destination_error_handler(request: Request, exc: DestinationError) -> JSONResponse:
        logger.error(
            "DestinationError in %s %s: %s (status=%d)",
            request.method,
            request.url.path,
            exc,
            exc.status,
        )
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.error("ValueError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        message = str(exc) or "Invalid value"
        return JSONResponse(status_code=422, content={"detail": message})

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
        "crmsync.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
