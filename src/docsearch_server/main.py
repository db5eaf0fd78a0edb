"""
Document Search Service Entry Point

This module defines the FastAPI application instance, registers all routers,
configures global exception handling, and wires the service container into
the application lifespan.

Design Goals
------------
- Deterministic startup and reverse-order shutdown
- Startup survives unreachable dependencies (they surface in /health)
- Global exception safety net
- Test-friendly via create_app()
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from .config import Settings, settings as default_settings
from .core.container import ServiceContainer
from .core.errors import (
    ServiceError,
    request_validation_handler,
    service_error_handler,
    unhandled_exception_handler,
)
from .db import AsyncSessionLocal, create_schema
from .api import (
    document_routes,
    search_routes,
    health_routes,
)


logger = logging.getLogger("docsearch.app")


# ---------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------

def _build_lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Starting docsearch-server")

        try:
            await create_schema()
        except Exception:
            logger.warning("Could not create database schema at startup", exc_info=True)

        container = ServiceContainer(settings, AsyncSessionLocal)
        await container.initialize()
        await container.start_background()
        app.state.container = container

        try:
            yield
        finally:
            logger.info("Shutting down docsearch-server")
            app.state.container = None
            await container.close()

    return lifespan


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_app(settings: Optional[Settings] = None, with_lifespan: bool = True) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Parameters
    ----------
    settings : Optional[Settings]
        Configuration; defaults to the module-level settings.
    with_lifespan : bool
        When False no container is built, so tests can supply every service
        through `app.dependency_overrides`.

    Returns
    -------
    FastAPI
        Fully configured FastAPI application.
    """
    settings = settings or default_settings

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="docsearch-server",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=_build_lifespan(settings) if with_lifespan else None,
    )

    # --------------------------------------------------------------
    # Global Exception Handling
    # --------------------------------------------------------------

    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # --------------------------------------------------------------
    # Router Registration
    # --------------------------------------------------------------

    app.include_router(health_routes.router)
    app.include_router(document_routes.router)
    app.include_router(search_routes.router)

    return app


# ---------------------------------------------------------------------
# Default Application Instance (for Uvicorn/Gunicorn)
# ---------------------------------------------------------------------

app = create_app()
