"""FastAPI application entrypoint and configuration.

This module provides the main FastAPI application factory that sets up
logging, CORS middleware, the API routers for datasets and health checks,
and the handler that turns GeoSpotError exceptions into JSON responses.
On startup the database schema is created if it does not exist.

Example:
    The application can be run with uvicorn:
        $ uvicorn geospot.main:app --reload

    Or imported and used programmatically:
        >>> from geospot.main import app
        >>> # Use app in ASGI server
"""

from __future__ import annotations

import contextlib
import logging
from typing import TYPE_CHECKING

import fastapi
from fastapi import responses
from fastapi.middleware import cors

from geospot.api import datasets, health
from geospot.core import config, errors, logging_config
from geospot.db import database

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


@contextlib.asynccontextmanager
async def lifespan(app: fastapi.FastAPI) -> AsyncIterator[None]:
    """Create the database schema before the first request is served."""
    settings = config.get_settings()
    database.get_dataset_store(settings).ensure_schema()
    yield


async def handle_geospot_error(
    request: fastapi.Request,
    exc: errors.GeoSpotError,
) -> responses.JSONResponse:
    """Render a GeoSpotError as ``{"detail": message}``."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return responses.JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
    )


def create_app() -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    Configures logging, includes the dataset and health routers, adds CORS
    middleware with origins from settings, and registers the GeoSpotError
    exception handler.

    Returns:
        Configured FastAPI application instance ready for ASGI server.

    Example:
        The app can be used with uvicorn or other ASGI servers:
            >>> app = create_app()
            >>> # Or use the module-level app instance:
            >>> from geospot.main import app
    """
    settings = config.get_settings()
    logging_config.configure_logging(settings)

    app = fastapi.FastAPI(title="GeoSpot API", version="0.1.0", lifespan=lifespan)

    app.include_router(health.router)
    app.include_router(datasets.router)

    app.add_middleware(
        cors.CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(
        errors.GeoSpotError,
        handle_geospot_error,  # type: ignore[arg-type]
    )

    return app


app = create_app()
