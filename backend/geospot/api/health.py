"""Liveness and readiness endpoints.

``/health`` reports that the process is serving requests. ``/health/db``
and ``/ready`` additionally round-trip to the dataset store and answer 503
when it cannot be reached, so load balancers stop routing traffic to an
instance whose database is down.
"""

from __future__ import annotations

import logging

import fastapi

from geospot.api import datasets
from geospot.core import errors
from geospot.db import database

logger = logging.getLogger(__name__)

router = fastapi.APIRouter(tags=["health"])


def _check_store(store: database.DatasetStoreProtocol) -> None:
    try:
        store.ping()
    except errors.StoreFailureError as exc:
        logger.warning("Database health check failed: %s", exc.message)
        raise fastapi.HTTPException(
            status_code=503,
            detail="Database unavailable",
        ) from exc


@router.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint for monitoring and load balancers.

    Returns:
        Dictionary with status "ok" if the service is running.
    """
    return {"status": "ok"}


@router.get("/health/db")
def database_health(
    store: database.DatasetStoreProtocol = fastapi.Depends(datasets._get_store),  # noqa: B008
) -> dict[str, str]:
    """Check that the dataset store answers queries.

    Raises:
        HTTPException: 503 if the database cannot be reached.
    """
    _check_store(store)
    return {"status": "ok", "database": "connected"}


@router.get("/ready")
def readiness(
    store: database.DatasetStoreProtocol = fastapi.Depends(datasets._get_store),  # noqa: B008
) -> dict[str, str]:
    """Readiness probe: the service can accept uploads and queries.

    Raises:
        HTTPException: 503 if the database cannot be reached.
    """
    _check_store(store)
    return {"status": "ready"}
