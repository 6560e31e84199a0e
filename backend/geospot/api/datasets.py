"""Dataset upload, query and deletion API endpoints.

This module exposes the REST surface used by the GeoSpot frontend:

- ``POST /api/v1/upload`` accepts a multipart GeoJSON upload and runs it
  through the ingestion pipeline.
- ``GET /api/v1/datasets`` lists datasets, newest first, with the total
  count for pagination.
- ``GET /api/v1/datasets/{id}`` returns one dataset's metadata.
- ``GET /api/v1/datasets/{id}/geojson`` exports a dataset as a
  FeatureCollection for the map view.
- ``DELETE /api/v1/datasets/{id}`` deletes a dataset and its features.

Errors raised by the pipeline and the store are GeoSpotError subclasses;
the handler registered in geospot.main turns them into ``{"detail": ...}``
responses.

Example:
    Upload a file and fetch it back:
        >>> response = client.post(
        ...     "/api/v1/upload",
        ...     files={"file": ("parks.geojson", open("parks.geojson", "rb"))},
        ... )
        >>> dataset_id = response.json()["id"]
        >>> client.get(f"/api/v1/datasets/{dataset_id}/geojson").json()
"""

from __future__ import annotations

import dataclasses
from typing import Any

from typing_extensions import TypedDict

import fastapi
from fastapi import concurrency

from geospot.core import config
from geospot.db import database
from geospot.db import models as db_models
from geospot.services import ingest

router = fastapi.APIRouter(prefix="/api/v1", tags=["datasets"])

_CHUNK_SIZE = 1024 * 1024


class UploadResponse(TypedDict):
    id: int
    name: str
    feature_count: int
    file_size_bytes: int
    uploaded_at: str
    message: str


class DatasetListResponse(TypedDict):
    datasets: list[dict[str, Any]]
    total: int
    skip: int
    limit: int


class DeleteResponse(TypedDict):
    message: str
    id: int


def _get_store(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> database.DatasetStoreProtocol:
    """Resolve the dataset store dependency.

    Args:
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        DatasetStoreProtocol implementation
            (PostgresDatasetStore in production).
    """
    return database.get_dataset_store(settings)


async def _read_upload(file: fastapi.UploadFile, max_size: int) -> bytes:
    """Read an upload, stopping once it is known to exceed ``max_size``.

    At most ``max_size + 1`` bytes are kept, enough for the pipeline's
    size check to reject the file without buffering all of it.
    """
    chunks: list[bytes] = []
    size = 0
    while size <= max_size:
        chunk = await file.read(_CHUNK_SIZE)
        if not chunk:
            break
        chunks.append(chunk)
        size += len(chunk)
    return b"".join(chunks)[: max_size + 1]


def _serialize_dataset(dataset: db_models.Dataset) -> dict[str, Any]:
    """Convert a Dataset to a JSON-ready dictionary."""
    result = dataclasses.asdict(dataset)
    result["uploaded_at"] = dataset.uploaded_at.isoformat()
    return result


@router.post("/upload")
async def upload_dataset(
    file: fastapi.UploadFile,
    description: str | None = fastapi.Form(None),  # noqa: B008
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
    store: database.DatasetStoreProtocol = fastapi.Depends(_get_store),  # noqa: B008
) -> UploadResponse:
    """Upload a GeoJSON FeatureCollection and store it as a dataset.

    The dataset name is the file name without its extension. Validation
    runs before anything is stored; the dataset and all its features are
    committed together or not at all.

    Args:
        file: Uploaded ``.geojson`` or ``.json`` file.
        description: Optional dataset description form field.
        settings: Application settings (injected via FastAPI Depends).
        store: Dataset store (injected via FastAPI Depends).

    Returns:
        Summary of the created dataset.

    Raises:
        GeoSpotError: Unsupported type (400), too large (413), malformed
            JSON or invalid GeoJSON (400), duplicate name (409), or store
            failure (500).

    Example:
        >>> response = client.post(
        ...     "/api/v1/upload",
        ...     files={"file": ("parks.geojson", raw_bytes)},
        ... )
        >>> # Returns: {"id": 1, "name": "parks", "feature_count": 12,
        >>> #           "file_size_bytes": 2048, "uploaded_at": "...",
        >>> #           "message": "Successfully uploaded 12 features"}
    """
    pipeline = ingest.IngestionPipeline(store, settings)
    file_bytes = await _read_upload(file, settings.max_upload_size_bytes)
    summary = await concurrency.run_in_threadpool(
        pipeline.ingest,
        file.filename or "",
        file_bytes,
        description,
    )
    return UploadResponse(
        id=summary.dataset_id,
        name=summary.name,
        feature_count=summary.feature_count,
        file_size_bytes=summary.file_size_bytes,
        uploaded_at=summary.uploaded_at.isoformat(),
        message=f"Successfully uploaded {summary.feature_count} features",
    )


@router.get("/datasets")
def list_datasets(
    skip: int = fastapi.Query(0, ge=0),  # noqa: B008
    limit: int | None = fastapi.Query(None, ge=0),  # noqa: B008
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
    store: database.DatasetStoreProtocol = fastapi.Depends(_get_store),  # noqa: B008
) -> DatasetListResponse:
    """List datasets, newest upload first.

    ``limit`` defaults to the configured page size and is clamped to the
    configured maximum (1000) whatever the caller asks for.

    Args:
        skip: Number of datasets to skip.
        limit: Maximum number of datasets to return.
        settings: Application settings (injected via FastAPI Depends).
        store: Dataset store (injected via FastAPI Depends).

    Returns:
        Dictionary with the page of datasets, the total number of
        datasets, and the effective skip and limit.
    """
    skip, effective_limit = database.clamp_page(skip, limit, settings)
    datasets, total = store.list_datasets(skip, effective_limit)
    return DatasetListResponse(
        datasets=[_serialize_dataset(d) for d in datasets],
        total=total,
        skip=skip,
        limit=effective_limit,
    )


@router.get("/datasets/{dataset_id}")
def get_dataset(
    dataset_id: int,
    store: database.DatasetStoreProtocol = fastapi.Depends(_get_store),  # noqa: B008
) -> dict[str, Any]:
    """Return one dataset's metadata, bounds as a GeoJSON geometry.

    Raises:
        DatasetNotFoundError: If the dataset does not exist (404).
    """
    return _serialize_dataset(store.get(dataset_id))


@router.get("/datasets/{dataset_id}/geojson")
def export_dataset(
    dataset_id: int,
    store: database.DatasetStoreProtocol = fastapi.Depends(_get_store),  # noqa: B008
) -> dict[str, Any]:
    """Export a dataset as a GeoJSON FeatureCollection.

    Features keep their stored id, geometry and properties and appear in
    upload order.

    Raises:
        DatasetNotFoundError: If the dataset does not exist (404).
    """
    return store.export_geojson(dataset_id)


@router.delete("/datasets/{dataset_id}")
def delete_dataset(
    dataset_id: int,
    store: database.DatasetStoreProtocol = fastapi.Depends(_get_store),  # noqa: B008
) -> DeleteResponse:
    """Delete a dataset together with all of its features.

    Raises:
        DatasetNotFoundError: If the dataset does not exist (404).
    """
    deleted_id = store.delete(dataset_id)
    return DeleteResponse(
        message=f"Dataset {deleted_id} deleted",
        id=deleted_id,
    )
