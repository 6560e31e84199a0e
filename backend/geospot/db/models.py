"""Data models for datasets and their features.

This module defines the core data structures used throughout the
application. A Dataset is one uploaded GeoJSON file; it exclusively owns
its Features, which keep the source geometry and properties verbatim.
Geometries and properties are plain decoded-JSON dictionaries.

Example:
    Creating a Dataset record as read back from the store:
        >>> from geospot.db.models import Dataset
        >>> dataset = Dataset(
        ...     id=1,
        ...     name="parks",
        ...     description="Uploaded GeoJSON file with 2 features",
        ...     uploaded_at=datetime.datetime.now(datetime.UTC),
        ...     feature_count=2,
        ...     bounds={
        ...         "type": "Polygon",
        ...         "coordinates": [[[0, 0], [0, 1], [1, 1], [1, 0], [0, 0]]],
        ...     },
        ...     file_size_bytes=512,
        ... )
"""

from __future__ import annotations

import dataclasses
import datetime
from typing import Any

Geometry = dict[str, Any]
Properties = dict[str, Any]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(tz=datetime.UTC)


@dataclasses.dataclass
class Dataset:
    """A persisted GeoJSON upload.

    Attributes:
        id: Store-assigned integer identifier.
        name: Unique dataset name derived from the uploaded file name.
        description: Optional free-text description.
        uploaded_at: Timestamp at which the dataset row was created.
        feature_count: Number of Feature rows owned by this dataset.
        bounds: Envelope of all child geometries as a GeoJSON geometry,
            None when the dataset has no features.
        file_size_bytes: Size of the original upload in bytes.
    """

    id: int
    name: str
    description: str | None
    uploaded_at: datetime.datetime
    feature_count: int
    bounds: Geometry | None
    file_size_bytes: int | None


@dataclasses.dataclass
class Feature:
    """A single geometry with its properties, owned by one dataset."""

    id: int
    dataset_id: int
    geometry: Geometry
    properties: Properties
    created_at: datetime.datetime = dataclasses.field(default_factory=_utcnow)


@dataclasses.dataclass(frozen=True)
class NewDataset:
    """Attributes supplied when a dataset row is first inserted."""

    name: str
    description: str | None
    file_size_bytes: int | None


@dataclasses.dataclass(frozen=True)
class ValidatedFeature:
    """A feature that passed FeatureCollection validation.

    Attributes:
        geometry: The feature's geometry exactly as uploaded.
        properties: The feature's properties, ``{}`` when absent or null.
    """

    geometry: Geometry
    properties: Properties


@dataclasses.dataclass(frozen=True)
class IngestSummary:
    """Outcome of a successful ingestion."""

    dataset_id: int
    name: str
    feature_count: int
    file_size_bytes: int
    uploaded_at: datetime.datetime
