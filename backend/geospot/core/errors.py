"""Error taxonomy for dataset ingestion and retrieval.

Every failure the service reports to a caller is a subclass of
GeoSpotError. Each carries the HTTP status code the API layer answers with
and a single explanatory message that is forwarded verbatim as the
response ``detail``.

Example:
    Handle an ingestion failure:
        >>> from geospot.core import errors
        >>> try:
        ...     pipeline.ingest("roads.txt", b"{}")
        ... except errors.GeoSpotError as e:
        ...     print(e.status_code, e.message)
        400 Unsupported file type ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from geospot.services import validation


class GeoSpotError(Exception):
    """Base class for all errors surfaced to API callers.

    Attributes:
        status_code: HTTP status code used by the API exception handler.
        message: Human-readable explanation of the failure.
    """

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UnsupportedFileTypeError(GeoSpotError):
    """The uploaded file name does not end in an accepted extension."""

    status_code = 400


class PayloadTooLargeError(GeoSpotError):
    """The uploaded file exceeds the configured size ceiling."""

    status_code = 413


class MalformedDocumentError(GeoSpotError):
    """The uploaded bytes are not valid JSON text."""

    status_code = 400


class InvalidGeoJSONError(GeoSpotError):
    """The document is JSON but not an acceptable FeatureCollection.

    Attributes:
        index: Position of the first offending feature in the ``features``
            array, or None when the fault is at document level.
        cause: The GeometryError that rejected the feature's geometry, or
            None for structural faults.
    """

    status_code = 400

    def __init__(
        self,
        message: str,
        index: int | None = None,
        cause: validation.GeometryError | None = None,
    ) -> None:
        if index is not None:
            message = f"Invalid GeoJSON at feature {index}: {message}"
        else:
            message = f"Invalid GeoJSON: {message}"
        super().__init__(message)
        self.index = index
        self.cause = cause

    @property
    def kind(self) -> str | None:
        """Geometry error kind, if a geometry caused the rejection."""
        return self.cause.kind if self.cause is not None else None


class DuplicateNameError(GeoSpotError):
    """A dataset with the derived name already exists."""

    status_code = 409

    def __init__(self, name: str) -> None:
        super().__init__(f"Dataset with name '{name}' already exists")
        self.name = name


class DatasetNotFoundError(GeoSpotError):
    """No dataset exists with the requested id."""

    status_code = 404

    def __init__(self, dataset_id: int) -> None:
        super().__init__("Dataset not found")
        self.dataset_id = dataset_id


class StoreFailureError(GeoSpotError):
    """The persistence layer failed during an otherwise valid operation."""

    status_code = 500
