"""GeoJSON ingestion pipeline.

The pipeline turns an uploaded file into one Dataset and its Features,
all or nothing. Checks run in a fixed order and each one can end the
upload before anything is written:

1. the file name must end in an accepted extension,
2. the payload must not exceed the configured size,
3. the bytes must decode as JSON,
4. the document must be a valid FeatureCollection,
5. no dataset with the derived name may exist.

Only then is a store transaction opened: the dataset row is inserted, the
features are bulk-inserted in upload order, the bounding box is computed
and written back together with the feature count, and the transaction
commits. Any failure inside the transaction rolls it back, so a failed
upload leaves no dataset and no features behind.

Example:
    Ingest an uploaded file:
        >>> from geospot.core.config import get_settings
        >>> from geospot.db import database
        >>> from geospot.services.ingest import IngestionPipeline

        >>> settings = get_settings()
        >>> pipeline = IngestionPipeline(
        ...     database.get_dataset_store(settings), settings
        ... )
        >>> summary = pipeline.ingest("parks.geojson", raw_bytes)
        >>> summary.feature_count
        12
"""

from __future__ import annotations

import json
import logging
import pathlib
from typing import TYPE_CHECKING, Any

from geospot.core import errors
from geospot.db import models as db_models
from geospot.services import validation

if TYPE_CHECKING:
    from geospot.core import config
    from geospot.db import database

logger = logging.getLogger(__name__)

# Maximum depth of nested arrays and objects in an uploaded document.
MAX_NESTING_DEPTH = 100


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def _check_nesting(document: Any, max_depth: int) -> None:
    stack: list[tuple[Any, int]] = [(document, 1)]
    while stack:
        value, depth = stack.pop()
        if isinstance(value, dict):
            children = list(value.values())
        elif isinstance(value, list):
            children = value
        else:
            continue
        if depth > max_depth:
            raise errors.MalformedDocumentError(
                f"Document nests too deeply (more than {max_depth} levels)"
            )
        stack.extend((child, depth + 1) for child in children)


def parse_document(
    file_bytes: bytes,
    max_depth: int = MAX_NESTING_DEPTH,
) -> Any:
    """Decode uploaded bytes as a JSON document.

    UTF-8, UTF-16 and UTF-32 input is accepted. The ``NaN``, ``Infinity``
    and ``-Infinity`` literals Python would otherwise accept are rejected,
    as are documents whose arrays and objects nest more than ``max_depth``
    levels deep.

    Raises:
        MalformedDocumentError: If the bytes are not valid JSON text or
            the document nests too deeply.
    """
    try:
        document = json.loads(file_bytes, parse_constant=_reject_constant)
    except UnicodeDecodeError as exc:
        raise errors.MalformedDocumentError(
            "File is not valid UTF-8 encoded JSON text"
        ) from exc
    except RecursionError as exc:
        raise errors.MalformedDocumentError(
            f"Document nests too deeply (more than {max_depth} levels)"
        ) from exc
    except ValueError as exc:
        raise errors.MalformedDocumentError(f"Malformed JSON: {exc}") from exc

    _check_nesting(document, max_depth)
    return document


def default_description(feature_count: int) -> str:
    return f"Uploaded GeoJSON file with {feature_count} features"


class IngestionPipeline:
    """Validate an uploaded GeoJSON file and persist it as a dataset.

    Attributes:
        store: Dataset store the pipeline writes to.
        settings: Settings providing the size limit and accepted
            extensions.
    """

    def __init__(
        self,
        store: database.DatasetStoreProtocol,
        settings: config.Settings,
    ) -> None:
        self.store = store
        self.settings = settings

    def dataset_name(self, file_name: str) -> str:
        """Derive the dataset name from an uploaded file name.

        Directory components and the accepted extension are removed and
        surrounding whitespace is stripped, so ``roads.geojson`` and
        ``roads.JSON`` both become ``roads``.

        Args:
            file_name: Name of the uploaded file as given by the client.

        Returns:
            The dataset name.

        Raises:
            UnsupportedFileTypeError: If the name does not end in an
                accepted extension (case-insensitive).
        """
        base_name = pathlib.PurePath(file_name.strip()).name
        lowered = base_name.lower()
        for extension in self.settings.allowed_extensions:
            if lowered.endswith(extension):
                return base_name[: -len(extension)].strip() or base_name

        accepted = ", ".join(self.settings.allowed_extensions)
        raise errors.UnsupportedFileTypeError(
            f"Unsupported file type. Accepted extensions: {accepted}"
        )

    def check_size(self, file_bytes: bytes) -> None:
        """Reject payloads larger than ``max_upload_size_bytes``.

        Raises:
            PayloadTooLargeError: If the payload exceeds the ceiling.
        """
        limit = self.settings.max_upload_size_bytes
        if len(file_bytes) > limit:
            raise errors.PayloadTooLargeError(
                f"File too large. Maximum size: {limit} bytes"
            )

    def ingest(
        self,
        file_name: str,
        file_bytes: bytes,
        description: str | None = None,
    ) -> db_models.IngestSummary:
        """Validate and persist one uploaded GeoJSON file.

        Args:
            file_name: Name of the uploaded file.
            file_bytes: Raw file content.
            description: Optional dataset description. Defaults to
                ``"Uploaded GeoJSON file with N features"``.

        Returns:
            IngestSummary describing the created dataset.

        Raises:
            UnsupportedFileTypeError: Unaccepted file extension.
            PayloadTooLargeError: Payload exceeds the size limit.
            MalformedDocumentError: Payload is not JSON.
            InvalidGeoJSONError: Document is not a valid FeatureCollection.
            DuplicateNameError: A dataset with the same name exists.
            StoreFailureError: The store failed while persisting; nothing
                was committed.
        """
        try:
            name = self.dataset_name(file_name)
            self.check_size(file_bytes)
            document = parse_document(file_bytes)
            features = validation.validate_feature_collection(document)
            if self.store.name_exists(name):
                raise errors.DuplicateNameError(name)
        except errors.GeoSpotError as exc:
            logger.info("Rejected upload %r: %s", file_name, exc.message)
            raise

        new_dataset = db_models.NewDataset(
            name=name,
            description=description or default_description(len(features)),
            file_size_bytes=len(file_bytes),
        )
        with self.store.transaction() as writer:
            dataset_id = writer.create_dataset(new_dataset)
            feature_count = writer.bulk_insert_features(dataset_id, features)
            bounds = writer.compute_bounds(dataset_id)
            dataset = writer.finalize_dataset(dataset_id, feature_count, bounds)

        logger.info(
            "Ingested dataset %s (%r) with %d features",
            dataset.id,
            dataset.name,
            dataset.feature_count,
        )
        return db_models.IngestSummary(
            dataset_id=dataset.id,
            name=dataset.name,
            feature_count=dataset.feature_count,
            file_size_bytes=len(file_bytes),
            uploaded_at=dataset.uploaded_at,
        )
