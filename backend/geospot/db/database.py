"""Dataset stores: the persistence boundary for datasets and features.

Two implementations share DatasetStoreProtocol:

- PostgresDatasetStore keeps datasets and features in PostgreSQL/PostGIS.
  Geometries are stored as PostGIS ``geometry`` values in the configured
  SRID, properties as ``json`` (not JSONB, which reorders keys), and the
  features foreign key cascades on delete so no orphaned feature can
  outlive its dataset.
- InMemoryDatasetStore keeps everything in dictionaries. It is used in
  tests and local development and honours the same transactional
  contract: writes made through a transaction become visible only when
  the block exits without an exception.

Writes always go through ``store.transaction()``, which yields a
DatasetWriterProtocol bound to one transaction.

Example:
    >>> store = get_dataset_store(settings)
    >>> with store.transaction() as writer:
    ...     dataset_id = writer.create_dataset(new_dataset)
    ...     count = writer.bulk_insert_features(dataset_id, features)
    ...     bounds = writer.compute_bounds(dataset_id)
    ...     dataset = writer.finalize_dataset(dataset_id, count, bounds)
"""

from __future__ import annotations

import contextlib
import copy
import dataclasses
import datetime
import itertools
import json
import logging
import threading
from typing import TYPE_CHECKING, Any, Protocol, cast

import psycopg2
import psycopg2.errors
import psycopg2.extensions
import psycopg2.extras
import shapely.errors
import shapely.geometry

from geospot.core import errors
from geospot.db import models as db_models

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Sequence

    from geospot.core import config

logger = logging.getLogger(__name__)

FeatureCollection = dict[str, Any]


def clamp_page(
    skip: int,
    limit: int | None,
    settings: config.Settings,
) -> tuple[int, int]:
    """Normalise pagination arguments.

    Args:
        skip: Number of rows to skip; negative values become 0.
        limit: Requested page size, None for the configured default.
        settings: Settings providing default and maximum page sizes.

    Returns:
        Tuple of (skip, limit) with limit within [0, max_page_size].
    """
    if limit is None:
        limit = settings.default_page_size
    return max(skip, 0), min(max(limit, 0), settings.max_page_size)


def envelope_of(geometries: Iterable[db_models.Geometry]) -> db_models.Geometry | None:
    """Envelope of a set of GeoJSON geometries, None if there are none."""
    try:
        collection = shapely.geometry.GeometryCollection(
            [shapely.geometry.shape(geometry) for geometry in geometries]
        )
    except (ValueError, shapely.errors.ShapelyError) as exc:
        raise errors.StoreFailureError(
            f"Cannot compute dataset bounds: {exc}"
        ) from exc
    if collection.is_empty:
        return None
    return cast(
        db_models.Geometry,
        shapely.geometry.mapping(collection.envelope),
    )


def feature_collection(
    features: Iterable[db_models.Feature],
) -> FeatureCollection:
    """Build the export document for a dataset's features."""
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "id": feature.id,
                "geometry": feature.geometry,
                "properties": feature.properties,
            }
            for feature in features
        ],
    }


class DatasetWriterProtocol(Protocol):
    """Write operations available inside one store transaction."""

    def create_dataset(self, new_dataset: db_models.NewDataset) -> int: ...

    def bulk_insert_features(
        self,
        dataset_id: int,
        features: Sequence[db_models.ValidatedFeature],
    ) -> int: ...

    def compute_bounds(self, dataset_id: int) -> db_models.Geometry | None: ...

    def finalize_dataset(
        self,
        dataset_id: int,
        feature_count: int,
        bounds: db_models.Geometry | None,
    ) -> db_models.Dataset: ...


class DatasetStoreProtocol(Protocol):
    """Protocol interface for storing and retrieving datasets.

    Lookups of a missing id raise DatasetNotFoundError. Persistence faults
    raise StoreFailureError.
    """

    def transaction(
        self,
    ) -> contextlib.AbstractContextManager[DatasetWriterProtocol]: ...

    def ensure_schema(self) -> None: ...

    def ping(self) -> None: ...

    def name_exists(self, name: str) -> bool: ...

    def get(self, dataset_id: int) -> db_models.Dataset: ...

    def list_datasets(
        self,
        skip: int = 0,
        limit: int | None = None,
    ) -> tuple[list[db_models.Dataset], int]: ...

    def delete(self, dataset_id: int) -> int: ...

    def export_geojson(self, dataset_id: int) -> FeatureCollection: ...


class _InMemoryDatasetWriter(DatasetWriterProtocol):
    """Writer operating on private copies of the store's tables."""

    def __init__(
        self,
        store: InMemoryDatasetStore,
        datasets: dict[int, db_models.Dataset],
        features: dict[int, db_models.Feature],
    ) -> None:
        self._store = store
        self.datasets = datasets
        self.features = features

    def create_dataset(self, new_dataset: db_models.NewDataset) -> int:
        if any(d.name == new_dataset.name for d in self.datasets.values()):
            raise errors.DuplicateNameError(new_dataset.name)

        dataset_id = next(self._store._dataset_ids)
        self.datasets[dataset_id] = db_models.Dataset(
            id=dataset_id,
            name=new_dataset.name,
            description=new_dataset.description,
            uploaded_at=datetime.datetime.now(datetime.UTC),
            feature_count=0,
            bounds=None,
            file_size_bytes=new_dataset.file_size_bytes,
        )
        return dataset_id

    def bulk_insert_features(
        self,
        dataset_id: int,
        features: Sequence[db_models.ValidatedFeature],
    ) -> int:
        if dataset_id not in self.datasets:
            raise errors.StoreFailureError(
                f"Dataset {dataset_id} does not exist"
            )

        rows = [
            db_models.Feature(
                id=next(self._store._feature_ids),
                dataset_id=dataset_id,
                geometry=copy.deepcopy(feature.geometry),
                properties=copy.deepcopy(feature.properties),
            )
            for feature in features
        ]
        self.features.update((row.id, row) for row in rows)
        return len(rows)

    def compute_bounds(self, dataset_id: int) -> db_models.Geometry | None:
        return envelope_of(
            feature.geometry
            for feature in self.features.values()
            if feature.dataset_id == dataset_id
        )

    def finalize_dataset(
        self,
        dataset_id: int,
        feature_count: int,
        bounds: db_models.Geometry | None,
    ) -> db_models.Dataset:
        dataset = dataclasses.replace(
            self.datasets[dataset_id],
            feature_count=feature_count,
            bounds=bounds,
        )
        self.datasets[dataset_id] = dataset
        return dataclasses.replace(dataset)


class InMemoryDatasetStore(DatasetStoreProtocol):
    """Simple in-memory store for tests and local development.

    Data is lost when the process exits. Ids are drawn from counters that
    are not rewound on rollback, mirroring database sequences.

    Writes are serialized by a lock held for the whole of a transaction
    and for each delete, so uploads running in worker threads cannot
    overwrite each other's changes. Reads take no lock and see the last
    published state.
    """

    def __init__(self, settings: config.Settings) -> None:
        """Initialize an empty in-memory store.

        Args:
            settings: Settings providing pagination limits.
        """
        self.settings = settings
        self._datasets: dict[int, db_models.Dataset] = {}
        self._features: dict[int, db_models.Feature] = {}
        self._dataset_ids = itertools.count(1)
        self._feature_ids = itertools.count(1)
        self._write_lock = threading.Lock()

    @contextlib.contextmanager
    def transaction(self) -> Iterator[_InMemoryDatasetWriter]:
        """Yield a writer whose changes are published only on success."""
        with self._write_lock:
            writer = _InMemoryDatasetWriter(
                self,
                dict(self._datasets),
                dict(self._features),
            )
            try:
                yield writer
            except Exception:
                logger.info("In-memory transaction rolled back")
                raise
            self._datasets = writer.datasets
            self._features = writer.features

    def ensure_schema(self) -> None:
        return None

    def ping(self) -> None:
        return None

    def name_exists(self, name: str) -> bool:
        return any(d.name == name for d in self._datasets.values())

    def get(self, dataset_id: int) -> db_models.Dataset:
        dataset = self._datasets.get(dataset_id)
        if dataset is None:
            raise errors.DatasetNotFoundError(dataset_id)
        return dataclasses.replace(dataset)

    def list_datasets(
        self,
        skip: int = 0,
        limit: int | None = None,
    ) -> tuple[list[db_models.Dataset], int]:
        skip, limit = clamp_page(skip, limit, self.settings)
        ordered = sorted(
            self._datasets.values(),
            key=lambda d: (d.uploaded_at, d.id),
            reverse=True,
        )
        page = [dataclasses.replace(d) for d in ordered[skip : skip + limit]]
        return page, len(ordered)

    def delete(self, dataset_id: int) -> int:
        with self._write_lock:
            if dataset_id not in self._datasets:
                raise errors.DatasetNotFoundError(dataset_id)

            datasets = dict(self._datasets)
            del datasets[dataset_id]
            features = {
                feature_id: feature
                for feature_id, feature in self._features.items()
                if feature.dataset_id != dataset_id
            }
            self._datasets, self._features = datasets, features
        return dataset_id

    def export_geojson(self, dataset_id: int) -> FeatureCollection:
        if dataset_id not in self._datasets:
            raise errors.DatasetNotFoundError(dataset_id)

        features = sorted(
            (f for f in self._features.values() if f.dataset_id == dataset_id),
            key=lambda f: f.id,
        )
        return copy.deepcopy(feature_collection(features))


DATASET_COLUMNS = """
    id, name, description, uploaded_at, feature_count,
    ST_AsGeoJSON(bounds, 15, 0)::json AS bounds, file_size_bytes
"""


class _PostgresDatasetWriter(DatasetWriterProtocol):
    """Writer bound to the cursor of one open PostgreSQL transaction."""

    def __init__(
        self,
        cursor: psycopg2.extras.RealDictCursor,
        srid: int,
    ) -> None:
        self._cursor = cursor
        self._srid = srid

    def create_dataset(self, new_dataset: db_models.NewDataset) -> int:
        try:
            self._cursor.execute(
                """
                INSERT INTO datasets (name, description, file_size_bytes)
                VALUES (%(name)s, %(description)s, %(file_size_bytes)s)
                RETURNING id;
                """,
                dataclasses.asdict(new_dataset),
            )
        except psycopg2.errors.UniqueViolation as exc:
            raise errors.DuplicateNameError(new_dataset.name) from exc

        row = cast(dict[str, Any], self._cursor.fetchone())
        return int(row["id"])

    def bulk_insert_features(
        self,
        dataset_id: int,
        features: Sequence[db_models.ValidatedFeature],
    ) -> int:
        if not features:
            return 0

        psycopg2.extras.execute_values(
            self._cursor,
            "INSERT INTO features (dataset_id, geometry, properties) VALUES %s",
            [
                (
                    dataset_id,
                    json.dumps(feature.geometry),
                    self._srid,
                    psycopg2.extras.Json(feature.properties),
                )
                for feature in features
            ],
            template="(%s, ST_SetSRID(ST_GeomFromGeoJSON(%s), %s), %s)",
            page_size=1000,
        )
        return len(features)

    def compute_bounds(self, dataset_id: int) -> db_models.Geometry | None:
        self._cursor.execute(
            """
            SELECT ST_AsGeoJSON(ST_Envelope(ST_Collect(geometry)), 15, 0)::json
                AS bounds
            FROM features
            WHERE dataset_id = %s;
            """,
            (dataset_id,),
        )
        row = self._cursor.fetchone()
        if row is None:
            return None
        return cast(db_models.Geometry | None, row["bounds"])

    def finalize_dataset(
        self,
        dataset_id: int,
        feature_count: int,
        bounds: db_models.Geometry | None,
    ) -> db_models.Dataset:
        self._cursor.execute(
            f"""
            UPDATE datasets
            SET feature_count = %(feature_count)s,
                bounds = ST_SetSRID(ST_GeomFromGeoJSON(%(bounds)s), %(srid)s)
            WHERE id = %(id)s
            RETURNING {DATASET_COLUMNS};
            """,
            {
                "id": dataset_id,
                "feature_count": feature_count,
                "bounds": json.dumps(bounds) if bounds is not None else None,
                "srid": self._srid,
            },
        )
        row = self._cursor.fetchone()
        if row is None:
            raise errors.StoreFailureError(
                f"Dataset {dataset_id} vanished before commit"
            )
        return PostgresDatasetStore._from_row(cast(dict[str, object], row))


class PostgresDatasetStore(DatasetStoreProtocol):
    """PostgreSQL/PostGIS-backed dataset store.

    Every public call opens its own connection and transaction. psycopg2
    errors are logged and re-raised as StoreFailureError; the transaction
    is rolled back before the error leaves the store.
    """

    CREATE_SCHEMA_SQL = """
    CREATE EXTENSION IF NOT EXISTS postgis;

    CREATE TABLE IF NOT EXISTS datasets (
      id SERIAL PRIMARY KEY,
      name TEXT NOT NULL UNIQUE,
      description TEXT,
      uploaded_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      feature_count INTEGER NOT NULL DEFAULT 0,
      bounds geometry,
      file_size_bytes BIGINT,
      CONSTRAINT datasets_bounds_srid
        CHECK (bounds IS NULL OR ST_SRID(bounds) = %(srid)s)
    );

    CREATE TABLE IF NOT EXISTS features (
      id SERIAL PRIMARY KEY,
      dataset_id INTEGER NOT NULL
        REFERENCES datasets (id) ON DELETE CASCADE,
      geometry geometry NOT NULL,
      properties JSON NOT NULL DEFAULT '{}'::json,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      CONSTRAINT features_geometry_srid CHECK (ST_SRID(geometry) = %(srid)s)
    );

    CREATE INDEX IF NOT EXISTS features_dataset_id_idx
      ON features (dataset_id);
    CREATE INDEX IF NOT EXISTS features_geometry_idx
      ON features USING GIST (geometry);
    CREATE INDEX IF NOT EXISTS datasets_uploaded_at_idx
      ON datasets (uploaded_at DESC);
    """

    def __init__(self, settings: config.Settings) -> None:
        """Initialize store with database settings.

        Args:
            settings: Application settings containing the connection URL,
                SRID and pagination limits.
        """
        self.settings = settings

    def _connection(self) -> psycopg2.extensions.connection:
        """Create a new database connection returning dict rows.

        Raises:
            StoreFailureError: If the database cannot be reached.
        """
        try:
            return psycopg2.connect(
                self.settings.database_url,
                cursor_factory=psycopg2.extras.RealDictCursor,
            )
        except psycopg2.Error as exc:
            logger.error("Database connection failed: %s", exc)
            raise errors.StoreFailureError("Database unavailable") from exc

    @contextlib.contextmanager
    def _cursor(self) -> Iterator[psycopg2.extras.RealDictCursor]:
        """Run the enclosed block in one transaction.

        Commits when the block exits normally and rolls back otherwise.
        The connection is always closed.
        """
        conn = self._connection()
        try:
            with conn, conn.cursor() as cur:
                yield cur
        except errors.GeoSpotError as exc:
            logger.info("Transaction rolled back: %s", exc.message)
            raise
        except psycopg2.Error as exc:
            logger.exception("Database error, transaction rolled back")
            raise errors.StoreFailureError(
                f"Database error: {type(exc).__name__}"
            ) from exc
        finally:
            conn.close()

    @contextlib.contextmanager
    def transaction(self) -> Iterator[_PostgresDatasetWriter]:
        with self._cursor() as cur:
            yield _PostgresDatasetWriter(cur, self.settings.srid)

    def ensure_schema(self) -> None:
        """Ensure the PostGIS extension, tables and indexes exist.

        Safe to call repeatedly; every statement is idempotent.
        """
        with self._cursor() as cur:
            cur.execute(self.CREATE_SCHEMA_SQL, {"srid": self.settings.srid})
        logger.info("Database schema ready")

    def ping(self) -> None:
        with self._cursor() as cur:
            cur.execute("SELECT 1;")

    def name_exists(self, name: str) -> bool:
        with self._cursor() as cur:
            cur.execute("SELECT 1 FROM datasets WHERE name = %s;", (name,))
            return cur.fetchone() is not None

    def get(self, dataset_id: int) -> db_models.Dataset:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {DATASET_COLUMNS} FROM datasets WHERE id = %s;",
                (dataset_id,),
            )
            row = cur.fetchone()
        if row is None:
            raise errors.DatasetNotFoundError(dataset_id)
        return self._from_row(cast(dict[str, object], row))

    def list_datasets(
        self,
        skip: int = 0,
        limit: int | None = None,
    ) -> tuple[list[db_models.Dataset], int]:
        skip, limit = clamp_page(skip, limit, self.settings)
        with self._cursor() as cur:
            cur.execute("SELECT count(*) AS total FROM datasets;")
            total = int(cast(dict[str, Any], cur.fetchone())["total"])
            cur.execute(
                f"""
                SELECT {DATASET_COLUMNS}
                FROM datasets
                ORDER BY uploaded_at DESC, id DESC
                OFFSET %s LIMIT %s;
                """,
                (skip, limit),
            )
            rows = cur.fetchall()
        return [self._from_row(cast(dict[str, object], r)) for r in rows], total

    def delete(self, dataset_id: int) -> int:
        with self._cursor() as cur:
            cur.execute(
                "DELETE FROM datasets WHERE id = %s RETURNING id;",
                (dataset_id,),
            )
            row = cur.fetchone()
        if row is None:
            raise errors.DatasetNotFoundError(dataset_id)
        logger.info("Deleted dataset %s", dataset_id)
        return int(row["id"])

    def export_geojson(self, dataset_id: int) -> FeatureCollection:
        with self._cursor() as cur:
            cur.execute("SELECT 1 FROM datasets WHERE id = %s;", (dataset_id,))
            if cur.fetchone() is None:
                raise errors.DatasetNotFoundError(dataset_id)
            cur.execute(
                """
                SELECT id, dataset_id,
                    ST_AsGeoJSON(geometry, 15, 0)::json AS geometry,
                    properties, created_at
                FROM features
                WHERE dataset_id = %s
                ORDER BY id;
                """,
                (dataset_id,),
            )
            rows = cur.fetchall()
        return feature_collection(
            db_models.Feature(**cast(dict[str, Any], row)) for row in rows
        )

    @staticmethod
    def _from_row(row: dict[str, object]) -> db_models.Dataset:
        """Convert a datasets row dictionary to a Dataset.

        Args:
            row: Dictionary from a query selecting DATASET_COLUMNS.

        Returns:
            Dataset with all fields populated.
        """
        file_size_value = row.get("file_size_bytes")
        file_size = (
            int(cast(int, file_size_value))
            if file_size_value is not None
            else None
        )
        description_value = row.get("description")

        return db_models.Dataset(
            id=int(cast(int, row["id"])),
            name=str(row["name"]),
            description=(
                str(description_value) if description_value is not None else None
            ),
            uploaded_at=cast(datetime.datetime, row["uploaded_at"]),
            feature_count=int(cast(int, row["feature_count"])),
            bounds=cast(db_models.Geometry | None, row.get("bounds")),
            file_size_bytes=file_size,
        )


def get_dataset_store(settings: config.Settings) -> DatasetStoreProtocol:
    """Factory function to create a dataset store.

    Args:
        settings: Application settings for database connection.

    Returns:
        PostgresDatasetStore instance for production use.
    """
    return PostgresDatasetStore(settings)
