"""GeoSpot backend: GeoJSON dataset service.

This package contains the backend for uploading, validating, storing and
serving GeoJSON FeatureCollections. Uploaded files are validated in full
before any write, then persisted into PostgreSQL/PostGIS inside a single
transaction so a dataset and its features appear together or not at all.

- Validates FeatureCollections and every feature geometry up front
- Stores datasets and features with cascading deletes and spatial bounds
- Lists, describes, exports (as GeoJSON) and deletes datasets over REST
- Designed for FastAPI dependency injection, with an in-memory store for
  tests and local development

See README and module sub-docstrings for details on architecture and usage.
"""
