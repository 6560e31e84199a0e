"""Dataset persistence: domain models and store implementations.

geospot.db.models holds the dataclasses shared across the application;
geospot.db.database holds DatasetStoreProtocol with its PostgreSQL/PostGIS
and in-memory implementations.

Example:
    Use in a service or FastAPI dependency:
        >>> from geospot.db import database
        >>> store = database.get_dataset_store(settings)
"""
