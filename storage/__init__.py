"""
Fingerprint store adapters.

- JsonFileFingerprintStore: one JSON data file (default)
- MongoFingerprintStore: one MongoDB document per target
"""

from pathlib import Path
from typing import Union

from storage.json_store import JsonFileFingerprintStore
from storage.mongo_store import MongoFingerprintStore
from utilities.config import PatrolConfig


def build_store(settings: PatrolConfig, data_path: Union[str, Path]):
    """Create the store selected by `store_backend`. Call `open()` on the result before use."""
    if settings.store_backend == "mongodb":
        return MongoFingerprintStore(
            connection_url=settings.mongodb_url,
            database_name=settings.mongodb_database,
            collection_name=settings.mongodb_collection
        )
    return JsonFileFingerprintStore(data_path)


__all__ = ["JsonFileFingerprintStore", "MongoFingerprintStore", "build_store"]
