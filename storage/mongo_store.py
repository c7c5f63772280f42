"""
MongoDB fingerprint store for async operations.
One document per target, keyed by a unique index on target_id.
"""

from typing import Any, Dict, Optional

import structlog
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pydantic import ValidationError
from pymongo.errors import ConnectionFailure, PyMongoError

from patrol.errors import StoreError
from patrol.models import FingerprintRecord

logger = structlog.get_logger(__name__)


class MongoFingerprintStore:
    """
    Async MongoDB fingerprint store.
    Driver errors surface as StoreError so the engine can report them.
    """

    def __init__(self, connection_url: str, database_name: str, collection_name: str = "fingerprints"):
        """
        Initialize MongoDB store.

        Args:
            connection_url: MongoDB connection URL
            database_name: Name of the database
            collection_name: Name of the collection
        """
        self.connection_url = connection_url
        self.database_name = database_name
        self.collection_name = collection_name
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self.collection: Optional[AsyncIOMotorCollection] = None
        self.logger = logger.bind(component="mongo_store")

    async def open(self) -> None:
        """Establish connection to MongoDB and ensure indexes."""
        try:
            self.client = AsyncIOMotorClient(self.connection_url, tz_aware=True)
            self.database = self.client[self.database_name]
            self.collection = self.database[self.collection_name]

            await self.client.admin.command('ping')
            await self.collection.create_index("target_id", unique=True)

            self.logger.info(
                "Successfully connected to MongoDB",
                database=self.database_name,
                collection=self.collection_name
            )
        except ConnectionFailure as e:
            self.logger.error("Failed to connect to MongoDB", error=str(e))
            raise StoreError(f"Cannot connect to MongoDB: {e}") from e
        except PyMongoError as e:
            raise StoreError(f"MongoDB setup failed: {e}") from e

    async def close(self) -> None:
        """Close MongoDB connection."""
        if self.client:
            self.client.close()
            self.logger.info("Disconnected from MongoDB")

    async def read(self, target_id: str) -> Optional[FingerprintRecord]:
        try:
            document = await self._collection().find_one({"target_id": target_id})
        except PyMongoError as e:
            raise StoreError(f"Failed to read {target_id}: {e}") from e

        if document is None:
            return None
        return self._to_record(document)

    async def read_all(self) -> Dict[str, FingerprintRecord]:
        records = {}
        try:
            async for document in self._collection().find({}).sort("target_id", 1):
                record = self._to_record(document)
                records[record.target_id] = record
        except PyMongoError as e:
            raise StoreError(f"Failed to list records: {e}") from e
        return records

    async def write(self, record: FingerprintRecord) -> None:
        document = record.model_dump()
        try:
            await self._collection().replace_one(
                {"target_id": record.target_id},
                document,
                upsert=True
            )
        except PyMongoError as e:
            raise StoreError(f"Failed to write {record.target_id}: {e}") from e

        self.logger.debug("Stored fingerprint record", target_id=record.target_id)

    async def delete(self, target_id: str) -> Optional[FingerprintRecord]:
        try:
            document = await self._collection().find_one_and_delete({"target_id": target_id})
        except PyMongoError as e:
            raise StoreError(f"Failed to delete {target_id}: {e}") from e

        if document is None:
            return None
        self.logger.info("Deleted fingerprint record", target_id=target_id)
        return self._to_record(document)

    def _collection(self) -> AsyncIOMotorCollection:
        if self.collection is None:
            raise StoreError("Fingerprint store is not open")
        return self.collection

    @staticmethod
    def _to_record(document: Dict[str, Any]) -> FingerprintRecord:
        document = dict(document)
        document.pop("_id", None)
        try:
            return FingerprintRecord(**document)
        except ValidationError as e:
            raise StoreError(f"Malformed record {document.get('target_id')!r}: {e}") from e
