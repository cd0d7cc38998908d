"""MongoDB record store using the motor asyncio driver.

Each queue lives in its own collection. Filters and updates are passed to
MongoDB unchanged, so every single-document update is atomic on the server.

Usage:
    store = MongoRecordStore.from_url(
        "mongodb://localhost:27017", database="docqueue", collection_name="payloads"
    )
    await store.ensure_indexes()
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient

from docqueue.stores.base import Document, Filter, RecordStore, SortSpec, Update

if TYPE_CHECKING:
    from motor.motor_asyncio import AsyncIOMotorCollection

logger = logging.getLogger(__name__)


class MongoRecordStore(RecordStore):
    """RecordStore backed by a single MongoDB collection.

    Attributes:
        collection: The motor collection holding the queue's documents.
    """

    def __init__(
        self,
        collection: AsyncIOMotorCollection,
        client: AsyncIOMotorClient | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            collection: Collection to read and write.
            client: Owning client, closed by close() when given.
        """
        self.collection = collection
        self._client = client

    @classmethod
    def from_url(
        cls,
        url: str,
        database: str,
        collection_name: str,
        server_selection_timeout_ms: int = 30000,
    ) -> MongoRecordStore:
        """Connect to MongoDB and bind to one collection.

        The client is created with tz_aware=True so datetimes come back in UTC
        with tzinfo attached.
        """
        client = AsyncIOMotorClient(
            url,
            tz_aware=True,
            serverSelectionTimeoutMS=server_selection_timeout_ms,
        )
        logger.info(
            "MongoDB record store configured: database=%s, collection=%s",
            database,
            collection_name,
        )
        return cls(client[database][collection_name], client=client)

    async def ensure_indexes(self) -> None:
        """Create the indexes used by batch selection and cleanup."""
        await self.collection.create_index(
            [("status", 1), ("available", 1), ("received_date", 1)],
            name="ix_queue_pending",
        )
        await self.collection.create_index(
            [("status", 1), ("processed_date", 1)],
            name="ix_queue_processed",
        )

    async def insert_one(self, document: Document) -> Document:
        stored = dict(document)
        result = await self.collection.insert_one(stored)
        stored["_id"] = result.inserted_id
        return stored

    async def find(
        self,
        query: Filter,
        sort: SortSpec = (),
        limit: int = 0,
    ) -> list[Document]:
        cursor = self.collection.find(query)
        if sort:
            cursor = cursor.sort(list(sort))
        if limit:
            cursor = cursor.limit(limit)
        return await cursor.to_list(length=None)

    async def update_one(self, query: Filter, update: Update) -> int:
        result = await self.collection.update_one(query, update)
        return result.matched_count

    async def update_many(self, query: Filter, update: Update) -> int:
        result = await self.collection.update_many(query, update)
        return result.matched_count

    async def delete_many(self, query: Filter) -> int:
        result = await self.collection.delete_many(query)
        return result.deleted_count

    def coerce_id(self, value: Any) -> ObjectId | None:
        if isinstance(value, ObjectId):
            return value
        try:
            return ObjectId(str(value))
        except (InvalidId, TypeError):
            return None

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            logger.debug("MongoDB client closed")
