"""
MongoDB Payload Store

Persists payloads as documents keyed by (bucket, key) so stored webhooks
survive a restart between ingress and delivery.
"""
from typing import Optional

from bson import Binary
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, PyMongoError
from loguru import logger

from webhook_relay.storage.connection import MongoConnection
from webhook_relay.storage.base import (
    PayloadExistsError,
    PayloadNotFoundError,
    PayloadStore,
    PayloadStoreError,
    StoredPayload,
)


class MongoPayloadStore(PayloadStore):
    """
    Payload store on a MongoDB collection.

    Usage:
        connection = MongoConnection.from_settings(settings)
        store = MongoPayloadStore(await connection.connect(), "webhook-payloads", connection=connection)
        await store.create_indexes()
    """

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        bucket: str,
        collection_name: str = "payloads",
        connection: Optional[MongoConnection] = None,
    ):
        super().__init__(bucket)
        self.database = database
        self.collection: AsyncIOMotorCollection = database[collection_name]
        self._connection = connection

    async def create_indexes(self) -> None:
        """Unique (bucket, key) index; enforces write-once keys."""
        await self.collection.create_index(
            [("bucket", 1), ("key", 1)],
            unique=True,
            name="idx_bucket_key_unique"
        )
        logger.info("Payload store indexes created")

    async def _write(self, key: str, data: bytes) -> StoredPayload:
        stored = StoredPayload(bucket=self.bucket, key=key, data=data)
        try:
            await self.collection.insert_one({
                "bucket": stored.bucket,
                "key": stored.key,
                "data": Binary(stored.data),
                "size": stored.size,
                "created_at": stored.created_at,
            })
        except DuplicateKeyError as e:
            raise PayloadExistsError(f"Key {key} already exists in {self.bucket}") from e
        except PyMongoError as e:
            raise PayloadStoreError(f"Failed to store payload {key}: {e}") from e
        return stored

    async def get(self, key: str) -> bytes:
        try:
            doc = await self.collection.find_one({"bucket": self.bucket, "key": key})
        except PyMongoError as e:
            raise PayloadStoreError(f"Failed to read payload {key}: {e}") from e

        if doc is None:
            raise PayloadNotFoundError(f"No payload {key} in {self.bucket}")

        return bytes(doc["data"])

    async def delete(self, key: str) -> bool:
        try:
            result = await self.collection.delete_one({"bucket": self.bucket, "key": key})
        except PyMongoError as e:
            raise PayloadStoreError(f"Failed to delete payload {key}: {e}") from e

        if result.deleted_count > 0:
            logger.bind(bucket=self.bucket, key=key).debug(
                f"Deleted payload {key}"
            )
            return True
        return False

    async def ping(self) -> bool:
        try:
            await self.database.command("ping")
            return True
        except PyMongoError as e:
            logger.error(f"Payload store ping failed: {e}")
            return False

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.disconnect()
