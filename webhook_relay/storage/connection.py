"""
MongoDB Connection
Motor client lifecycle for the persistent payload store backend.
"""
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from loguru import logger

from webhook_relay.config import Settings


class MongoConnection:
    """
    Owns one Motor client for the lifetime of the app.

    Built from explicit settings in the lifespan and closed on shutdown;
    the payload store only ever sees the database handle.
    """

    def __init__(
        self,
        uri: str,
        database_name: str,
        max_pool_size: int = 50,
        min_pool_size: int = 5,
        server_selection_timeout_ms: int = 5000,
    ):
        self.uri = uri
        self.database_name = database_name
        self.max_pool_size = max_pool_size
        self.min_pool_size = min_pool_size
        self.server_selection_timeout_ms = server_selection_timeout_ms
        self._client: Optional[AsyncIOMotorClient] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "MongoConnection":
        return cls(
            uri=settings.mongodb_uri,
            database_name=settings.mongodb_database,
            max_pool_size=settings.mongodb_max_pool_size,
            min_pool_size=settings.mongodb_min_pool_size,
            server_selection_timeout_ms=settings.mongodb_server_selection_timeout_ms,
        )

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> AsyncIOMotorDatabase:
        """
        Create the client (first call only) and return the database.

        Motor connects lazily, so this never blocks on the server; the
        readiness check is where an unreachable server shows up.
        """
        if self._client is None:
            logger.bind(database=self.database_name, max_pool_size=self.max_pool_size).info(
                "Connecting payload store to MongoDB"
            )
            self._client = AsyncIOMotorClient(
                self.uri,
                maxPoolSize=self.max_pool_size,
                minPoolSize=self.min_pool_size,
                serverSelectionTimeoutMS=self.server_selection_timeout_ms,
            )
        return self.database

    async def disconnect(self) -> None:
        if self._client is None:
            return

        logger.info("Closing MongoDB connection")
        self._client.close()
        self._client = None

    @property
    def database(self) -> AsyncIOMotorDatabase:
        if self._client is None:
            raise RuntimeError("MongoDB not connected. Call await connection.connect() first.")
        return self._client[self.database_name]
