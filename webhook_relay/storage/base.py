"""
Payload Store Interface

Write-once object storage for webhook payloads in the indirect topology.
Every successful write emits an object-created notification to the
subscribed listeners (normally the queue's send).
"""
import datetime as dt
import uuid
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

from webhook_relay.models.pointer import PointerRecord, StoreTestEvent

NotificationListener = Callable[[bytes], Awaitable[object]]


class PayloadStoreError(Exception):
    """Store read/write failed."""
    pass


class PayloadNotFoundError(PayloadStoreError):
    """No object under the requested key (never written or already deleted)."""
    pass


class PayloadExistsError(PayloadStoreError):
    """Key already holds an object; stored payloads are immutable."""
    pass


class StoredPayload(BaseModel):
    """Object persisted in the payload store."""
    bucket: str
    key: str
    data: bytes
    created_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.UTC))

    @property
    def size(self) -> int:
        return len(self.data)


def generate_payload_key(now: Optional[dt.datetime] = None) -> str:
    """
    Build a fresh object key: epoch milliseconds plus a random suffix.

    The timestamp keeps keys roughly time-ordered when listed; the suffix
    keeps bursts within the same millisecond from colliding.
    """
    now = now or dt.datetime.now(dt.UTC)
    millis = int(now.timestamp() * 1000)
    return f"{millis}-{uuid.uuid4().hex}.json"


class PayloadStore(ABC):
    """
    Abstract payload store.

    Subclasses implement the raw object operations; notification fan-out
    lives here so every backend behaves the same way.
    """

    def __init__(self, bucket: str):
        self.bucket = bucket
        self._listeners: List[NotificationListener] = []

    async def subscribe(self, listener: NotificationListener) -> None:
        """
        Register an object-created listener.

        Like a real bucket notification configuration, wiring a listener
        first delivers a test event to it.
        """
        self._listeners.append(listener)
        await listener(StoreTestEvent(bucket=self.bucket).to_bytes())
        logger.info(f"Payload store notifications wired for bucket {self.bucket}")

    async def put(self, key: str, data: bytes) -> StoredPayload:
        """
        Write a payload and notify listeners.

        If a listener rejects the notification the object is removed again and
        the error is raised, so the caller can retry the whole hand-off
        instead of leaving an object nobody will deliver.

        Raises:
            PayloadExistsError: If the key is already taken
            PayloadStoreError: If the write or the notification fails
        """
        stored = await self._write(key, data)
        pointer = PointerRecord(
            bucket=self.bucket,
            key=key,
            size=stored.size,
            event_time=stored.created_at,
        )

        try:
            for listener in self._listeners:
                await listener(pointer.to_bytes())
        except Exception as e:
            logger.bind(bucket=self.bucket, key=key).error(
                f"Object-created notification failed for {key}: {e}"
            )
            try:
                await self.delete(key)
            except PayloadStoreError as cleanup_error:
                logger.error(f"Could not remove unannounced payload {key}: {cleanup_error}")
            raise PayloadStoreError(f"Notification for {key} failed: {e}") from e

        logger.bind(bucket=self.bucket, key=key, size=stored.size).debug(
            f"Stored payload {key}"
        )
        return stored

    @abstractmethod
    async def _write(self, key: str, data: bytes) -> StoredPayload:
        """Persist the object without notifying."""
        pass

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """
        Read a payload.

        Raises:
            PayloadNotFoundError: If no object exists under key
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Delete a payload.

        Returns:
            True if an object was removed, False if the key was already absent
        """
        pass

    async def ping(self) -> bool:
        """Readiness check for the backing storage."""
        return True

    async def close(self) -> None:
        """Release backend resources."""
        return None
