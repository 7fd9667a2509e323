"""
In-Memory Payload Store

Dictionary-backed store for tests and single-instance deployments.
Data is lost on restart.
"""
import asyncio
from typing import Dict

from webhook_relay.storage.base import (
    PayloadExistsError,
    PayloadNotFoundError,
    PayloadStore,
    StoredPayload,
)


class InMemoryPayloadStore(PayloadStore):
    """Payload store that keeps objects in process memory."""

    def __init__(self, bucket: str = "webhook-payloads"):
        super().__init__(bucket)
        self._objects: Dict[str, StoredPayload] = {}
        self._lock = asyncio.Lock()

    async def _write(self, key: str, data: bytes) -> StoredPayload:
        async with self._lock:
            if key in self._objects:
                raise PayloadExistsError(f"Key {key} already exists in {self.bucket}")

            stored = StoredPayload(bucket=self.bucket, key=key, data=data)
            self._objects[key] = stored
            return stored

    async def get(self, key: str) -> bytes:
        async with self._lock:
            stored = self._objects.get(key)
            if stored is None:
                raise PayloadNotFoundError(f"No payload {key} in {self.bucket}")
            return stored.data

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._objects.pop(key, None) is not None

    def __len__(self) -> int:
        return len(self._objects)

    def __contains__(self, key: str) -> bool:
        return key in self._objects
