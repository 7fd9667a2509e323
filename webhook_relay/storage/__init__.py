"""
Payload Storage
Write-once object stores that announce new objects to the queue.
"""
from webhook_relay.storage.base import (
    PayloadStore,
    PayloadStoreError,
    PayloadNotFoundError,
    PayloadExistsError,
    StoredPayload,
    generate_payload_key,
)
from webhook_relay.storage.memory import InMemoryPayloadStore

__all__ = [
    "PayloadStore",
    "PayloadStoreError",
    "PayloadNotFoundError",
    "PayloadExistsError",
    "StoredPayload",
    "generate_payload_key",
    "InMemoryPayloadStore",
]
