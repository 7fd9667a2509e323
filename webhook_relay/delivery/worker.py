"""
Delivery Worker

Turns one queue message into a DeliveryOutcome: resolve the payload
(inline or through the payload store), POST it to the destination, and
classify the response. Workers hold no per-message state; every attempt
depends only on its message and the configuration passed in.
"""
import asyncio
import json
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from loguru import logger

from webhook_relay.config import DirectConfig, IndirectConfig
from webhook_relay.message_queue.base import Message
from webhook_relay.models.outcome import DeliveryOutcome, DeliveryResult, classify_status
from webhook_relay.models.pointer import StoreTestEvent, parse_notification
from webhook_relay.storage.base import PayloadNotFoundError, PayloadStore
from webhook_relay.utils.metrics import metrics
from webhook_relay.utils.observability import log_delivery_attempt, log_relay_event


def decode_json_payload(raw: bytes) -> Any:
    """
    Parse a payload for re-serialisation as JSON.

    A single JSON document is returned as-is. Line-delimited JSON is
    returned as a list with one entry per non-blank line.

    Raises:
        ValueError: If the payload is neither
    """
    text = raw.decode("utf-8")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        lines = [line for line in text.splitlines() if line.strip()]
        if len(lines) <= 1:
            raise
        return [json.loads(line) for line in lines]


class DeliveryWorker(ABC):
    """
    Base delivery worker.

    Subclasses resolve the payload for their topology; posting and
    response classification are shared.

    Attributes:
        endpoint: Destination URL
        timeout: Seconds allowed for the destination round trip
    """

    topology: str = "direct"

    def __init__(
        self,
        endpoint: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize delivery worker.

        Args:
            endpoint: Destination URL
            timeout: Destination request timeout in seconds
            client: Shared HTTP client; a short-lived one is opened per
                attempt when omitted
        """
        self.endpoint = endpoint
        self.timeout = timeout
        self._client = client

    async def on_message(self, message: Message) -> DeliveryResult:
        """
        Run one delivery attempt.

        Never raises for delivery problems: anything unexpected becomes a
        retryable failure so the message is never silently dropped.
        """
        started = time.perf_counter()
        try:
            result = await self._handle(message)
        except Exception as e:
            logger.bind(
                message_id=message.id, receive_count=message.receive_count
            ).opt(exception=e).error(f"Unexpected error delivering message {message.id}: {e}")
            result = DeliveryResult.retry(f"{type(e).__name__}: {e}")

        elapsed = time.perf_counter() - started
        metrics.delivery_duration.observe(elapsed, topology=self.topology)
        metrics.delivery_outcomes.inc(outcome=result.outcome.value)

        log_delivery_attempt(
            message_id=message.id,
            outcome=result.outcome.value,
            receive_count=message.receive_count,
            status_code=result.status_code,
            duration_ms=elapsed * 1000,
            topology=self.topology,
            reason=result.reason,
        )
        return result

    @abstractmethod
    async def _handle(self, message: Message) -> DeliveryResult:
        pass

    async def post_payload(self, payload: bytes) -> DeliveryResult:
        """
        POST a payload to the destination and classify the response.

        Network errors and timeouts are retryable; a payload that is not
        JSON raises ValueError (handled by on_message).
        """
        document = decode_json_payload(payload)
        content = json.dumps(document).encode("utf-8")
        headers = {"Content-Type": "application/json"}

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.endpoint, content=content, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.endpoint, content=content, headers=headers)
        except httpx.TimeoutException as e:
            return DeliveryResult.retry(f"Destination timed out: {e}")
        except httpx.HTTPError as e:
            return DeliveryResult.retry(f"Destination unreachable: {e}")

        outcome = classify_status(response.status_code)
        if outcome == DeliveryOutcome.DELIVERED:
            return DeliveryResult.delivered(response.status_code)
        if outcome == DeliveryOutcome.RETRYABLE_FAILURE:
            return DeliveryResult.retry(f"Destination returned {response.status_code}", response.status_code)
        return DeliveryResult.terminal(f"Destination returned {response.status_code}", response.status_code)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()


class DirectDeliveryWorker(DeliveryWorker):
    """The message body is the webhook payload."""

    topology = "direct"

    async def _handle(self, message: Message) -> DeliveryResult:
        return await self.post_payload(message.body)


class IndirectDeliveryWorker(DeliveryWorker):
    """
    The message body is a pointer to a stored payload.

    Flow:
    1. Parse the pointer; acknowledge store test events without delivering
    2. Read the payload from the store (bounded by store_timeout)
    3. POST it and classify the response
    4. On delivery, optionally delete the stored payload (best-effort)
    """

    topology = "indirect"

    def __init__(
        self,
        endpoint: str,
        store: PayloadStore,
        delete_payload_obj: bool = False,
        timeout: float = 10.0,
        store_timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(endpoint, timeout=timeout, client=client)
        self.store = store
        self.delete_payload_obj = delete_payload_obj
        self.store_timeout = store_timeout

    async def _handle(self, message: Message) -> DeliveryResult:
        notification = parse_notification(message.body)

        if isinstance(notification, StoreTestEvent):
            logger.info(f"Ignoring store test event for bucket {notification.bucket}")
            metrics.test_notifications.inc()
            return DeliveryResult.delivered(reason="store test event")

        if notification.bucket != self.store.bucket:
            return DeliveryResult.terminal(
                f"Pointer references unknown bucket {notification.bucket}"
            )

        try:
            payload = await asyncio.wait_for(
                self.store.get(notification.key), timeout=self.store_timeout
            )
        except PayloadNotFoundError as e:
            return DeliveryResult.retry(f"Stored payload missing: {e}")
        except asyncio.TimeoutError:
            return DeliveryResult.retry(f"Payload store read timed out for {notification.key}")

        result = await self.post_payload(payload)

        if result.outcome == DeliveryOutcome.DELIVERED and self.delete_payload_obj:
            await self._delete_payload(message.id, notification.key)

        return result

    async def _delete_payload(self, message_id: str, key: str) -> None:
        try:
            await asyncio.wait_for(self.store.delete(key), timeout=self.store_timeout)
        except Exception as e:
            metrics.payload_cleanup_failures.inc()
            log_relay_event(
                "payload_cleanup_failed",
                message_id=message_id,
                key=key,
                error=str(e),
            )


def build_delivery_worker(
    config: DirectConfig | IndirectConfig,
    store: Optional[PayloadStore] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> DeliveryWorker:
    """Create the worker matching the configured topology."""
    if isinstance(config, IndirectConfig):
        if store is None:
            raise ValueError("Indirect topology requires a payload store")
        return IndirectDeliveryWorker(
            endpoint=config.delivery_endpoint,
            store=store,
            delete_payload_obj=config.delete_payload_obj,
            timeout=config.delivery_timeout_seconds,
            store_timeout=config.store_timeout_seconds,
            client=client,
        )

    return DirectDeliveryWorker(
        endpoint=config.delivery_endpoint,
        timeout=config.delivery_timeout_seconds,
        client=client,
    )
