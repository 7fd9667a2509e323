"""
Ingress Adapter

Accepts an inbound webhook body, decodes the transport envelope, and hands
the payload off synchronously: straight onto the queue (direct topology) or
into the payload store (indirect topology, where the store announces the
object to the queue). The producer only ever sees this response; there are
no retries at this layer.
"""
import base64
import binascii
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger

from webhook_relay.config import DirectConfig, IndirectConfig
from webhook_relay.message_queue.base import MessageQueue
from webhook_relay.storage.base import PayloadStore, generate_payload_key
from webhook_relay.utils.metrics import metrics


class IngressDecodeError(ValueError):
    """Request body is not a valid base64 envelope."""
    pass


@dataclass
class IngressResponse:
    """Synchronous result returned to the webhook producer."""
    status_code: int
    body: str

    @property
    def ok(self) -> bool:
        return self.status_code == 200

    def to_content(self) -> dict:
        return {"body": self.body}


def decode_body(raw_body: bytes) -> bytes:
    """
    Decode the base64 transport envelope.

    Raises:
        IngressDecodeError: If the body is empty or not valid base64
    """
    stripped = raw_body.strip()
    if not stripped:
        raise IngressDecodeError("Request body is empty")

    try:
        return base64.b64decode(stripped, validate=True)
    except (binascii.Error, ValueError) as e:
        raise IngressDecodeError(f"Request body is not valid base64: {e}") from e


class IngressAdapter(ABC):
    """
    Base ingress adapter.

    Subclasses implement the hand-off for their topology.
    """

    topology: str = "direct"

    async def handle(
        self,
        raw_body: bytes,
        group_id: Optional[str] = None,
        deduplication_id: Optional[str] = None,
    ) -> IngressResponse:
        """
        Decode and hand off one webhook.

        Args:
            raw_body: Base64-encoded request body
            group_id: FIFO message group (direct topology only)
            deduplication_id: FIFO deduplication key (direct topology only)

        Returns:
            200/"Success" once the hand-off call succeeded, otherwise 500
            with the error message
        """
        try:
            payload = decode_body(raw_body)
            reference = await self._hand_off(payload, group_id, deduplication_id)

        except Exception as e:
            log = logger.bind(topology=self.topology, body_length=len(raw_body), error=str(e))
            if not isinstance(e, IngressDecodeError):
                log = log.opt(exception=e)
            log.error(f"Failed to hand off webhook: {e}")
            metrics.ingress_requests.inc(topology=self.topology, result="error")
            return IngressResponse(status_code=500, body=str(e))

        logger.bind(
            topology=self.topology, reference=reference, payload_length=len(payload)
        ).info("Webhook accepted")
        metrics.ingress_requests.inc(topology=self.topology, result="accepted")
        return IngressResponse(status_code=200, body="Success")

    @abstractmethod
    async def _hand_off(
        self,
        payload: bytes,
        group_id: Optional[str],
        deduplication_id: Optional[str],
    ) -> str:
        """Persist the payload; return the message id or object key."""
        pass


class DirectIngressAdapter(IngressAdapter):
    """Enqueues the decoded payload verbatim."""

    topology = "direct"

    def __init__(self, queue: MessageQueue, default_group_id: Optional[str] = None):
        self.queue = queue
        self.default_group_id = default_group_id

    async def _hand_off(
        self,
        payload: bytes,
        group_id: Optional[str],
        deduplication_id: Optional[str],
    ) -> str:
        return await self.queue.send(
            payload,
            group_id=group_id or self.default_group_id,
            deduplication_id=deduplication_id,
        )


class IndirectIngressAdapter(IngressAdapter):
    """Stores the decoded payload under a fresh key; never touches the queue."""

    topology = "indirect"

    def __init__(
        self,
        store: PayloadStore,
        key_factory: Callable[[], str] = generate_payload_key,
    ):
        self.store = store
        self.key_factory = key_factory

    async def _hand_off(
        self,
        payload: bytes,
        group_id: Optional[str],
        deduplication_id: Optional[str],
    ) -> str:
        key = self.key_factory()
        await self.store.put(key, payload)
        return key


def build_ingress_adapter(
    config: DirectConfig | IndirectConfig,
    queue: MessageQueue,
    store: Optional[PayloadStore] = None,
) -> IngressAdapter:
    """Create the adapter matching the configured topology."""
    if isinstance(config, IndirectConfig):
        if store is None:
            raise ValueError("Indirect topology requires a payload store")
        return IndirectIngressAdapter(store)

    return DirectIngressAdapter(queue, default_group_id=config.default_message_group_id)
