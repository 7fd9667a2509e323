"""
In-Memory Message Queue

Visibility-timeout queue with dead-letter redirection and optional FIFO
ordering, for single-instance deployments and tests.
"""

import asyncio
import hashlib
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from loguru import logger

from webhook_relay.config import QueueConfig
from webhook_relay.utils.metrics import metrics
from webhook_relay.message_queue.base import (
    Message,
    MessageQueue,
    MessageState,
    MessageTooLargeError,
    MissingDeduplicationIdError,
    MissingMessageGroupError,
    QueueMetrics,
    QueueUnavailableError,
)


class InMemoryQueue(MessageQueue):
    """
    In-memory message queue implementation.

    Messages stay in insertion order. A received message is hidden until it
    is acknowledged or its visibility deadline passes; expired messages are
    swept back to visible (or into the dead-letter queue once they have been
    received ``max_receive_count`` times) at the start of every receive.

    FIFO mode serves at most one in-flight message per group, always the
    oldest, and drops sends whose deduplication id was seen within the
    deduplication window.

    Not suitable for:
    - Multi-instance deployments
    - Long-term message persistence
    """

    DEDUPLICATION_WINDOW_SECONDS = 300

    def __init__(
        self,
        config: Optional[QueueConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize in-memory queue.

        Args:
            config: Queue behaviour (visibility timeout, max receives, FIFO)
            clock: Returns the current UTC time; injectable for tests
        """
        self.config = config or QueueConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._messages: dict[str, Message] = {}
        self._dead_letter: dict[str, Message] = {}
        self._dedup: dict[str, tuple[str, datetime]] = {}
        self._explicit_failures: set[str] = set()
        self._ack_times: list[float] = []
        self._acknowledged = 0
        self._failed_receives = 0
        self._deduplicated = 0
        self._closed = False
        self._lock = asyncio.Lock()

    @property
    def visibility_timeout(self) -> timedelta:
        return timedelta(seconds=self.config.visibility_timeout_seconds)

    async def send(
        self,
        body: bytes,
        group_id: Optional[str] = None,
        deduplication_id: Optional[str] = None,
    ) -> str:
        if self._closed:
            raise QueueUnavailableError("Queue is closed")

        if len(body) > self.config.max_message_bytes:
            raise MessageTooLargeError(
                f"Message of {len(body)} bytes exceeds limit of "
                f"{self.config.max_message_bytes} bytes"
            )

        if self.config.fifo_queue:
            if not group_id:
                raise MissingMessageGroupError("FIFO queues require a message group id")
            if not deduplication_id:
                if not self.config.content_based_deduplication:
                    raise MissingDeduplicationIdError(
                        "FIFO queue without content-based deduplication needs a deduplication id"
                    )
                deduplication_id = hashlib.sha256(body).hexdigest()
        else:
            group_id = None
            deduplication_id = None

        async with self._lock:
            now = self._clock()

            if deduplication_id is not None:
                self._purge_dedup(now)
                seen = self._dedup.get(deduplication_id)
                if seen:
                    self._deduplicated += 1
                    logger.bind(deduplication_id=deduplication_id, message_id=seen[0]).debug(
                        "Duplicate send dropped"
                    )
                    return seen[0]

            message = Message(
                id=str(uuid.uuid4()),
                body=body,
                group_id=group_id,
                deduplication_id=deduplication_id,
                sent_at=now,
            )
            self._messages[message.id] = message

            if deduplication_id is not None:
                expires = now + timedelta(seconds=self.DEDUPLICATION_WINDOW_SECONDS)
                self._dedup[deduplication_id] = (message.id, expires)

            return message.id

    async def receive(self) -> Optional[Message]:
        async with self._lock:
            now = self._clock()
            self._sweep_expired(now)

            busy_groups = {
                m.group_id
                for m in self._messages.values()
                if m.state == MessageState.IN_FLIGHT and m.group_id is not None
            }

            for message in self._messages.values():
                if message.state != MessageState.VISIBLE:
                    continue
                if message.group_id is not None and message.group_id in busy_groups:
                    continue

                message.state = MessageState.IN_FLIGHT
                message.receive_count += 1
                message.visibility_deadline = now + self.visibility_timeout
                message.receipt_handle = uuid.uuid4().hex
                return message.model_copy()

            return None

    async def acknowledge(self, message_id: str, receipt_handle: str) -> bool:
        async with self._lock:
            message = self._messages.get(message_id)
            if message is None or message.receipt_handle != receipt_handle:
                logger.debug(
                    f"Ignoring acknowledgement with stale receipt for {message_id}"
                )
                return False

            del self._messages[message_id]
            self._explicit_failures.discard(receipt_handle)
            self._acknowledged += 1

            elapsed_ms = (self._clock() - message.sent_at).total_seconds() * 1000
            self._ack_times.append(elapsed_ms)

            # Keep only last 1000 acknowledgement times
            if len(self._ack_times) > 1000:
                self._ack_times = self._ack_times[-1000:]

            return True

    async def fail(self, message_id: str, receipt_handle: str, error: str) -> None:
        async with self._lock:
            message = self._messages.get(message_id)
            if (
                message is None
                or message.receipt_handle != receipt_handle
                or message.state != MessageState.IN_FLIGHT
            ):
                return

            message.last_error = error
            self._failed_receives += 1
            self._explicit_failures.add(receipt_handle)

            if self._exhausted(message):
                self._move_to_dead_letter(message, reason="max_receive_count")

    async def dead_letter(self, message_id: str, receipt_handle: str, reason: str) -> bool:
        async with self._lock:
            message = self._messages.get(message_id)
            if message is None or message.receipt_handle != receipt_handle:
                return False

            message.last_error = reason
            self._failed_receives += 1

            if self.config.dead_letter_enabled:
                self._move_to_dead_letter(message, reason="terminal_failure")
            else:
                del self._messages[message_id]
                logger.bind(message_id=message_id, reason=reason).warning(
                    f"No dead-letter queue configured, dropping message {message_id}"
                )

            return True

    async def get_metrics(self) -> QueueMetrics:
        async with self._lock:
            visible = sum(1 for m in self._messages.values() if m.state == MessageState.VISIBLE)
            avg_time = (
                sum(self._ack_times) / len(self._ack_times)
                if self._ack_times
                else 0.0
            )

            return QueueMetrics(
                visible=visible,
                in_flight=len(self._messages) - visible,
                acknowledged=self._acknowledged,
                failed_receives=self._failed_receives,
                dead_letter=len(self._dead_letter),
                deduplicated=self._deduplicated,
                avg_time_to_ack_ms=avg_time,
            )

    async def get_dead_letter_messages(self, limit: int = 100) -> list[Message]:
        async with self._lock:
            return [m.model_copy() for m in list(self._dead_letter.values())[:limit]]

    async def redrive_dead_letter(self, message_id: str) -> bool:
        async with self._lock:
            message = self._dead_letter.pop(message_id, None)
            if message is None:
                return False

            message.state = MessageState.VISIBLE
            message.receive_count = 0
            message.visibility_deadline = None
            message.receipt_handle = None
            message.last_error = None
            self._messages[message_id] = message
            return True

    async def close(self) -> None:
        """Stop accepting sends. Messages already queued remain receivable."""
        self._closed = True

    def _exhausted(self, message: Message) -> bool:
        return (
            self.config.dead_letter_enabled
            and message.receive_count >= self.config.max_receive_count
        )

    def _sweep_expired(self, now: datetime) -> None:
        """Return expired in-flight messages to visible, or dead-letter them."""
        expired = [
            m for m in self._messages.values()
            if m.state == MessageState.IN_FLIGHT
            and m.visibility_deadline is not None
            and m.visibility_deadline <= now
        ]

        for message in expired:
            if message.receipt_handle in self._explicit_failures:
                self._explicit_failures.discard(message.receipt_handle)
            else:
                # Consumer never reported back (crashed or cancelled)
                self._failed_receives += 1

            if self._exhausted(message):
                self._move_to_dead_letter(message, reason="max_receive_count")
            else:
                message.state = MessageState.VISIBLE

    def _move_to_dead_letter(self, message: Message, reason: str) -> None:
        self._messages.pop(message.id, None)
        self._explicit_failures.discard(message.receipt_handle)
        message.state = MessageState.DEAD_LETTER
        message.visibility_deadline = None
        self._dead_letter[message.id] = message

        metrics.dead_lettered.inc(reason=reason)
        logger.bind(
            message_id=message.id,
            receive_count=message.receive_count,
            reason=reason,
            last_error=message.last_error,
        ).warning(f"Message {message.id} moved to dead-letter queue")

    def _purge_dedup(self, now: datetime) -> None:
        stale = [k for k, (_, expires) in self._dedup.items() if expires <= now]
        for key in stale:
            del self._dedup[key]
