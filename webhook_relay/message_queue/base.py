"""
Base Queue Interface

Abstract interface for at-least-once message queues with visibility
timeouts and dead-letter redirection.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict


class QueueError(Exception):
    """Base class for queue send/receive errors."""
    pass


class MessageTooLargeError(QueueError):
    """Message body exceeds the queue's maximum message size."""
    pass


class MissingMessageGroupError(QueueError):
    """FIFO queues require a message group id on every send."""
    pass


class MissingDeduplicationIdError(QueueError):
    """FIFO queue without content-based deduplication got no deduplication id."""
    pass


class QueueUnavailableError(QueueError):
    """Queue is not accepting messages (closed or throttled)."""
    pass


class MessageState(str, Enum):
    """Where a message currently lives."""
    VISIBLE = "visible"
    IN_FLIGHT = "in_flight"
    DEAD_LETTER = "dead_letter"


class Message(BaseModel):
    """
    Message in the queue.

    Attributes:
        id: Unique message identifier
        body: Opaque payload bytes (webhook body or pointer record)
        receive_count: Times the queue has handed this message to a consumer
        visibility_deadline: When an unacknowledged in-flight message becomes visible again
        receipt_handle: Token issued on each receive; stale handles cannot acknowledge
        group_id: FIFO message group
        deduplication_id: FIFO deduplication key
        state: Current location of the message
        sent_at: Timestamp when message was enqueued
        last_error: Last failure recorded against the message
    """
    model_config = ConfigDict(use_enum_values=True)

    id: str
    body: bytes
    receive_count: int = 0
    visibility_deadline: Optional[datetime] = None
    receipt_handle: Optional[str] = None
    group_id: Optional[str] = None
    deduplication_id: Optional[str] = None
    state: MessageState = MessageState.VISIBLE
    sent_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_error: Optional[str] = None


class QueueMetrics(BaseModel):
    """
    Queue performance metrics.

    Attributes:
        visible: Messages awaiting a consumer
        in_flight: Messages received but not yet acknowledged
        acknowledged: Total messages removed after successful handling
        failed_receives: Total receives that ended in failure or expiry
        dead_letter: Messages in the dead-letter queue
        deduplicated: FIFO sends dropped as duplicates
        avg_time_to_ack_ms: Average time from send to acknowledgement
    """
    visible: int = 0
    in_flight: int = 0
    acknowledged: int = 0
    failed_receives: int = 0
    dead_letter: int = 0
    deduplicated: int = 0
    avg_time_to_ack_ms: float = 0.0


class MessageQueue(ABC):
    """
    Abstract message queue interface.

    Implementations must provide:
    - Send: Add a message
    - Receive: Hand the next visible message to a consumer
    - Acknowledge: Remove a successfully handled message
    - Fail: Record a failed attempt and leave redelivery to the visibility timeout
    - Dead letter: Divert a message that must not be retried
    - Metrics and dead-letter inspection
    """

    @abstractmethod
    async def send(
        self,
        body: bytes,
        group_id: Optional[str] = None,
        deduplication_id: Optional[str] = None,
    ) -> str:
        """
        Add message to queue.

        Args:
            body: Message payload
            group_id: Message group (FIFO queues only)
            deduplication_id: Explicit deduplication key (FIFO queues only)

        Returns:
            Message ID

        Raises:
            QueueError: If the message is rejected
        """
        pass

    @abstractmethod
    async def receive(self) -> Optional[Message]:
        """
        Receive the next visible message.

        The message stays hidden from other consumers until it is
        acknowledged or its visibility deadline passes.

        Returns:
            Next message or None if nothing is visible
        """
        pass

    @abstractmethod
    async def acknowledge(self, message_id: str, receipt_handle: str) -> bool:
        """
        Remove a message after successful handling.

        Returns:
            False if the receipt handle is stale (message was redelivered)
        """
        pass

    @abstractmethod
    async def fail(self, message_id: str, receipt_handle: str, error: str) -> None:
        """
        Record a failed attempt.

        The message is not made visible immediately; it reappears once its
        visibility deadline passes. When the receive count has reached the
        configured maximum it moves to the dead-letter queue instead.
        """
        pass

    @abstractmethod
    async def dead_letter(self, message_id: str, receipt_handle: str, reason: str) -> bool:
        """
        Divert a message to the dead-letter queue without further retries.

        Returns:
            False if the receipt handle is stale and nothing was changed
        """
        pass

    @abstractmethod
    async def get_metrics(self) -> QueueMetrics:
        """Get current queue metrics."""
        pass

    @abstractmethod
    async def get_dead_letter_messages(self, limit: int = 100) -> list[Message]:
        """
        Get messages in dead letter queue.

        Args:
            limit: Maximum messages to return
        """
        pass

    @abstractmethod
    async def redrive_dead_letter(self, message_id: str) -> bool:
        """
        Move a message from the dead-letter queue back to the source queue.

        Resets its receive count.

        Returns:
            False if no such dead-letter message exists
        """
        pass
