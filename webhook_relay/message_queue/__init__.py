"""
Message Queue System

At-least-once delivery queue for the webhook relay with:
- Abstract queue interface supporting multiple backends
- In-memory queue with visibility timeouts
- Dead letter queue after a bounded number of receives
- Optional FIFO ordering and deduplication
- Queue metrics and monitoring
"""

from webhook_relay.message_queue.base import (
    Message,
    MessageQueue,
    MessageState,
    QueueMetrics,
    QueueError,
    MessageTooLargeError,
    MissingMessageGroupError,
    MissingDeduplicationIdError,
    QueueUnavailableError,
)
from webhook_relay.message_queue.memory import InMemoryQueue
from webhook_relay.message_queue.worker import QueueWorker

__all__ = [
    "Message",
    "MessageQueue",
    "MessageState",
    "QueueMetrics",
    "QueueError",
    "MessageTooLargeError",
    "MissingMessageGroupError",
    "MissingDeduplicationIdError",
    "QueueUnavailableError",
    "InMemoryQueue",
    "QueueWorker",
]
