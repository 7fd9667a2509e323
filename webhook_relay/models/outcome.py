"""
Delivery outcomes.

A delivery attempt never raises to signal a retry; it returns one of these
and the queue consumer acts on it.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class DeliveryOutcome(str, Enum):
    """What the queue should do with the message after one attempt."""
    DELIVERED = "delivered"                  # acknowledge
    RETRYABLE_FAILURE = "retryable_failure"  # leave for redelivery
    TERMINAL_FAILURE = "terminal_failure"    # dead-letter now


@dataclass
class DeliveryResult:
    """Result of one delivery attempt."""
    outcome: DeliveryOutcome
    status_code: Optional[int] = None
    reason: Optional[str] = None

    @classmethod
    def delivered(cls, status_code: Optional[int] = None, reason: Optional[str] = None) -> "DeliveryResult":
        return cls(DeliveryOutcome.DELIVERED, status_code, reason)

    @classmethod
    def retry(cls, reason: str, status_code: Optional[int] = None) -> "DeliveryResult":
        return cls(DeliveryOutcome.RETRYABLE_FAILURE, status_code, reason)

    @classmethod
    def terminal(cls, reason: str, status_code: Optional[int] = None) -> "DeliveryResult":
        return cls(DeliveryOutcome.TERMINAL_FAILURE, status_code, reason)


def classify_status(status_code: int) -> DeliveryOutcome:
    """
    Map a destination HTTP status to a delivery outcome.

    2xx is delivered. 429 and 5xx are retried. Anything else (other 4xx,
    or a 1xx/3xx that was not followed) will not succeed on retry.
    """
    if 200 <= status_code < 300:
        return DeliveryOutcome.DELIVERED
    if status_code == 429 or status_code >= 500:
        return DeliveryOutcome.RETRYABLE_FAILURE
    return DeliveryOutcome.TERMINAL_FAILURE
