"""Domain models shared by the ingress, queue and delivery worker."""
from webhook_relay.models.outcome import DeliveryOutcome, DeliveryResult, classify_status
from webhook_relay.models.pointer import (
    PointerRecord,
    PointerRecordError,
    StoreTestEvent,
    parse_notification,
)

__all__ = [
    "DeliveryOutcome",
    "DeliveryResult",
    "classify_status",
    "PointerRecord",
    "PointerRecordError",
    "StoreTestEvent",
    "parse_notification",
]
