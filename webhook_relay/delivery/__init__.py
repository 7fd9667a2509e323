"""Delivery workers: resolve, post and classify one queued webhook."""
from webhook_relay.delivery.worker import (
    DeliveryWorker,
    DirectDeliveryWorker,
    IndirectDeliveryWorker,
    build_delivery_worker,
    decode_json_payload,
)

__all__ = [
    "DeliveryWorker",
    "DirectDeliveryWorker",
    "IndirectDeliveryWorker",
    "build_delivery_worker",
    "decode_json_payload",
]
