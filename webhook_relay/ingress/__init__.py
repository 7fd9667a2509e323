"""Ingress adapters for the direct and indirect topologies."""
from webhook_relay.ingress.adapter import (
    IngressAdapter,
    DirectIngressAdapter,
    IndirectIngressAdapter,
    IngressDecodeError,
    IngressResponse,
    build_ingress_adapter,
    decode_body,
)

__all__ = [
    "IngressAdapter",
    "DirectIngressAdapter",
    "IndirectIngressAdapter",
    "IngressDecodeError",
    "IngressResponse",
    "build_ingress_adapter",
    "decode_body",
]
