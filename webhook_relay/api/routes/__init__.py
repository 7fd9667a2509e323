"""
API Routes

Modular route definitions for the webhook relay API.
"""
from webhook_relay.api.routes.health import router as health_router
from webhook_relay.api.routes.webhooks import build_webhooks_router
from webhook_relay.api.routes.metrics import router as metrics_router
from webhook_relay.api.routes.dead_letter import router as dead_letter_router

__all__ = [
    "health_router",
    "build_webhooks_router",
    "metrics_router",
    "dead_letter_router",
]
