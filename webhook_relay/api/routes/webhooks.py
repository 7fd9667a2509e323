"""
Webhook Endpoints

Ingress for producers. The request body is the base64-encoded webhook;
the response only reports whether the hand-off to the queue (or payload
store) succeeded.
"""
from typing import Optional

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from webhook_relay.ingress.adapter import IngressAdapter


async def receive_webhook(
    request: Request,
    x_message_group_id: Optional[str] = Header(None),
    x_deduplication_id: Optional[str] = Header(None),
):
    """
    Webhook ingress endpoint.

    Flow:
    1. Read the raw (base64) request body
    2. Decode and hand off via the configured ingress adapter
    3. Return 200 {"body": "Success"} or 500 {"body": <error>}
    4. Background worker delivers to the destination endpoint

    Headers (FIFO queues only):
        X-Message-Group-Id: Message group; falls back to the configured default
        X-Deduplication-Id: Explicit deduplication key

    Note:
        A 200 means the queue (or payload store) accepted the webhook, not
        that it was delivered. The in-memory queue does not survive a
        restart. On a 500 the producer must resend.
    """
    ingress: IngressAdapter = request.app.state.ingress
    raw_body = await request.body()

    result = await ingress.handle(
        raw_body,
        group_id=x_message_group_id,
        deduplication_id=x_deduplication_id,
    )

    return JSONResponse(status_code=result.status_code, content=result.to_content())


def build_webhooks_router(ingress_path: str) -> APIRouter:
    """Router serving the ingress endpoint at the configured path."""
    router = APIRouter(tags=["Webhooks"])
    router.add_api_route(ingress_path, receive_webhook, methods=["POST"])
    return router

