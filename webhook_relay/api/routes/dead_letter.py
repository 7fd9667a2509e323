"""
Dead-Letter Endpoints

Inspect messages that exhausted their receives or failed terminally, and
move them back to the source queue once the destination is fixed.
"""
import base64

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse
from loguru import logger

from webhook_relay.message_queue import Message, MessageQueue
from webhook_relay.utils.observability import log_relay_event

router = APIRouter(prefix="/dead-letter", tags=["Dead Letter"])


def _serialize(message: Message) -> dict:
    return {
        "id": message.id,
        "body_base64": base64.b64encode(message.body).decode("ascii"),
        "receive_count": message.receive_count,
        "group_id": message.group_id,
        "sent_at": message.sent_at.isoformat(),
        "last_error": message.last_error,
    }


@router.get("")
async def list_dead_letters(request: Request, limit: int = Query(default=100, ge=1, le=1000)):
    """List dead-lettered messages, oldest first."""
    queue: MessageQueue = request.app.state.queue
    messages = await queue.get_dead_letter_messages(limit=limit)

    return {
        "count": len(messages),
        "messages": [_serialize(m) for m in messages]
    }


@router.post("/{message_id}/redrive")
async def redrive_dead_letter(message_id: str, request: Request):
    """Move one dead-lettered message back to the source queue."""
    queue: MessageQueue = request.app.state.queue

    if not await queue.redrive_dead_letter(message_id):
        logger.warning(f"Redrive requested for unknown dead-letter message {message_id}")
        return JSONResponse(
            status_code=404,
            content={
                "status": "not_found",
                "message_id": message_id
            }
        )

    log_relay_event("dead_letter_redriven", message_id=message_id)
    return {
        "status": "redriven",
        "message_id": message_id
    }
