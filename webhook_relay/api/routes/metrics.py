"""
Metrics Endpoints

Prometheus-compatible metrics and queue statistics for observability.
"""
from fastapi import APIRouter, Request
from fastapi.responses import Response, JSONResponse
from loguru import logger

from webhook_relay.message_queue import MessageQueue
from webhook_relay.utils.metrics import metrics

router = APIRouter(tags=["Metrics"])


@router.get("/metrics")
async def prometheus_metrics(request: Request):
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text exposition format for scraping:
    - Ingress requests by result
    - Delivery outcomes and latency
    - Queue depth, in-flight and dead-letter counts
    - Payload cleanup failures

    Content-Type: text/plain; version=0.0.4; charset=utf-8
    """
    try:
        queue: MessageQueue = request.app.state.queue
        queue_stats = await queue.get_metrics()

        metrics.queue_visible.set(queue_stats.visible)
        metrics.queue_in_flight.set(queue_stats.in_flight)
        metrics.queue_dead_letter.set(queue_stats.dead_letter)

        return Response(
            content=metrics.export(),
            media_type="text/plain; version=0.0.4; charset=utf-8"
        )

    except Exception as e:
        logger.opt(exception=e).error(f"Failed to export metrics: {e}")
        return Response(
            content=f"# Error exporting metrics: {e}\n",
            media_type="text/plain",
            status_code=500
        )


@router.get("/metrics/queue")
async def queue_metrics(request: Request):
    """
    Get message queue metrics.

    Returns:
        Queue metrics as JSON
    """
    try:
        queue: MessageQueue = request.app.state.queue
        queue_stats = await queue.get_metrics()

        return {
            "status": "ok",
            "metrics": queue_stats.model_dump()
        }

    except Exception as e:
        logger.opt(exception=e).error(f"Failed to get queue metrics: {e}")
        return JSONResponse(
            status_code=500,
            content={
                "status": "error",
                "error": str(e)
            }
        )
