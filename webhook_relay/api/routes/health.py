"""
Health and Readiness Endpoints

Kubernetes-compatible health checks for load balancers and orchestration.
"""
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from loguru import logger

from webhook_relay import __version__

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check():
    """
    Basic health check endpoint.

    Returns 200 if service is running.
    """
    return {
        "status": "healthy",
        "service": "webhook-relay",
        "version": __version__
    }


@router.get("/ready")
async def readiness_check(request: Request):
    """
    Readiness check: can the service accept and deliver webhooks?

    Verifies:
    - Delivery worker is running
    - Payload store is reachable (indirect topology)

    Returns 200 if ready, 503 if not ready.
    """
    try:
        worker = request.app.state.worker
        if not worker.is_running:
            return JSONResponse(
                status_code=503,
                content={
                    "status": "not_ready",
                    "reason": "Delivery worker not running"
                }
            )

        store = getattr(request.app.state, "store", None)
        if store is not None and not await store.ping():
            return JSONResponse(
                status_code=503,
                content={
                    "status": "not_ready",
                    "reason": "Payload store unreachable"
                }
            )

        return {
            "status": "ready",
            "topology": request.app.state.topology.topology,
            "worker": "running",
            "payload_store": "connected" if store is not None else "unused"
        }

    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "reason": str(e)
            }
        )


@router.get("/")
async def root(request: Request):
    """Root endpoint with API information."""
    return {
        "service": "Webhook Relay",
        "version": __version__,
        "endpoints": {
            "health": "/health",
            "ready": "/ready",
            "metrics": "/metrics",
            "queue_metrics": "/metrics/queue",
            "ingress": f"{request.app.state.settings.ingress_path} (POST)",
            "dead_letter": "/dead-letter",
        }
    }
