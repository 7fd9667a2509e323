"""
Structured Logging & Observability
Production-grade logging that's both human-readable and machine-parseable.
"""
import sys
from loguru import logger
from typing import Any, Dict, Optional
from webhook_relay.config import Settings, get_settings


def configure_logging(settings: Optional[Settings] = None):
    """
    Configure loguru for production observability.

    In development: Human-readable colorized output
    In production: Structured JSON logs for ingestion (ELK, Datadog, etc.)
    """
    settings = settings or get_settings()

    # Remove default handler
    logger.remove()

    # Development mode: Beautiful console output
    if not settings.enable_structured_logging:
        logger.add(
            sys.stderr,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                "{message}"
            ),
            level=settings.log_level,
            colorize=True,
        )
    # Production mode: JSON structured logs
    else:
        logger.add(
            sys.stderr,
            format="{message}",
            level=settings.log_level,
            serialize=True,  # Output as JSON
        )

    logger.info(f"Logging configured: level={settings.log_level}, structured={settings.enable_structured_logging}")


def log_delivery_attempt(
    message_id: str,
    outcome: str,
    receive_count: int,
    status_code: int | None = None,
    duration_ms: float | None = None,
    **context
):
    """
    Structured logging for a single delivery attempt.

    Args:
        message_id: Queue message being delivered
        outcome: Delivery outcome value (delivered, retryable_failure, ...)
        receive_count: How many times the queue has handed out this message
        status_code: Destination HTTP status, if a response was received
        duration_ms: Attempt duration in milliseconds
        **context: Additional context (topology, key, reason, ...)

    Example:
        >>> log_delivery_attempt(
        ...     message_id="7f0c...",
        ...     outcome="retryable_failure",
        ...     receive_count=2,
        ...     status_code=503,
        ...     topology="direct"
        ... )
    """
    log_data = {
        "event_type": "delivery_attempt",
        "message_id": message_id,
        "outcome": outcome,
        "receive_count": receive_count,
    }

    if status_code is not None:
        log_data["status_code"] = status_code

    if duration_ms is not None:
        log_data["duration_ms"] = round(duration_ms, 2)

    # Merge additional context
    log_data.update(context)

    level = "INFO" if outcome == "delivered" else "WARNING"
    logger.bind(**log_data).log(
        level,
        f"Delivery {outcome} | message={message_id} | attempt={receive_count}"
    )


def log_relay_event(
    event_type: str,
    message_id: str,
    **details: Dict[str, Any]
):
    """
    Log relay events that operators should be able to alert on.

    Examples:
        - Message dead-lettered after a terminal destination response
        - Stored payload cleanup failed
        - Dead-letter message redriven

    Args:
        event_type: Type of event (e.g., "dead_lettered", "cleanup_failed")
        message_id: The queue message involved
        **details: Event-specific data
    """
    log_data = {
        "event_type": event_type,
        "message_id": message_id,
        **details
    }

    logger.bind(**log_data).warning(f"Relay Event: {event_type}")
