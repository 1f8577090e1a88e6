"""
Structured Logging & Observability
Logging that's both human-readable and machine-parseable.
"""
import sys
from loguru import logger
from typing import Any
from pm2relay.config import get_settings


COMPONENT = "pm2relay"

# Records logged outside a queue show "-" in the queue column
DEFAULT_EXTRA = {"component": COMPONENT, "queue": "-"}

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[queue]: <6}</magenta> | "
    "{message}"
)


def configure_logging():
    """
    Configure loguru for the relay.

    Logs go to stderr so they never mix with pm2's own output. Every
    record carries `component` and `queue` extras; the console format
    shows the queue column, the structured format emits one JSON object
    per record.
    """
    settings = get_settings()

    logger.remove()
    logger.configure(extra=DEFAULT_EXTRA)

    if settings.enable_structured_logging:
        logger.add(
            sys.stderr,
            format="{message}",
            level=settings.log_level,
            serialize=True,
        )
    else:
        logger.add(
            sys.stderr,
            format=CONSOLE_FORMAT,
            level=settings.log_level,
            colorize=True,
        )

    logger.bind(structured=settings.enable_structured_logging).debug(
        f"{COMPONENT} logging at {settings.log_level}"
    )


def log_delivery_event(
    queue: str,
    outcome: str,
    duration_ms: float | None = None,
    **context: Any
):
    """
    Structured logging for a single webhook delivery attempt.

    Args:
        queue: Queue that made the attempt (e.g., "send", "delete")
        outcome: Classified result (e.g., "success", "rate_limited")
        duration_ms: Request latency in milliseconds
        **context: Additional context (status_code, message_id, retry_after_ms, ...)

    Example:
        >>> log_delivery_event(
        ...     queue="send",
        ...     outcome="rate_limited",
        ...     status_code=429,
        ...     retry_after_ms=2000
        ... )
    """
    log_data = {
        "event_type": "webhook_delivery",
        "queue": queue,
        "outcome": outcome,
    }

    if duration_ms is not None:
        log_data["duration_ms"] = round(duration_ms, 2)

    log_data.update(context)

    logger.bind(**log_data).debug(f"{queue} | {outcome}")
