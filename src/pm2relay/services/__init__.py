"""Services package."""
from pm2relay.services.webhook_transport import (
    DeliveryOutcome,
    TransportResult,
    WebhookTransport,
    classify_response,
    format_log_block,
    parse_retry_after_ms,
)

__all__ = [
    "DeliveryOutcome",
    "TransportResult",
    "WebhookTransport",
    "classify_response",
    "format_log_block",
    "parse_retry_after_ms",
]
