"""
Webhook Delivery Queues

Ordered, in-memory delivery of log lines to a chat webhook with:
- At most one request in flight per queue
- Rate-limit (429) pauses honoring the server's retry delay
- Front-of-queue requeue on lost responses
- Suppression of immediate repeats
- Time-delayed deletion of delivered messages
"""

from pm2relay.delivery.base import (
    DeliveryOutcome,
    QueueMetrics,
    QueueState,
    RetryingQueue,
    TransportResult,
)
from pm2relay.delivery.delete_queue import DeleteQueue
from pm2relay.delivery.send_queue import DedupeState, SendQueue, truncate_message

__all__ = [
    "DeliveryOutcome",
    "QueueMetrics",
    "QueueState",
    "RetryingQueue",
    "TransportResult",
    "DeleteQueue",
    "DedupeState",
    "SendQueue",
    "truncate_message",
]
