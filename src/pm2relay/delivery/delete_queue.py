"""
Delete Queue

Removes previously delivered webhook messages once their TTL has passed.
"""

from loguru import logger

from pm2relay.delivery.base import DeliveryOutcome, RetryingQueue, TransportResult
from pm2relay.services.webhook_transport import WebhookTransport


class DeleteQueue(RetryingQueue[str]):
    """
    Queue of webhook message ids awaiting deletion.

    A 404 means the message is already gone and counts as done.
    Other failures are logged and the id is discarded.
    """

    name = "delete"

    def __init__(self, transport: WebhookTransport, **kwargs):
        super().__init__(**kwargs)
        self._transport = transport

    def submit(self, message_id: str) -> None:
        """
        Queue a message id for deletion.

        Args:
            message_id: Id returned by a successful post
        """
        if not message_id:
            return
        self._enqueue(message_id)

    async def _deliver(self, item: str) -> TransportResult:
        return await self._transport.delete(item)

    def _is_completed(self, result: TransportResult) -> bool:
        return result.outcome in (DeliveryOutcome.SUCCESS, DeliveryOutcome.NOT_FOUND)

    def _on_dropped(self, item: str, result: TransportResult) -> None:
        logger.bind(message_id=item, status_code=result.status_code).warning(
            f"Failed to delete webhook message {item} status {result.status_code}"
        )
