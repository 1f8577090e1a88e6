"""
Send Queue

Posts log lines to the webhook one at a time, in order. Suppresses
immediate repeats of the last delivered line, truncates oversized lines,
and hands delivered message ids to the delete queue after a TTL.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional
from loguru import logger

from pm2relay.config import (
    DEDUPE_WINDOW_MS,
    MAX_MESSAGE_LENGTH,
    TRUNCATION_MARKER,
    get_settings,
)
from pm2relay.delivery.base import RetryingQueue, TransportResult
from pm2relay.delivery.delete_queue import DeleteQueue
from pm2relay.services.webhook_transport import WebhookTransport


@dataclass
class DedupeState:
    """Last successfully delivered body and when it was delivered."""
    last_text: Optional[str] = None
    last_timestamp: float = 0.0  # Event loop time


def truncate_message(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """
    Cap text at max_length characters.

    Longer text keeps its first max_length characters followed by a
    single ellipsis marker.
    """
    if len(text) <= max_length:
        return text
    return text[:max_length] + TRUNCATION_MARKER


class SendQueue(RetryingQueue[str]):
    """
    Queue of outbound message bodies.

    Usage:
        send_queue = SendQueue(transport, delete_queue=delete_queue)
        send_queue.submit("[API] server listening on :3000")
    """

    name = "send"

    def __init__(
        self,
        transport: WebhookTransport,
        delete_queue: Optional[DeleteQueue] = None,
        delete_after_seconds: Optional[float] = None,
        dedupe_window_ms: float = DEDUPE_WINDOW_MS,
        max_length: int = MAX_MESSAGE_LENGTH,
        **kwargs,
    ):
        """
        Initialize send queue.

        Args:
            transport: Webhook transport used for posting
            delete_queue: Queue that receives delivered message ids
            delete_after_seconds: TTL before deletion (default from settings, 0 disables)
            dedupe_window_ms: Window for suppressing a repeat of the last delivered line
            max_length: Character cap for a single message
            **kwargs: Backoff tuning passed to RetryingQueue
        """
        super().__init__(**kwargs)
        if delete_after_seconds is None:
            delete_after_seconds = get_settings().delete_after_seconds
        self._transport = transport
        self._delete_queue = delete_queue
        self._delete_after_seconds = max(0.0, delete_after_seconds)
        self._dedupe_window_ms = dedupe_window_ms
        self._max_length = max_length
        self._dedupe = DedupeState()

    @property
    def dedupe_state(self) -> DedupeState:
        return self._dedupe

    def submit(self, line: Optional[str]) -> None:
        """
        Queue a line for delivery.

        Blank lines and repeats of the last delivered line inside the
        dedupe window are ignored. Never raises.

        Args:
            line: Raw text line
        """
        text = (line or "").strip()
        if not text:
            return

        # Compared before truncation; last_text holds the delivered body
        if self._is_recent_duplicate(text):
            self._metrics.deduplicated += 1
            return

        self._enqueue(truncate_message(text, self._max_length))

    def _is_recent_duplicate(self, text: str) -> bool:
        if self._dedupe.last_text != text:
            return False
        elapsed_ms = (asyncio.get_running_loop().time() - self._dedupe.last_timestamp) * 1000
        return elapsed_ms < self._dedupe_window_ms

    async def _deliver(self, item: str) -> TransportResult:
        return await self._transport.post(item)

    def _on_completed(self, item: str, result: TransportResult) -> None:
        self._dedupe.last_text = item
        self._dedupe.last_timestamp = asyncio.get_running_loop().time()

        if result.message_id and self._delete_after_seconds > 0 and self._delete_queue is not None:
            self._call_later(
                self._delete_after_seconds,
                self._delete_queue.submit,
                result.message_id,
            )
            logger.bind(message_id=result.message_id, ttl_seconds=self._delete_after_seconds).debug(
                f"Scheduled deletion of message {result.message_id}"
            )

    def _on_dropped(self, item: str, result: TransportResult) -> None:
        logger.bind(status_code=result.status_code, length=len(item)).warning(
            f"Webhook responded with status {result.status_code}"
        )
