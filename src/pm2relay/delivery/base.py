"""
Base Delivery Queue

Shared state machine for the webhook delivery queues: strictly ordered,
at most one attempt in flight, rate-limit pauses and network backoff.
"""

import asyncio
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Generic, Optional, TypeVar
from pydantic import BaseModel
from loguru import logger

from pm2relay.services.webhook_transport import DeliveryOutcome, TransportResult
from pm2relay.config import (
    DEFAULT_RETRY_AFTER_MS,
    MIN_RESCHEDULE_MS,
    NETWORK_RETRY_MS,
    RETRY_MARGIN_MS,
)

T = TypeVar("T")


@dataclass
class QueueState(Generic[T]):
    """Mutable state owned by a single queue instance."""
    items: deque = field(default_factory=deque)
    sending: bool = False
    paused_until: Optional[float] = None  # Event loop time


class QueueMetrics(BaseModel):
    """
    Delivery queue counters.

    Attributes:
        pending: Items waiting to be attempted
        in_flight: 1 while an attempt is outstanding
        submitted: Items accepted by submit()
        completed: Items finished successfully
        dropped: Items discarded after a permanent failure
        deduplicated: Items suppressed as repeats
        rate_limited: 429 responses received
        network_retries: Attempts requeued after getting no response
    """
    pending: int = 0
    in_flight: int = 0
    submitted: int = 0
    completed: int = 0
    dropped: int = 0
    deduplicated: int = 0
    rate_limited: int = 0
    network_retries: int = 0


class RetryingQueue(ABC, Generic[T]):
    """
    Ordered in-memory queue with a single delivery attempt in flight.

    Processing is driven by the event loop: every submit and every
    finished attempt re-invokes `_process()`, which checks the in-flight
    flag and the rate-limit pause before popping the next item.

    Recoverable failures (429, no response) put the item back at the
    front. Everything else completes or drops it.

    Subclasses implement:
    - _deliver: Perform the request for one item
    - _on_completed / _on_dropped: Outcome hooks
    """

    name: str = "queue"

    def __init__(
        self,
        network_retry_ms: float = NETWORK_RETRY_MS,
        retry_margin_ms: float = RETRY_MARGIN_MS,
        min_reschedule_ms: float = MIN_RESCHEDULE_MS,
    ):
        """
        Initialize queue state.

        Args:
            network_retry_ms: Backoff after an attempt got no response
            retry_margin_ms: Added to a rate-limit delay before retrying
            min_reschedule_ms: Floor for re-checking a paused queue
        """
        self._state: QueueState[T] = QueueState()
        self._metrics = QueueMetrics()
        self._network_retry_ms = network_retry_ms
        self._retry_margin_ms = retry_margin_ms
        self._min_reschedule_ms = min_reschedule_ms
        self._timers: set[asyncio.TimerHandle] = set()
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def state(self) -> QueueState[T]:
        """Current queue state."""
        return self._state

    @property
    def pending(self) -> int:
        return len(self._state.items)

    @property
    def is_idle(self) -> bool:
        return not self._state.sending and not self._state.items

    def get_metrics(self) -> QueueMetrics:
        """Snapshot of queue counters."""
        metrics = self._metrics.model_copy()
        metrics.pending = len(self._state.items)
        metrics.in_flight = 1 if self._state.sending else 0
        return metrics

    def _enqueue(self, item: T) -> None:
        """Append an item to the tail and kick processing."""
        self._state.items.append(item)
        self._metrics.submitted += 1
        self._process()

    def _process(self) -> None:
        """
        Start the next attempt if the queue is free.

        Safe to call any number of times; overlapping timers collapse
        into a no-op while an attempt is in flight.
        """
        if self._closed or self._state.sending or not self._state.items:
            return

        loop = asyncio.get_running_loop()
        now = loop.time()
        paused_until = self._state.paused_until
        if paused_until is not None and now < paused_until:
            wait_ms = max(self._min_reschedule_ms, (paused_until - now) * 1000)
            self._schedule(wait_ms)
            return

        item = self._state.items.popleft()
        # Flag is set before the request task exists
        self._state.sending = True
        task = loop.create_task(self._attempt(item))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _schedule(self, delay_ms: float = 0) -> None:
        """Re-invoke `_process()` from the event loop after delay_ms."""
        if self._closed:
            return
        loop = asyncio.get_running_loop()
        if delay_ms <= 0:
            loop.call_soon(self._process)
            return
        self._call_later(delay_ms / 1000, self._process)

    def _call_later(self, delay_seconds: float, callback, *args) -> asyncio.TimerHandle:
        """Schedule a tracked one-shot timer."""
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle

        def _fire() -> None:
            self._timers.discard(handle)
            callback(*args)

        handle = loop.call_later(delay_seconds, _fire)
        self._timers.add(handle)
        return handle

    async def _attempt(self, item: T) -> None:
        """Run one delivery attempt and apply its outcome."""
        try:
            result = await self._deliver(item)
        except asyncio.CancelledError:
            self._state.sending = False
            raise
        except Exception as e:
            # Unexpected transport errors are retried like a lost response
            logger.opt(exception=e).bind(queue=self.name).error(
                f"{self.name} queue attempt crashed: {e}"
            )
            result = TransportResult(outcome=DeliveryOutcome.NETWORK_ERROR, error=str(e))

        self._handle_result(item, result)

    def _handle_result(self, item: T, result: TransportResult) -> None:
        """Apply an attempt's outcome to queue state and schedule the next step."""
        if result.outcome == DeliveryOutcome.RATE_LIMITED:
            delay_ms = result.retry_after_ms or DEFAULT_RETRY_AFTER_MS
            loop = asyncio.get_running_loop()
            self._state.paused_until = loop.time() + delay_ms / 1000
            self._state.items.appendleft(item)
            self._metrics.rate_limited += 1
            self._state.sending = False
            logger.bind(queue=self.name, retry_after_ms=delay_ms).debug(
                f"{self.name} queue rate-limited, retrying after {delay_ms}ms"
            )
            self._schedule(delay_ms + self._retry_margin_ms)
            return

        if result.outcome == DeliveryOutcome.NETWORK_ERROR:
            logger.bind(queue=self.name, error=result.error).error(
                f"{self.name} queue request failed: {result.error}"
            )
            self._state.items.appendleft(item)
            self._metrics.network_retries += 1
            self._state.sending = False
            self._schedule(self._network_retry_ms)
            return

        if self._is_completed(result):
            self._metrics.completed += 1
            self._on_completed(item, result)
        else:
            self._metrics.dropped += 1
            self._on_dropped(item, result)

        self._state.sending = False
        # Yield to the loop instead of recursing into the next attempt
        self._schedule(0)

    def _is_completed(self, result: TransportResult) -> bool:
        return result.outcome == DeliveryOutcome.SUCCESS

    @abstractmethod
    async def _deliver(self, item: T) -> TransportResult:
        """
        Perform the webhook request for one item.

        Args:
            item: Item popped from the front of the queue

        Returns:
            Classified transport result
        """
        pass

    def _on_completed(self, item: T, result: TransportResult) -> None:
        """Hook called after a successful attempt."""
        pass

    @abstractmethod
    def _on_dropped(self, item: T, result: TransportResult) -> None:
        """Hook called when an item is discarded after a permanent failure."""
        pass

    async def wait_idle(self, poll_interval: float = 0.01) -> None:
        """
        Wait until the queue is empty and nothing is in flight.

        Useful for graceful shutdown. Callers should bound this with
        asyncio.wait_for since a rate-limited queue may take a while.
        """
        while not self.is_idle:
            await asyncio.sleep(poll_interval)

    async def close(self) -> None:
        """
        Stop processing.

        Cancels pending timers and the in-flight attempt. Queued items are
        left in memory and are not delivered.
        """
        self._closed = True
        for handle in list(self._timers):
            handle.cancel()
        self._timers.clear()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._state.sending = False
