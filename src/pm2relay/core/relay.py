"""
Log Relay
Drives the main flow: log source → send queue → webhook.

Architecture:
    pm2 logs → LineSanitizer → SendQueue → webhook POST
                                   └─(TTL)→ DeleteQueue → webhook DELETE
"""
import asyncio
from typing import AsyncIterator, Optional, Protocol
from loguru import logger

from pm2relay.config import get_settings
from pm2relay.delivery import DeleteQueue, SendQueue


class LineSource(Protocol):
    """
    Anything that yields ready-to-send lines and reports an exit code.

    Implemented by Pm2LogSource.
    """

    def lines(self) -> AsyncIterator[str]:
        ...

    async def wait(self) -> Optional[int]:
        ...

    def terminate(self) -> None:
        ...


def normalize_exit_code(returncode: Optional[int]) -> int:
    """
    Exit code to propagate for the source process.

    None (never started) and negative codes (killed by a signal) become 1.
    """
    if returncode is None or returncode < 0:
        return 1
    return returncode


class LogRelay:
    """
    Forwards every line from a source into the send queue.

    The relay owns no queue state; both queues are injected so they can be
    shared, inspected and closed by the caller.

    Usage:
        >>> relay = LogRelay(source, send_queue, delete_queue)
        >>> exit_code = await relay.run()
        >>> await relay.shutdown()
    """

    def __init__(
        self,
        source: LineSource,
        send_queue: SendQueue,
        delete_queue: Optional[DeleteQueue] = None,
        shutdown_flush_seconds: Optional[float] = None,
    ):
        """
        Initialize relay.

        Args:
            source: Line source to consume
            send_queue: Queue receiving every line
            delete_queue: Deletion queue, closed on shutdown
            shutdown_flush_seconds: Grace period for queued lines once the source ends
        """
        if shutdown_flush_seconds is None:
            shutdown_flush_seconds = get_settings().shutdown_flush_seconds
        self.source = source
        self.send_queue = send_queue
        self.delete_queue = delete_queue
        self.shutdown_flush_seconds = shutdown_flush_seconds
        self.lines_relayed = 0

    async def run(self) -> int:
        """
        Relay lines until the source ends.

        Returns:
            Exit code to terminate the program with
        """
        async for line in self.source.lines():
            self.send_queue.submit(line)
            self.lines_relayed += 1

        returncode = await self.source.wait()
        logger.error(f"pm2 logs process exited with code: {returncode}")

        await self.flush()
        return normalize_exit_code(returncode)

    async def flush(self) -> None:
        """Give already queued lines a bounded chance to be delivered."""
        if self.shutdown_flush_seconds <= 0 or self.send_queue.is_idle:
            return

        try:
            await asyncio.wait_for(
                self.send_queue.wait_idle(),
                timeout=self.shutdown_flush_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"{self.send_queue.pending} queued lines were not delivered before shutdown"
            )

    async def shutdown(self) -> None:
        """Stop the source and cancel all pending queue work."""
        self.source.terminate()
        await self.send_queue.close()
        if self.delete_queue is not None:
            await self.delete_queue.close()
