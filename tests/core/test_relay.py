"""
Tests for LogRelay.
"""
import asyncio
import pytest

from pm2relay.core.relay import LogRelay, normalize_exit_code
from pm2relay.delivery import DeleteQueue, SendQueue


class FakeSource:
    """Line source yielding a fixed list of lines."""

    def __init__(self, lines, returncode=0, gap: float = 0.0):
        self._lines = lines
        self._returncode = returncode
        self._gap = gap
        self.terminated = False

    async def lines(self):
        for line in self._lines:
            if self._gap:
                await asyncio.sleep(self._gap)
            yield line

    async def wait(self):
        return self._returncode

    def terminate(self):
        self.terminated = True


class TestNormalizeExitCode:
    """Tests for exit code propagation."""

    @pytest.mark.parametrize("returncode, expected", [
        (0, 0),
        (3, 3),
        (None, 1),
        (-9, 1),
    ])
    def test_codes(self, returncode, expected):
        assert normalize_exit_code(returncode) == expected


class TestLogRelay:
    """Test suite for LogRelay."""

    async def test_relays_lines_and_returns_exit_code(self, fake_transport):
        send_queue = SendQueue(fake_transport, delete_after_seconds=0)
        source = FakeSource(["one", "two", "", "three"], returncode=3)
        relay = LogRelay(source, send_queue, shutdown_flush_seconds=2.0)

        exit_code = await relay.run()

        assert exit_code == 3
        assert relay.lines_relayed == 4
        assert fake_transport.posted_bodies == ["one", "two", "three"]

    async def test_missing_exit_code_becomes_one(self, fake_transport):
        send_queue = SendQueue(fake_transport, delete_after_seconds=0)
        relay = LogRelay(FakeSource([], returncode=None), send_queue, shutdown_flush_seconds=0)

        assert await relay.run() == 1

    async def test_repeated_lines_deduplicated(self, fake_transport):
        send_queue = SendQueue(fake_transport, delete_after_seconds=0)
        source = FakeSource(["hello", "hello", "world"], gap=0.01)
        relay = LogRelay(source, send_queue, shutdown_flush_seconds=2.0)

        await relay.run()

        assert fake_transport.posted_bodies == ["hello", "world"]

    async def test_flush_is_bounded(self, fake_transport):
        """A stalled webhook does not hold the exit forever."""
        fake_transport.latency = 5.0
        send_queue = SendQueue(fake_transport, delete_after_seconds=0)
        source = FakeSource(["a", "b"], returncode=2)
        relay = LogRelay(source, send_queue, shutdown_flush_seconds=0.05)

        exit_code = await asyncio.wait_for(relay.run(), timeout=1.0)
        await relay.shutdown()

        assert exit_code == 2
        assert send_queue.pending == 1

    async def test_shutdown_closes_everything(self, fake_transport):
        send_queue = SendQueue(fake_transport, delete_after_seconds=0)
        delete_queue = DeleteQueue(fake_transport)
        source = FakeSource([])
        relay = LogRelay(source, send_queue, delete_queue, shutdown_flush_seconds=0)

        await relay.shutdown()
        send_queue.submit("after shutdown")
        delete_queue.submit("1")
        await asyncio.sleep(0.01)

        assert source.terminated
        assert fake_transport.posts == []
        assert fake_transport.deletes == []

    def test_flush_seconds_default_from_settings(self, fake_transport, monkeypatch):
        from pm2relay.config import get_settings

        monkeypatch.setenv("SHUTDOWN_FLUSH_SECONDS", "1.5")
        get_settings.cache_clear()

        relay = LogRelay(FakeSource([]), SendQueue(fake_transport, delete_after_seconds=0))

        assert relay.shutdown_flush_seconds == 1.5
