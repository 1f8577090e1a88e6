import asyncio
from collections import deque

import pytest

from pm2relay.config import get_settings
from pm2relay.services.webhook_transport import DeliveryOutcome, TransportResult

WEBHOOK_URL = "https://discord.com/api/webhooks/123/token"


@pytest.fixture(autouse=True)
def relay_env(monkeypatch):
    """Provides a webhook URL and fresh settings for every test."""
    monkeypatch.setenv("DISCORD_WEBHOOK_URL", WEBHOOK_URL)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class FakeTransport:
    """
    In-memory stand-in for WebhookTransport.

    Results are consumed in order from post_results / delete_results;
    an Exception instance is raised instead of returned. Once a script
    runs out, requests succeed.
    """

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.post_results: deque = deque()
        self.delete_results: deque = deque()
        self.posts: list[tuple[str, float]] = []
        self.deletes: list[tuple[str, float]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def posted_bodies(self) -> list[str]:
        return [body for body, _ in self.posts]

    @property
    def deleted_ids(self) -> list[str]:
        return [message_id for message_id, _ in self.deletes]

    async def post(self, body: str) -> TransportResult:
        self.posts.append((body, asyncio.get_running_loop().time()))
        return await self._respond(self.post_results)

    async def delete(self, message_id: str) -> TransportResult:
        self.deletes.append((message_id, asyncio.get_running_loop().time()))
        return await self._respond(self.delete_results)

    async def _respond(self, script: deque) -> TransportResult:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.latency:
                await asyncio.sleep(self.latency)
            result = script.popleft() if script else TransportResult(
                outcome=DeliveryOutcome.SUCCESS, status_code=200
            )
            if isinstance(result, Exception):
                raise result
            return result
        finally:
            self.in_flight -= 1


@pytest.fixture
def fake_transport():
    """Returns a scripted in-memory transport."""
    return FakeTransport()


async def wait_for(predicate, timeout: float = 2.0, interval: float = 0.005):
    """Polls until predicate() is truthy or the timeout expires."""
    async def _poll():
        while not predicate():
            await asyncio.sleep(interval)
    await asyncio.wait_for(_poll(), timeout=timeout)


@pytest.fixture
def eventually():
    """Returns the polling helper for timing-based assertions."""
    return wait_for
