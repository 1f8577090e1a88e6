"""
Discord webhook transport.
Posts and deletes webhook messages and classifies the responses.
"""
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import httpx

from pm2relay.config import DEFAULT_RETRY_AFTER_MS, get_settings
from pm2relay.utils.observability import log_delivery_event


class DeliveryOutcome(str, Enum):
    """Classified result of a webhook request."""
    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    FAILED = "failed"
    NETWORK_ERROR = "network_error"  # No response received


@dataclass
class TransportResult:
    """
    Result of a single webhook request.

    Attributes:
        outcome: Classified outcome
        status_code: HTTP status, None when no response was received
        message_id: Id of the created message (successful posts only)
        retry_after_ms: Delay requested by a 429 response
        error: Error description for failed or network-level attempts
    """
    outcome: DeliveryOutcome
    status_code: Optional[int] = None
    message_id: Optional[str] = None
    retry_after_ms: Optional[float] = None
    error: Optional[str] = None


def format_log_block(body: str) -> str:
    """Wrap text in a ```log fenced code block."""
    return f"```log\n{body}\n```"


def _positive_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def _json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def parse_retry_after_ms(response: httpx.Response) -> float:
    """
    Extract the retry delay from a 429 response, in milliseconds.

    The body's `retry_after` is taken as-is. The `Retry-After` header is
    in seconds and is multiplied by 1000. Falls back to
    DEFAULT_RETRY_AFTER_MS when neither holds a positive number.
    """
    body = _json_body(response)
    if isinstance(body, dict):
        body_delay = _positive_number(body.get("retry_after"))
        if body_delay is not None:
            return body_delay

    header_delay = _positive_number(response.headers.get("retry-after"))
    if header_delay is not None:
        return header_delay * 1000

    return DEFAULT_RETRY_AFTER_MS


def parse_message_id(response: httpx.Response) -> Optional[str]:
    """Read the created message id (string or number) from a post response."""
    body = _json_body(response)
    if not isinstance(body, dict):
        return None
    message_id = body.get("id")
    if message_id is None or isinstance(message_id, bool) or message_id == "":
        return None
    return str(message_id)


def classify_response(response: httpx.Response) -> TransportResult:
    """Map an HTTP response to exactly one delivery outcome."""
    status = response.status_code
    if status == 429:
        return TransportResult(
            outcome=DeliveryOutcome.RATE_LIMITED,
            status_code=status,
            retry_after_ms=parse_retry_after_ms(response),
        )
    if response.is_success:
        return TransportResult(outcome=DeliveryOutcome.SUCCESS, status_code=status)
    if status == 404:
        return TransportResult(outcome=DeliveryOutcome.NOT_FOUND, status_code=status)
    return TransportResult(
        outcome=DeliveryOutcome.FAILED,
        status_code=status,
        error=f"HTTP {status}",
    )


class WebhookTransport:
    """
    HTTP operations against a single Discord webhook.

    Holds no delivery state; both queues share one instance.

    Usage:
        async with WebhookTransport() as transport:
            result = await transport.post("server started")
            if result.message_id:
                await transport.delete(result.message_id)
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        wait_for_message: Optional[bool] = None,
    ):
        """
        Initialize transport.

        Args:
            webhook_url: Webhook URL (default from settings)
            client: Shared HTTP client (created if not provided)
            wait_for_message: Request the created message back on post (default from settings)
        """
        settings = get_settings() if not webhook_url or wait_for_message is None else None
        self._webhook_url = webhook_url or settings.discord_webhook_url
        self._wait_for_message = (
            wait_for_message if wait_for_message is not None else settings.wait_for_message
        )
        self._client = client or httpx.AsyncClient()

    @property
    def webhook_url(self) -> str:
        return self._webhook_url

    def message_url(self, message_id: str) -> str:
        """
        URL of a single webhook message.

        Query parameters of the webhook URL carry over (Discord needs
        `thread_id` to address a thread message), except `wait`.
        """
        url = httpx.URL(self._webhook_url).copy_remove_param("wait")
        path = f"{url.path.rstrip('/')}/messages/{message_id}"
        return str(url.copy_with(path=path))

    async def post(self, body: str) -> TransportResult:
        """
        Post a message body as a fenced log block.

        Args:
            body: Message text (already truncated)

        Returns:
            Classified result; message_id is set when the response carries one
        """
        payload = {"content": format_log_block(body)}
        params = {"wait": "true"} if self._wait_for_message else None
        started = time.perf_counter()

        try:
            response = await self._client.post(self._webhook_url, json=payload, params=params)
        except httpx.HTTPError as e:
            return self._network_error("send", e, started)

        result = classify_response(response)
        if result.outcome == DeliveryOutcome.SUCCESS:
            result.message_id = parse_message_id(response)

        log_delivery_event(
            queue="send",
            outcome=result.outcome.value,
            duration_ms=(time.perf_counter() - started) * 1000,
            status_code=result.status_code,
            message_id=result.message_id,
            retry_after_ms=result.retry_after_ms,
        )
        return result

    async def delete(self, message_id: str) -> TransportResult:
        """
        Delete a previously posted message.

        Args:
            message_id: Id returned by a successful post

        Returns:
            Classified result (404 is reported as NOT_FOUND)
        """
        started = time.perf_counter()

        try:
            response = await self._client.delete(self.message_url(message_id))
        except httpx.HTTPError as e:
            return self._network_error("delete", e, started)

        result = classify_response(response)
        log_delivery_event(
            queue="delete",
            outcome=result.outcome.value,
            duration_ms=(time.perf_counter() - started) * 1000,
            status_code=result.status_code,
            message_id=message_id,
            retry_after_ms=result.retry_after_ms,
        )
        return result

    def _network_error(self, queue: str, error: httpx.HTTPError, started: float) -> TransportResult:
        description = str(error) or type(error).__name__
        log_delivery_event(
            queue=queue,
            outcome=DeliveryOutcome.NETWORK_ERROR.value,
            duration_ms=(time.perf_counter() - started) * 1000,
            error=description,
        )
        return TransportResult(outcome=DeliveryOutcome.NETWORK_ERROR, error=description)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "WebhookTransport":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
