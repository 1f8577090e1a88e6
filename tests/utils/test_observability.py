"""
Tests for logging configuration and structured delivery events.
"""
import sys

import pytest
from loguru import logger

from pm2relay.config import get_settings
from pm2relay.utils.observability import COMPONENT, configure_logging, log_delivery_event


@pytest.fixture
def records():
    """Captures loguru records emitted during a test."""
    captured = []
    handler_id = logger.add(lambda message: captured.append(message.record), level="DEBUG")
    yield captured
    logger.remove(handler_id)


class TestLogDeliveryEvent:
    """Tests for log_delivery_event."""

    def test_binds_structured_fields(self, records):
        log_delivery_event(
            queue="send",
            outcome="rate_limited",
            duration_ms=12.3456,
            status_code=429,
            retry_after_ms=2000,
        )

        record = records[-1]
        assert record["message"] == "send | rate_limited"
        assert record["extra"]["event_type"] == "webhook_delivery"
        assert record["extra"]["queue"] == "send"
        assert record["extra"]["outcome"] == "rate_limited"
        assert record["extra"]["duration_ms"] == 12.35
        assert record["extra"]["status_code"] == 429

    def test_duration_optional(self, records):
        log_delivery_event(queue="delete", outcome="network_error", error="timeout")

        extra = records[-1]["extra"]
        assert "duration_ms" not in extra
        assert extra["error"] == "timeout"


class TestConfigureLogging:
    """Tests for configure_logging."""

    @pytest.fixture(autouse=True)
    def restore_logger(self):
        yield
        logger.remove()
        logger.configure(extra={})
        logger.add(sys.stderr)

    @pytest.mark.parametrize("structured", ["false", "true"])
    def test_configures_without_error(self, monkeypatch, structured):
        monkeypatch.setenv("ENABLE_STRUCTURED_LOGGING", structured)
        get_settings.cache_clear()

        configure_logging()

    def test_records_carry_component_and_queue(self):
        configure_logging()
        records = []
        handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")

        logger.info("relay started")
        logger.bind(queue="send").warning("dropped")

        logger.remove(handler_id)
        assert records[-2]["extra"] == {"component": COMPONENT, "queue": "-"}
        assert records[-1]["extra"]["queue"] == "send"
        assert records[-1]["extra"]["component"] == COMPONENT
