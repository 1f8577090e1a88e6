"""
CLI Runner for the PM2 Log Relay
Streams live pm2 logs to a Discord webhook until the pm2 process exits.
"""
import asyncio
import sys
from loguru import logger
from pydantic import ValidationError

from pm2relay.config import Settings, get_settings
from pm2relay.core.relay import LogRelay
from pm2relay.delivery import DeleteQueue, SendQueue
from pm2relay.services.webhook_transport import WebhookTransport
from pm2relay.sources.pm2 import Pm2LogSource, SourceUnavailableError
from pm2relay.utils.observability import configure_logging

# Exit code for invalid configuration
EXIT_CONFIG_ERROR = 2


async def run_relay(settings: Settings) -> int:
    """
    Wire the pipeline together and relay until the source exits.

    Args:
        settings: Loaded settings

    Returns:
        Exit code of the pm2 log process

    Raises:
        SourceUnavailableError: If pm2 cannot be launched
    """
    transport = WebhookTransport(
        webhook_url=settings.discord_webhook_url,
        wait_for_message=settings.wait_for_message,
    )
    delete_queue = DeleteQueue(transport)
    send_queue = SendQueue(
        transport,
        delete_queue=delete_queue,
        delete_after_seconds=settings.delete_after_seconds,
    )
    source = Pm2LogSource(app_name=settings.pm2_app_name)
    relay = LogRelay(
        source,
        send_queue,
        delete_queue,
        shutdown_flush_seconds=settings.shutdown_flush_seconds,
    )

    logger.bind(delete_after_seconds=settings.delete_after_seconds).info(
        f"🚀 Relaying pm2 logs for '{settings.pm2_app_name}'"
    )

    try:
        await source.start()
        return await relay.run()
    finally:
        await relay.shutdown()
        await transport.aclose()
        logger.info("🛑 Relay stopped")


def main() -> None:
    """Console entry point."""
    try:
        settings = get_settings()
    except ValidationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(EXIT_CONFIG_ERROR)

    configure_logging()

    try:
        exit_code = asyncio.run(run_relay(settings))
    except SourceUnavailableError as e:
        logger.error(str(e))
        exit_code = 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        exit_code = 130

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
