"""
Nexus Discord relay — process entry point.

Wires the producer connector, Discord surface, dispatcher, status ledger
and queue poller onto one discord.py client. Polling starts once the
gateway reports ready and stops when the client closes.

Run:
  python -m bot.main
"""
from __future__ import annotations

import sys
import structlog

from dotenv import load_dotenv

import discord

from backend.connector import BackendConnector, create_backend_connector
from backend.ledger import StatusRetryLedger
from backend.poller import QueuePoller
from channels.base import DeliveryRetrier
from channels.discord_adapter import DiscordSurface
from config.settings import ConfigError, Settings, load_settings, validate_settings
from core.dispatcher import ActionDispatcher
from utils.logging import configure_logging, secrets_from_settings

logger = structlog.get_logger()


def build_intents() -> discord.Intents:
    intents = discord.Intents.none()
    intents.guilds = True
    intents.members = True
    intents.guild_messages = True
    return intents


class RelayClient(discord.Client):
    """discord.py client that owns the queue poller's lifecycle."""

    def __init__(self, settings: Settings, backend: BackendConnector = None, **kwargs):
        super().__init__(intents=kwargs.pop("intents", build_intents()), **kwargs)
        self.settings = settings
        self.backend = backend or create_backend_connector(settings.backend)

        retrier = DeliveryRetrier(max_attempts=settings.delivery.max_attempts)
        self.dispatcher = ActionDispatcher(
            DiscordSurface(self),
            guild_id=settings.discord.guild_id,
            retrier=retrier,
            chunk_limit=settings.delivery.chunk_limit,
        )
        worker = settings.worker
        self.ledger = StatusRetryLedger(
            self.backend,
            base_delay_s=worker.status_backoff_base_s,
            max_delay_s=worker.max_backoff_s,
            max_attempts=worker.status_retry_max_attempts,
        )
        self.poller = QueuePoller(
            self.backend,
            self.dispatcher,
            ledger=self.ledger,
            poll_interval_s=worker.poll_interval_s,
            max_backoff_s=worker.max_backoff_s,
            fetch_limit=worker.queue_fetch_limit,
        )

    async def on_ready(self) -> None:
        logger.info("discord_ready",
                    user=str(self.user),
                    guilds=len(self.guilds),
                    app=self.settings.app_name)
        # on_ready fires again after every reconnect; start() is idempotent
        await self.poller.start()

    async def close(self) -> None:
        logger.info("relay_shutting_down")
        await self.poller.stop()
        await self.backend.close()
        await super().close()


def main() -> None:
    load_dotenv()
    settings = load_settings()
    configure_logging(
        level=settings.logging.level,
        json_output=settings.logging.json_output,
        redact=secrets_from_settings(settings),
    )

    try:
        validate_settings(settings)
    except ConfigError as e:
        logger.error("configuration_invalid", error=str(e))
        sys.exit(1)

    logger.info("relay_starting",
                app=settings.app_name,
                backend=settings.backend.type,
                poll_interval_s=settings.worker.poll_interval_s)
    client = RelayClient(settings)
    # logging is already configured above
    client.run(settings.discord.token, log_handler=None)


if __name__ == "__main__":
    main()
