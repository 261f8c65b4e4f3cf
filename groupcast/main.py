"""Application entrypoint."""

from __future__ import annotations

import asyncio
import logging

from groupcast.channel import ConnectionHub, HttpPushChannel, NotificationChannel
from groupcast.config import Settings, load_settings
from groupcast.db import Database
from groupcast.dispatch import MessageHistory, NotificationDispatcher
from groupcast.resolver import RecipientResolver
from groupcast.scheduler import MessageScheduler
from groupcast.storage import ObjectUrlBuilder

LOGGER = logging.getLogger(__name__)


def build_channel(settings: Settings) -> NotificationChannel:
    if settings.push_gateway_url:
        return HttpPushChannel(settings.push_gateway_url, timeout_seconds=settings.request_timeout_seconds)
    return ConnectionHub()


class Application:
    """Wires the store, channel, dispatcher and scheduler together."""

    def __init__(self, settings: Settings, channel: NotificationChannel | None = None) -> None:
        self.settings = settings
        self.db = Database(settings.database_path)
        self.urls = ObjectUrlBuilder(
            bucket=settings.s3_bucket_name,
            region=settings.aws_region,
            base_url=settings.storage_base_url,
        )
        self.channel = channel or build_channel(settings)
        self.resolver = RecipientResolver(self.db)
        self.dispatcher = NotificationDispatcher(self.db, self.resolver, self.channel, self.urls)
        self.history = MessageHistory(self.db, self.urls)
        self.scheduler = MessageScheduler(
            db=self.db,
            resolver=self.resolver,
            channel=self.channel,
            urls=self.urls,
            poll_interval_seconds=settings.scheduler_poll_interval_seconds,
        )

    async def startup(self) -> None:
        self.db.initialize()
        self.scheduler.start()
        LOGGER.info(
            "Message scheduler started (interval=%.0fs, db=%s)",
            self.settings.scheduler_poll_interval_seconds,
            self.settings.database_path,
        )

    async def shutdown(self) -> None:
        await self.scheduler.shutdown(self.settings.shutdown_timeout_seconds)
        LOGGER.info("Groupcast shutdown complete")


async def run() -> None:
    """Initialize app layers and keep the scheduler running until cancelled."""

    settings = load_settings()
    logging.basicConfig(level=settings.log_level.upper())

    app = Application(settings)
    await app.startup()
    try:
        await asyncio.Event().wait()
    except asyncio.CancelledError:
        raise
    finally:
        await app.shutdown()


def main() -> None:
    """Synchronous wrapper for asyncio entrypoint."""

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
