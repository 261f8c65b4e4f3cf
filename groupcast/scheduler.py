"""Async scheduler that delivers due scheduled messages."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timezone

from groupcast.channel import NotificationChannel
from groupcast.db import Database
from groupcast.delivery import build_payload, deliver
from groupcast.models import Message, SweepReport
from groupcast.resolver import GroupNotFoundError, RecipientResolver
from groupcast.storage import ObjectUrlBuilder

LOGGER = logging.getLogger(__name__)


class MessageScheduler:
    """Polls the message store for due messages and delivers them.

    Only one instance should run against a given database. There is no claim
    step, so two schedulers would both deliver the same message.
    """

    def __init__(
        self,
        db: Database,
        resolver: RecipientResolver,
        channel: NotificationChannel,
        urls: ObjectUrlBuilder,
        poll_interval_seconds: float = 60.0,
    ) -> None:
        self._db = db
        self._resolver = resolver
        self._channel = channel
        self._urls = urls
        self._poll_interval_seconds = poll_interval_seconds
        self._stop_event = asyncio.Event()
        self._sweep_lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None

    async def sweep(self, now: datetime | None = None) -> SweepReport:
        """Deliver every message that is due at ``now`` and mark it sent."""

        now = now or datetime.now(timezone.utc)
        report = SweepReport()
        async with self._sweep_lock:
            due_messages = self._db.find_due_unsent(now)
            report.due = len(due_messages)
            if due_messages:
                LOGGER.info("Scheduler found %d due message(s)", report.due)
            for message in due_messages:
                try:
                    delivered = await self._deliver(message)
                except Exception:  # noqa: BLE001
                    LOGGER.exception("Scheduler failed to deliver message %s", message.id)
                    report.failed += 1
                    continue
                if delivered:
                    report.sent += 1
                else:
                    report.skipped += 1
        return report

    async def _deliver(self, message: Message) -> bool:
        try:
            recipients = self._resolver.resolve(message)
        except GroupNotFoundError as exc:
            LOGGER.warning("Skipping message %s: %s", message.id, exc)
            return False

        attempted = await deliver(self._channel, recipients, message.text, build_payload(message, self._urls))
        if not self._db.mark_sent(message.id):
            LOGGER.debug("Message %s was already marked sent", message.id)
        LOGGER.info("Delivered message %s to %d address(es)", message.id, attempted)
        return True

    async def run_forever(self) -> None:
        """Run scheduler loop until stop() is called."""

        while not self._stop_event.is_set():
            try:
                await self.sweep()
            except Exception:  # noqa: BLE001
                LOGGER.exception("Scheduler sweep failed, retrying next tick")
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval_seconds)

    def start(self) -> asyncio.Task[None]:
        """Start the loop as a named task; calling it again returns the running task."""

        if self._task is None or self._task.done():
            self._stop_event.clear()
            self._task = asyncio.create_task(self.run_forever(), name="message-scheduler")
        return self._task

    def stop(self) -> None:
        """Signal the loop to stop."""

        self._stop_event.set()

    async def shutdown(self, timeout_seconds: float = 10.0) -> None:
        """Stop the loop and wait for the in-flight sweep to finish."""

        self.stop()
        task = self._task
        if task is None:
            return
        try:
            await asyncio.wait_for(task, timeout=timeout_seconds)
        except asyncio.TimeoutError:
            LOGGER.warning("Scheduler did not stop within %.1fs, cancelled", timeout_seconds)
        finally:
            self._task = None
