"""Live notification channels."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any

import httpx

from groupcast.models import NotificationPayload, RecipientKind

LOGGER = logging.getLogger(__name__)

NOTIFICATION_EVENT = "notification"


def build_event(
    address: str, message: str, payload: NotificationPayload, kind: RecipientKind
) -> dict[str, Any]:
    return {
        "event": NOTIFICATION_EVENT,
        "kind": kind,
        "address": address,
        "message": message,
        "payload": payload.to_dict(),
    }


class NotificationChannel(ABC):
    """Fire-and-forget push to a connected recipient.

    Implementations must not raise when the recipient is not connected; the
    notification is simply dropped.
    """

    @abstractmethod
    async def send_notification(
        self,
        address: str,
        message: str,
        payload: NotificationPayload,
        kind: RecipientKind,
    ) -> None:
        """Push one event to ``address``."""


class ConnectionHub(NotificationChannel):
    """In-process registry of live connections keyed by address.

    Each connection is an ``asyncio.Queue`` that the connection handler drains
    and writes to its socket. Users attach under their user id, group rooms
    under ``group-<id>``.
    """

    def __init__(self, max_queue_size: int = 100) -> None:
        self._max_queue_size = max_queue_size
        self._connections: dict[str, list[asyncio.Queue[dict[str, Any]]]] = defaultdict(list)

    def connect(self, address: str) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self._max_queue_size)
        self._connections[address].append(queue)
        LOGGER.debug("Connection attached to %s", address)
        return queue

    def disconnect(self, address: str, queue: asyncio.Queue[dict[str, Any]]) -> None:
        queues = self._connections.get(address)
        if not queues:
            return
        if queue in queues:
            queues.remove(queue)
        if not queues:
            del self._connections[address]
        LOGGER.debug("Connection detached from %s", address)

    def is_connected(self, address: str) -> bool:
        return bool(self._connections.get(address))

    async def send_notification(
        self,
        address: str,
        message: str,
        payload: NotificationPayload,
        kind: RecipientKind,
    ) -> None:
        queues = self._connections.get(address)
        if not queues:
            LOGGER.debug("No live connection for %s, dropping notification", address)
            return
        event = build_event(address, message, payload, kind)
        for queue in list(queues):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                LOGGER.warning("Connection queue full for %s, dropping notification", address)


class HttpPushChannel(NotificationChannel):
    """Forwards notifications to an external realtime gateway over HTTP."""

    def __init__(self, base_url: str, timeout_seconds: float = 10.0) -> None:
        self._base_url = base_url
        self._timeout_seconds = timeout_seconds

    async def send_notification(
        self,
        address: str,
        message: str,
        payload: NotificationPayload,
        kind: RecipientKind,
    ) -> None:
        event = build_event(address, message, payload, kind)
        timeout = httpx.Timeout(self._timeout_seconds)
        try:
            async with httpx.AsyncClient(base_url=self._base_url, timeout=timeout) as client:
                response = await client.post("/notify", json=event)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            LOGGER.warning("Push gateway rejected notification for %s: %s", address, exc)
