"""Shared resolve-and-notify steps for inline and scheduled sends."""

from __future__ import annotations

import logging
from typing import Iterable

from groupcast.channel import NotificationChannel
from groupcast.models import Message, NotificationPayload, Recipient
from groupcast.storage import ObjectUrlBuilder

LOGGER = logging.getLogger(__name__)


def build_payload(message: Message, urls: ObjectUrlBuilder) -> NotificationPayload:
    payload = NotificationPayload(
        group_id=message.group_id or "",
        group_name=message.group_name or "",
        file=urls.resolve(message.file),
    )
    if not message.is_group_message:
        payload.sender_id = message.sender_id
        payload.message_id = message.id
    return payload


async def deliver(
    channel: NotificationChannel,
    recipients: Iterable[Recipient],
    text: str,
    payload: NotificationPayload,
) -> int:
    """Notify every recipient in order and return the number of attempts.

    A failure for one address is logged and does not stop the others.
    """
    attempted = 0
    for recipient in recipients:
        attempted += 1
        try:
            await channel.send_notification(recipient.address, text, payload, recipient.kind)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Notification to %s (%s) failed", recipient.address, recipient.kind)
    return attempted
