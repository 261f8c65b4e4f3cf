"""Entry points that create messages and deliver immediate ones inline."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from groupcast.channel import NotificationChannel
from groupcast.db import Database
from groupcast.delivery import build_payload, deliver
from groupcast.models import DispatchResult, Group, Message
from groupcast.resolver import GroupNotFoundError, RecipientResolver
from groupcast.storage import ObjectUrlBuilder, is_object_key

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class UnknownUserError(LookupError):
    """Raised when a direct message targets a user that does not exist."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _validate_content(text: str | None, file_name: str | None) -> None:
    if not text and not file_name:
        raise ValueError("Message or fileName is required.")
    if file_name and not is_object_key(file_name):
        raise ValueError("fileName must be a storage key, not a URL.")


def _normalize_schedule(scheduled_time: datetime | None) -> datetime | None:
    if scheduled_time is None:
        return None
    if scheduled_time.tzinfo is None:
        return scheduled_time.replace(tzinfo=timezone.utc)
    return scheduled_time.astimezone(timezone.utc)


class NotificationDispatcher:
    """Creates admin broadcasts and direct messages.

    Sends without a ``scheduled_time`` are stored as sent and delivered
    inline. Sends with one are stored unsent and left to ``MessageScheduler``.
    """

    def __init__(
        self,
        db: Database,
        resolver: RecipientResolver,
        channel: NotificationChannel,
        urls: ObjectUrlBuilder,
    ) -> None:
        self._db = db
        self._resolver = resolver
        self._channel = channel
        self._urls = urls

    async def notify_all_groups(
        self,
        admin_id: str,
        text: str | None = None,
        file_name: str | None = None,
        scheduled_time: datetime | None = None,
    ) -> DispatchResult:
        """Broadcast to every group the admin created, one message per group."""

        _validate_content(text, file_name)
        scheduled_time = _normalize_schedule(scheduled_time)

        groups = self._db.list_groups_created_by(admin_id)
        if not groups:
            return DispatchResult(success=False, detail="No groups found for this admin.")

        message_ids: list[int] = []
        total_notified = 0
        for group in groups:
            message, notified = await self._send_to_group(admin_id, group, text, file_name, scheduled_time)
            message_ids.append(message.id)
            total_notified += notified

        if scheduled_time is not None:
            detail = f"Notification scheduled for {len(groups)} group(s) at {scheduled_time.isoformat()}."
        else:
            detail = f"Socket notification sent to {total_notified} approved users."
        return DispatchResult(
            success=True,
            detail=detail,
            message_ids=message_ids,
            notified=total_notified,
            deferred=scheduled_time is not None,
        )

    async def notify_group(
        self,
        admin_id: str,
        group_id: str,
        text: str | None = None,
        file_name: str | None = None,
        scheduled_time: datetime | None = None,
    ) -> DispatchResult:
        """Broadcast to one group created by the admin.

        Raises:
            ValueError: neither text nor file given, or file is a URL.
            GroupNotFoundError: the group is missing or owned by another admin.
        """
        if not group_id:
            raise ValueError("groupId is required.")
        _validate_content(text, file_name)
        scheduled_time = _normalize_schedule(scheduled_time)

        group = self._db.get_group(group_id)
        if group is None or group.created_by != admin_id:
            raise GroupNotFoundError(group_id)

        message, notified = await self._send_to_group(admin_id, group, text, file_name, scheduled_time)
        if scheduled_time is not None:
            detail = f"Notification for group {group.name} scheduled at {scheduled_time.isoformat()}."
        else:
            detail = f"Notification sent to {notified} members in group {group.name}."
        return DispatchResult(
            success=True,
            detail=detail,
            message_ids=[message.id],
            notified=notified,
            deferred=scheduled_time is not None,
        )

    async def send_user_message(
        self,
        sender_id: str,
        receiver_id: str,
        text: str | None = None,
        file_name: str | None = None,
        scheduled_time: datetime | None = None,
    ) -> DispatchResult:
        """Send a direct message from one user to another."""

        if not receiver_id:
            raise ValueError("receiverId is required.")
        _validate_content(text, file_name)
        scheduled_time = _normalize_schedule(scheduled_time)
        if not self._db.user_exists(receiver_id):
            raise UnknownUserError(receiver_id)

        message = self._db.create_message(
            message_type="user",
            sender_id=sender_id,
            sender_model="User",
            text=text or "",
            receiver_id=receiver_id,
            file=file_name,
            scheduled_time=scheduled_time,
            is_sent=scheduled_time is None,
        )
        if scheduled_time is not None:
            LOGGER.info("Message %s to %s deferred until %s", message.id, receiver_id, scheduled_time.isoformat())
            return DispatchResult(
                success=True,
                detail=f"Message scheduled for {scheduled_time.isoformat()}.",
                message_ids=[message.id],
                deferred=True,
            )

        notified = await self._deliver_now(message)
        return DispatchResult(
            success=True,
            detail="Message sent successfully",
            message_ids=[message.id],
            notified=notified,
        )

    async def _send_to_group(
        self,
        admin_id: str,
        group: Group,
        text: str | None,
        file_name: str | None,
        scheduled_time: datetime | None,
    ) -> tuple[Message, int]:
        message = self._db.create_message(
            message_type="admin",
            sender_id=admin_id,
            sender_model="Admin",
            text=text or "",
            group_id=group.id,
            group_name=group.name,
            file=file_name,
            scheduled_time=scheduled_time,
            is_sent=scheduled_time is None,
        )
        if scheduled_time is not None:
            LOGGER.info("Message %s to group %s deferred until %s", message.id, group.id, scheduled_time.isoformat())
            return message, 0
        return message, await self._deliver_now(message)

    async def _deliver_now(self, message: Message) -> int:
        """Resolve and notify inline; returns the number of users notified."""

        recipients = self._resolver.resolve(message)
        await deliver(self._channel, recipients, message.text, build_payload(message, self._urls))
        notified = sum(1 for recipient in recipients if recipient.kind == "user")
        LOGGER.info("Message %s delivered inline to %d user(s)", message.id, notified)
        return notified


class MessageHistory:
    """Read paths over stored messages. File keys are turned into URLs here."""

    def __init__(self, db: Database, urls: ObjectUrlBuilder, clock: Clock | None = None) -> None:
        self._db = db
        self._urls = urls
        self._clock = clock or _utc_now

    def group_notifications(self, admin_id: str, group_id: str | None = None) -> dict[str, Any]:
        """Messages an admin sent, grouped per group."""

        messages = self._db.list_admin_messages(admin_id, group_id=group_id)
        grouped: dict[str, dict[str, Any]] = {}
        for message in messages:
            entry = grouped.setdefault(
                message.group_id or "",
                {
                    "groupId": message.group_id,
                    "groupName": message.group_name,
                    "totalMessages": 0,
                    "notifications": [],
                },
            )
            entry["totalMessages"] += 1
            entry["notifications"].append(
                {
                    "message": message.text,
                    "timestamp": message.timestamp.isoformat(),
                    "file": self._urls.resolve(message.file),
                    "scheduledTime": message.scheduled_time.isoformat() if message.scheduled_time else None,
                    "isSent": message.is_sent,
                }
            )
        return {"totalMessagesSentByAdmin": len(messages), "groups": list(grouped.values())}

    def member_group_messages(self, user_id: str, group_id: str | None = None) -> list[dict[str, Any]]:
        """Broadcasts visible to a member, newest first; scheduled ones appear once due."""

        member_groups = self._db.list_member_group_ids(user_id)
        if group_id is not None and group_id not in member_groups:
            raise GroupNotFoundError(group_id)
        target_ids = [group_id] if group_id is not None else member_groups

        grouped: dict[str, dict[str, Any]] = {}
        for message in self._db.list_visible_group_messages(target_ids, self._clock()):
            entry = grouped.setdefault(
                message.group_id or "",
                {"groupId": message.group_id, "groupName": message.group_name or "Unknown Group", "notifications": []},
            )
            entry["notifications"].append(
                {
                    "message": message.text,
                    "timestamp": message.timestamp.isoformat(),
                    "file": self._urls.resolve(message.file),
                }
            )
        return list(grouped.values())

    def chat_history(self, user_id: str, other_user_id: str | None = None) -> dict[str, list[dict[str, Any]]]:
        """Direct messages grouped by the other participant."""

        now = self._clock()
        conversations: dict[str, list[dict[str, Any]]] = {}
        for message in self._db.list_conversation(user_id, other_user_id):
            sent_by_me = message.sender_id == user_id
            if not sent_by_me and not message.is_sent and not message.is_due(now):
                # Not delivered yet; the receiver should not see it.
                continue
            other = message.receiver_id if sent_by_me else message.sender_id
            if not other:
                continue
            conversations.setdefault(other, []).append(
                {
                    "messageId": message.id,
                    "message": message.text,
                    "file": self._urls.resolve(message.file),
                    "timestamp": message.timestamp.isoformat(),
                    "direction": "sent" if sent_by_me else "received",
                }
            )
        return conversations
