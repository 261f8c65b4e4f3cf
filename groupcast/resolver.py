"""Recipient resolution for group broadcasts and direct messages."""

from __future__ import annotations

from groupcast.db import Database
from groupcast.models import Group, Message, Recipient


class GroupNotFoundError(LookupError):
    """Raised when a message targets a group that no longer exists."""

    def __init__(self, group_id: str) -> None:
        super().__init__(f"Group not found: {group_id}")
        self.group_id = group_id


def group_room(group_id: str) -> str:
    return f"group-{group_id}"


class RecipientResolver:
    """Maps a message target to the addresses that should be notified."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def resolve(self, message: Message) -> list[Recipient]:
        """Return the fan-out for ``message``.

        Group messages expand to every roster member that still exists as a
        user, followed by the group room. Direct messages go to the receiver.

        Raises:
            GroupNotFoundError: the target group is missing.
            ValueError: the message has no target.
        """
        if message.is_group_message:
            group_id = str(message.group_id)
            group = self._db.get_group(group_id)
            if group is None:
                raise GroupNotFoundError(group_id)
            return self.resolve_group(group)
        if message.receiver_id is not None:
            return [Recipient(address=message.receiver_id, kind="user")]
        raise ValueError(f"Message {message.id} has neither group_id nor receiver_id")

    def resolve_group(self, group: Group) -> list[Recipient]:
        members = self._db.get_users(group.members)
        recipients = [Recipient(address=user.id, kind="user") for user in members]
        recipients.append(Recipient(address=group_room(group.id), kind="group"))
        return recipients
