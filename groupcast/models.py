"""Core domain models used across layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

MessageType = Literal["admin", "user"]
SenderModel = Literal["User", "Admin"]
RecipientKind = Literal["user", "group"]


@dataclass(slots=True)
class Message:
    """Persisted message, either a group broadcast or a direct message."""

    id: int
    message_type: MessageType
    sender_id: str
    sender_model: SenderModel
    text: str
    timestamp: datetime
    receiver_id: str | None = None
    group_id: str | None = None
    group_name: str | None = None
    file: str | None = None
    scheduled_time: datetime | None = None
    is_sent: bool = True

    @property
    def is_group_message(self) -> bool:
        return self.group_id is not None

    def is_due(self, now: datetime) -> bool:
        """True when the message is scheduled, unsent, and its time has passed."""

        return not self.is_sent and self.scheduled_time is not None and self.scheduled_time <= now


@dataclass(slots=True)
class Group:
    """Group directory record."""

    id: str
    name: str
    created_by: str
    members: list[str] = field(default_factory=list)


@dataclass(slots=True)
class User:
    """User directory record."""

    id: str
    name: str = ""


@dataclass(frozen=True, slots=True)
class Recipient:
    """One notification address produced by recipient resolution."""

    address: str
    kind: RecipientKind


@dataclass(slots=True)
class NotificationPayload:
    """Payload attached to every live notification."""

    group_id: str = ""
    group_name: str = ""
    file: str = ""
    # Set only for direct messages so the receiver knows who wrote.
    sender_id: str | None = None
    message_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"groupId": self.group_id, "groupName": self.group_name, "file": self.file}
        if self.sender_id is not None:
            data["senderId"] = self.sender_id
        if self.message_id is not None:
            data["messageId"] = self.message_id
        return data


@dataclass(slots=True)
class DispatchResult:
    """Outcome of a send request, reported back to the caller."""

    success: bool
    detail: str
    message_ids: list[int] = field(default_factory=list)
    notified: int = 0
    deferred: bool = False


@dataclass(slots=True)
class SweepReport:
    """Counters for one scheduler sweep."""

    due: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0
