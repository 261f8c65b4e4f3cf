from __future__ import annotations

import pytest

from groupcast.channel import NotificationChannel
from groupcast.db import Database
from groupcast.models import NotificationPayload, RecipientKind
from groupcast.resolver import RecipientResolver
from groupcast.storage import ObjectUrlBuilder


class RecordingChannel(NotificationChannel):
    """Channel that records every notification instead of pushing it."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict, str]] = []

    async def send_notification(
        self,
        address: str,
        message: str,
        payload: NotificationPayload,
        kind: RecipientKind,
    ) -> None:
        self.sent.append((address, message, payload.to_dict(), kind))

    @property
    def addresses(self) -> list[str]:
        return [address for address, _, _, _ in self.sent]


@pytest.fixture
def db(tmp_path) -> Database:
    database = Database(tmp_path / "groupcast.db")
    database.initialize()
    return database


@pytest.fixture
def urls() -> ObjectUrlBuilder:
    return ObjectUrlBuilder(bucket="media", region="ap-south-1")


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def resolver(db) -> RecipientResolver:
    return RecipientResolver(db)


@pytest.fixture
def runners(db) -> str:
    """Group g1 created by admin a1 with members u1 and u2."""

    db.upsert_user("u1", "One")
    db.upsert_user("u2", "Two")
    db.upsert_user("u3", "Three")
    db.create_group("g1", "Runners", created_by="a1")
    db.add_group_member("g1", "u1")
    db.add_group_member("g1", "u2")
    return "g1"
