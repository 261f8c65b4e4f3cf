"""Tests for notification channels and the shared delivery helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from groupcast.channel import ConnectionHub, HttpPushChannel, NotificationChannel
from groupcast.delivery import build_payload, deliver
from groupcast.models import Message, NotificationPayload, Recipient


@pytest.mark.asyncio
async def test_hub_delivers_to_connected_address():
    hub = ConnectionHub()
    queue = hub.connect("u1")

    await hub.send_notification("u1", "hello", NotificationPayload(group_id="g1", group_name="G"), "user")

    event = queue.get_nowait()
    assert event == {
        "event": "notification",
        "kind": "user",
        "address": "u1",
        "message": "hello",
        "payload": {"groupId": "g1", "groupName": "G", "file": ""},
    }


@pytest.mark.asyncio
async def test_hub_drops_notification_for_offline_address():
    hub = ConnectionHub()

    await hub.send_notification("nobody", "hello", NotificationPayload(), "user")

    assert not hub.is_connected("nobody")


@pytest.mark.asyncio
async def test_hub_fans_out_to_every_connection_of_an_address():
    hub = ConnectionHub()
    first = hub.connect("group-g1")
    second = hub.connect("group-g1")

    await hub.send_notification("group-g1", "hi", NotificationPayload(), "group")

    assert first.qsize() == 1
    assert second.qsize() == 1


@pytest.mark.asyncio
async def test_hub_disconnect_and_full_queue():
    hub = ConnectionHub(max_queue_size=1)
    queue = hub.connect("u1")

    await hub.send_notification("u1", "one", NotificationPayload(), "user")
    await hub.send_notification("u1", "two", NotificationPayload(), "user")
    assert queue.qsize() == 1

    hub.disconnect("u1", queue)
    assert not hub.is_connected("u1")
    hub.disconnect("u1", queue)


def _mock_client(response: MagicMock | None = None, error: Exception | None = None) -> AsyncMock:
    client = AsyncMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    if error is not None:
        client.post = AsyncMock(side_effect=error)
    else:
        client.post = AsyncMock(return_value=response)
    return client


@pytest.mark.asyncio
async def test_http_push_channel_posts_event():
    response = MagicMock()
    client = _mock_client(response=response)

    with patch("groupcast.channel.httpx.AsyncClient", return_value=client):
        channel = HttpPushChannel("http://gateway.local")
        await channel.send_notification("u1", "hello", NotificationPayload(file="https://x/f.png"), "user")

    client.post.assert_awaited_once()
    path = client.post.call_args.args[0]
    body = client.post.call_args.kwargs["json"]
    assert path == "/notify"
    assert body["address"] == "u1"
    assert body["payload"]["file"] == "https://x/f.png"
    response.raise_for_status.assert_called_once()


@pytest.mark.asyncio
async def test_http_push_channel_swallows_transport_errors():
    client = _mock_client(error=httpx.ConnectError("refused"))

    with patch("groupcast.channel.httpx.AsyncClient", return_value=client):
        channel = HttpPushChannel("http://gateway.local")
        await channel.send_notification("u1", "hello", NotificationPayload(), "user")

    client.post.assert_awaited_once()


class FlakyChannel(NotificationChannel):
    def __init__(self) -> None:
        self.calls: list[str] = []

    async def send_notification(self, address, message, payload, kind):  # noqa: ANN001
        self.calls.append(address)
        if address == "bad":
            raise RuntimeError("socket closed")


@pytest.mark.asyncio
async def test_deliver_isolates_per_address_failures():
    channel = FlakyChannel()
    recipients = [Recipient("u1", "user"), Recipient("bad", "user"), Recipient("group-g1", "group")]

    attempted = await deliver(channel, recipients, "hi", NotificationPayload())

    assert attempted == 3
    assert channel.calls == ["u1", "bad", "group-g1"]


def test_build_payload_resolves_file_key(urls):
    message = Message(
        id=1,
        message_type="admin",
        sender_id="a1",
        sender_model="Admin",
        text="",
        timestamp=datetime.now(timezone.utc),
        group_id="g1",
        group_name="Runners",
        file="photo.png",
    )

    payload = build_payload(message, urls)

    assert payload.to_dict() == {
        "groupId": "g1",
        "groupName": "Runners",
        "file": "https://media.s3.ap-south-1.amazonaws.com/photo.png",
    }
    assert message.file == "photo.png"
