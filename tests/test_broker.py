from __future__ import annotations

import pytest

from jobchat.broker import ChannelBroker, notification_channel, room_channel

pytestmark = pytest.mark.unit


class Inbox:
    def __init__(self) -> None:
        self.frames: list[dict] = []

    async def send(self, frame: dict) -> None:
        self.frames.append(frame)


async def broken_send(frame: dict) -> None:
    raise RuntimeError("socket closed")


def test_channel_names() -> None:
    assert room_channel(10) == "room/10"
    assert notification_channel(2) == "user/2/notifications"


@pytest.mark.asyncio
async def test_publish_reaches_every_subscriber() -> None:
    broker = ChannelBroker()
    first, second, elsewhere = Inbox(), Inbox(), Inbox()
    broker.subscribe("room/10", "conn-1", "sub-a", first.send)
    broker.subscribe("room/10", "conn-2", "sub-b", second.send)
    broker.subscribe("room/11", "conn-3", "sub-c", elsewhere.send)

    delivered = await broker.publish("room/10", {"content": "Hello"})

    assert delivered == 2
    assert first.frames == [
        {"type": "MESSAGE", "destination": "room/10", "subscription": "sub-a", "body": {"content": "Hello"}}
    ]
    assert second.frames[0]["subscription"] == "sub-b"
    assert elsewhere.frames == []


@pytest.mark.asyncio
async def test_publish_without_subscribers_is_a_no_op() -> None:
    broker = ChannelBroker()

    assert await broker.publish("room/10", {"content": "Hello"}) == 0


@pytest.mark.asyncio
async def test_unsubscribe_and_disconnect() -> None:
    broker = ChannelBroker()
    inbox = Inbox()
    broker.subscribe("room/10", "conn-1", "sub-a", inbox.send)
    broker.subscribe("user/1/notifications", "conn-1", "sub-b", inbox.send)

    assert broker.unsubscribe("conn-1", "sub-a") is True
    assert broker.unsubscribe("conn-1", "sub-a") is False
    assert broker.subscriber_count("room/10") == 0

    broker.disconnect("conn-1")

    assert broker.subscriber_count("user/1/notifications") == 0
    assert broker.channels == {}


@pytest.mark.asyncio
async def test_resubscribing_same_id_moves_subscription() -> None:
    broker = ChannelBroker()
    inbox = Inbox()
    broker.subscribe("room/10", "conn-1", "sub-a", inbox.send)
    broker.subscribe("room/11", "conn-1", "sub-a", inbox.send)

    assert broker.subscriber_count("room/10") == 0
    assert broker.subscriber_count("room/11") == 1


@pytest.mark.asyncio
async def test_failed_delivery_drops_connection_only() -> None:
    broker = ChannelBroker()
    healthy = Inbox()
    broker.subscribe("room/10", "conn-dead", "sub-a", broken_send)
    broker.subscribe("user/9/notifications", "conn-dead", "sub-b", broken_send)
    broker.subscribe("room/10", "conn-ok", "sub-c", healthy.send)

    delivered = await broker.publish("room/10", {"content": "Hello"})

    assert delivered == 1
    assert len(healthy.frames) == 1
    assert broker.subscriber_count("room/10") == 1
    assert broker.subscriber_count("user/9/notifications") == 0
