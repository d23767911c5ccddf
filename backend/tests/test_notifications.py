from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from app.errors import NotificationError
from app.main import app, broadcaster
from app.services.notifications import (
    AuctionNotification,
    NullNotificationSink,
    WebSocketBroadcaster,
    safe_publish,
)


class FakeSocket:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.accepted = False
        self.sent: list[dict] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, message: dict) -> None:
        if self.fail:
            raise RuntimeError("connection reset")
        self.sent.append(message)


def test_message_flattens_details():
    notification = AuctionNotification("a1", "listed", {"status": "ACTIVE"})
    assert notification.to_message() == {"auctionId": "a1", "action": "listed", "status": "ACTIVE"}


def test_safe_publish_swallows_sink_errors(exploding_sink):
    safe_publish(exploding_sink, AuctionNotification("a1", "settled"))
    safe_publish(None, AuctionNotification("a1", "settled"))
    safe_publish(NullNotificationSink(), AuctionNotification("a1", "settled"))


def test_publish_without_loop_raises():
    channel = WebSocketBroadcaster()
    channel._connections.add(FakeSocket())
    with pytest.raises(NotificationError):
        channel.publish(AuctionNotification("a1", "settled"))


def test_publish_without_clients_is_a_no_op():
    WebSocketBroadcaster().publish(AuctionNotification("a1", "settled"))


def test_broadcast_reaches_clients_and_drops_dead_ones():
    channel = WebSocketBroadcaster()
    healthy = FakeSocket()
    dead = FakeSocket(fail=True)

    async def scenario():
        await channel.connect(healthy)
        await channel.connect(dead)
        channel.publish(AuctionNotification("a1", "revealed", {"bidder": "0x1"}))
        for _ in range(10):
            await asyncio.sleep(0)

    asyncio.run(scenario())

    assert healthy.accepted
    assert healthy.sent == [{"auctionId": "a1", "action": "revealed", "bidder": "0x1"}]
    assert channel.connection_count == 1


def test_websocket_endpoint_delivers_notifications():
    client = TestClient(app)
    with client.websocket_connect("/ws") as websocket:
        broadcaster.publish(AuctionNotification("a9", "listed", {"status": "ACTIVE"}))
        assert websocket.receive_json() == {"auctionId": "a9", "action": "listed", "status": "ACTIVE"}
    assert broadcaster.connection_count == 0
