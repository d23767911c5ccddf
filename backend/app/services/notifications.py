"""Best-effort live notifications for auction state changes."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Protocol

from fastapi import WebSocket
from loguru import logger

from app.errors import NotificationError


@dataclass(slots=True, frozen=True)
class AuctionNotification:
    auction_id: str
    action: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> dict[str, Any]:
        return {"auctionId": self.auction_id, "action": self.action, **self.details}


class NotificationSink(Protocol):
    """Anything that can fan a notification out to observers."""

    def publish(self, notification: AuctionNotification) -> None:
        """Deliver ``notification``; may raise, callers use :func:`safe_publish`."""


class NullNotificationSink:
    """Sink for contexts without live subscribers (CLI, tests)."""

    def publish(self, notification: AuctionNotification) -> None:
        return None


def safe_publish(sink: NotificationSink | None, notification: AuctionNotification) -> None:
    if sink is None:
        return
    try:
        sink.publish(notification)
    except Exception as exc:  # noqa: BLE001
        logger.warning(
            "Dropped {} notification for auction {}: {}",
            notification.action,
            notification.auction_id,
            exc,
        )


class WebSocketBroadcaster:
    """Fan notifications out to every connected WebSocket client.

    ``publish`` is safe to call from worker threads: delivery is scheduled
    onto the event loop bound at startup and never awaited by the caller.
    """

    def __init__(self) -> None:
        self._connections: set[WebSocket] = set()
        self._loop: asyncio.AbstractEventLoop | None = None

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        if self._loop is None or self._loop.is_closed():
            self._loop = asyncio.get_running_loop()
        self._connections.add(websocket)
        try:
            await websocket.accept()
        except Exception:
            self._connections.discard(websocket)
            raise
        logger.info("Live client connected ({} total)", len(self._connections))

    def disconnect(self, websocket: WebSocket) -> None:
        self._connections.discard(websocket)

    def publish(self, notification: AuctionNotification) -> None:
        if not self._connections:
            return
        loop = self._loop
        if loop is None or loop.is_closed():
            raise NotificationError("live channel is not bound to a running loop")
        asyncio.run_coroutine_threadsafe(self._broadcast(notification.to_message()), loop)

    async def _broadcast(self, message: dict[str, Any]) -> None:
        stale: list[WebSocket] = []
        for websocket in list(self._connections):
            try:
                await websocket.send_json(message)
            except Exception as exc:  # noqa: BLE001
                logger.debug("Dropping live client after send failure: {}", exc)
                stale.append(websocket)
        for websocket in stale:
            self.disconnect(websocket)


__all__ = [
    "AuctionNotification",
    "NotificationSink",
    "NullNotificationSink",
    "WebSocketBroadcaster",
    "safe_publish",
]
