"""Tests for the WebSocket connection pool."""

import json

import pytest

from sankey_server.websocket_manager import WebSocketManager


class FakeWebSocket:
    """Records sent messages; optionally fails like a closed socket."""

    def __init__(self, closed=False):
        self.closed = closed
        self.accepted = False
        self.messages = []

    async def accept(self):
        self.accepted = True

    async def send_text(self, text):
        if self.closed:
            raise RuntimeError("socket closed")
        self.messages.append(json.loads(text))


class TestWebSocketManager:
    @pytest.mark.asyncio
    async def test_events_reach_every_view(self):
        manager = WebSocketManager()
        views = [FakeWebSocket(), FakeWebSocket()]
        for view in views:
            await manager.connect(view)

        assert await manager.notify_state_updated(True) == 2
        assert await manager.notify_export_failed("decoder unavailable") == 2

        for view in views:
            assert view.accepted
            assert view.messages == [
                {"type": "state_updated", "balance_ok": True},
                {"type": "export_failed", "error": "decoder unavailable"},
            ]

    @pytest.mark.asyncio
    async def test_failed_send_drops_connection(self):
        manager = WebSocketManager()
        alive, gone = FakeWebSocket(), FakeWebSocket(closed=True)
        await manager.connect(alive)
        await manager.connect(gone)

        assert await manager.notify_state_updated(False) == 1
        assert manager.connection_count == 1

        await manager.notify_state_updated(True)
        assert len(alive.messages) == 2

    @pytest.mark.asyncio
    async def test_no_connections(self):
        manager = WebSocketManager()
        assert await manager.send_event("state_updated") == 0

    @pytest.mark.asyncio
    async def test_disconnect(self):
        manager = WebSocketManager()
        view = FakeWebSocket()
        await manager.connect(view)
        await manager.disconnect(view)
        assert manager.connection_count == 0
        assert await manager.notify_state_updated(True) == 0
