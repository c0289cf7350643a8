"""
WebSocket Manager - pushes editor events to chart views.

Two events exist: ``state_updated`` after any session change (clients
re-fetch GET /api/state) and ``export_failed`` when a background PNG
export could not be produced.
"""
import asyncio
import json
import logging
from typing import Any, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)

STATE_UPDATED = "state_updated"
EXPORT_FAILED = "export_failed"


class WebSocketManager:
    """Pool of connected chart views."""

    def __init__(self):
        self._connections: Set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        async with self._lock:
            self._connections.add(websocket)
        logger.info("Chart view connected (%d open)", len(self._connections))

    async def disconnect(self, websocket: WebSocket):
        async with self._lock:
            self._connections.discard(websocket)
        logger.info("Chart view disconnected (%d open)", len(self._connections))

    async def send_event(self, event_type: str, **payload: Any) -> int:
        """
        Send one event to every connection.

        Connections whose send fails are dropped from the pool.

        Returns:
            Number of connections the event reached
        """
        async with self._lock:
            targets = list(self._connections)
        if not targets:
            return 0

        message_text = json.dumps({"type": event_type, **payload})
        delivered = 0
        for websocket in targets:
            try:
                await websocket.send_text(message_text)
                delivered += 1
            except Exception:
                logger.debug("Dropping chart view after failed %s send", event_type, exc_info=True)
                async with self._lock:
                    self._connections.discard(websocket)
        return delivered

    async def notify_state_updated(self, balance_ok: bool | None = None) -> int:
        return await self.send_event(STATE_UPDATED, balance_ok=balance_ok)

    async def notify_export_failed(self, error: str) -> int:
        return await self.send_event(EXPORT_FAILED, error=error)

    @property
    def connection_count(self) -> int:
        return len(self._connections)


# Global instance
ws_manager = WebSocketManager()
