"""WebSocket connection manager for scan progress events."""

from typing import Dict, Optional, Set
from fastapi import WebSocket, WebSocketDisconnect
import structlog

from backend.utils.constants import WEBSOCKET

logger = structlog.get_logger(__name__)


class WebSocketManager:
    """Tracks subscribers per channel and fans messages out to them."""

    def __init__(self):
        self._connections: Dict[str, Set[WebSocket]] = {WEBSOCKET.SCAN_CHANNEL: set()}

    async def connect(self, websocket: WebSocket, channel: str):
        await websocket.accept()
        self._connections.setdefault(channel, set()).add(websocket)
        logger.info("WebSocket connected", channel=channel, total=len(self._connections[channel]))

    def disconnect(self, websocket: WebSocket, channel: str):
        if channel in self._connections and websocket in self._connections[channel]:
            self._connections[channel].discard(websocket)
            logger.info("WebSocket disconnected", channel=channel, total=len(self._connections[channel]))

    async def broadcast(self, channel: str, message: dict):
        """Send to every subscriber; connections that fail are dropped."""
        subscribers = self._connections.get(channel)
        if not subscribers:
            return

        dead_connections = set()
        for websocket in list(subscribers):
            try:
                await websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                logger.warning("Failed to send WebSocket message", channel=channel, error=str(e))
                dead_connections.add(websocket)

        for ws in dead_connections:
            subscribers.discard(ws)

    async def send_to_one(self, websocket: WebSocket, message: dict):
        try:
            await websocket.send_json(message)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            logger.warning("Failed to send WebSocket message", error=str(e))

    def get_connection_count(self, channel: Optional[str] = None) -> int:
        if channel:
            return len(self._connections.get(channel, set()))
        return sum(len(conns) for conns in self._connections.values())
