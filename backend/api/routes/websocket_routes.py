"""WebSocket endpoints for real-time scan updates."""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import json
import structlog

from backend.utils.constants import WEBSOCKET

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.websocket("/scan")
async def scan_websocket(websocket: WebSocket):
    """Scan lifecycle events; answers ``{"type": "ping"}`` with a pong."""
    ws_manager = websocket.scope["app"].state.ws_manager
    channel = WEBSOCKET.SCAN_CHANNEL

    await ws_manager.connect(websocket, channel)
    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                logger.warning("Invalid JSON in WebSocket message")
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                await ws_manager.send_to_one(websocket, {"type": "pong"})
    except WebSocketDisconnect:
        pass
    finally:
        ws_manager.disconnect(websocket, channel)
