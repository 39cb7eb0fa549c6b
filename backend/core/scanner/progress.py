"""Scan lifecycle events published to the WebSocket ``scan`` channel."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog

from backend.utils.constants import WEBSOCKET

logger = structlog.get_logger(__name__)


class ProgressEmitter:
    """Wraps the WebSocket manager with the scan event vocabulary."""

    def __init__(self, ws_manager=None, channel: str = WEBSOCKET.SCAN_CHANNEL):
        self.ws_manager = ws_manager
        self.channel = channel

    async def emit(self, event_type: str, data: Dict[str, Any]) -> None:
        message = {
            "type": event_type,
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        logger.debug("Scan event", type=event_type, scan_job_id=data.get("scan_job_id"))
        if self.ws_manager:
            await self.ws_manager.broadcast(self.channel, message)

    async def started(self, scan_job_id: int, path: str, media_type: str, batch_scan: bool) -> None:
        await self.emit(WEBSOCKET.SCAN_STARTED, {
            "scan_job_id": scan_job_id,
            "path": path,
            "media_type": media_type,
            "batch_scan": batch_scan,
        })

    async def queued(self, scan_job_id: int, path: str, queue_position: int) -> None:
        await self.emit(WEBSOCKET.SCAN_QUEUED, {
            "scan_job_id": scan_job_id,
            "path": path,
            "queue_position": queue_position,
        })

    async def progress(
        self,
        scan_job_id: int,
        phase: str,
        current: int = 0,
        total: int = 0,
        message: Optional[str] = None,
        **extra: Any,
    ) -> None:
        percent = round(current / total * 100, 1) if total else 0.0
        data = {
            "scan_job_id": scan_job_id,
            "phase": phase,
            "current": current,
            "total": total,
            "progress": percent,
            "message": message,
        }
        data.update(extra)
        await self.emit(WEBSOCKET.SCAN_PROGRESS, data)

    async def complete(self, scan_job_id: int, stats: Dict[str, Any]) -> None:
        await self.emit(WEBSOCKET.SCAN_COMPLETE, {"scan_job_id": scan_job_id, **stats})

    async def error(self, message: str, scan_job_id: Optional[int] = None) -> None:
        data: Dict[str, Any] = {"message": message}
        if scan_job_id is not None:
            data["scan_job_id"] = scan_job_id
        await self.emit(WEBSOCKET.SCAN_ERROR, data)

    async def cancelled(self, scan_job_id: int) -> None:
        await self.emit(WEBSOCKET.SCAN_CANCELLED, {"scan_job_id": scan_job_id})
