"""Health check endpoint."""

from datetime import datetime, timezone

from fastapi import APIRouter, Request
from pydantic import BaseModel

from backend.utils.version import VERSION

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    timestamp: str
    scan_active: bool
    metadata_available: bool


@router.get("/health", response_model=HealthResponse)
async def health_check(http_request: Request):
    """Check application health status."""
    state = http_request.app.state
    return HealthResponse(
        status="healthy",
        version=VERSION,
        timestamp=datetime.now(timezone.utc).isoformat(),
        scan_active=state.scan_scheduler.is_running,
        metadata_available=await state.metadata_service.is_available(),
    )
