"""Scan management endpoints."""

from typing import Optional
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
import structlog

from backend.core.path_mapping import map_host_path
from backend.core.scanner.errors import (
    PathNotFoundError, ProviderNotConfiguredError, ScanJobNotFoundError,
    ScanJobStateError, ValidationError,
)
from backend.core.scanner.pipeline import ScanOptions, job_snapshot
from backend.core.scanner.walker import extensions_for
from backend.db.models import MediaType

logger = structlog.get_logger(__name__)

router = APIRouter()


class ScanRequestOptions(BaseModel):
    """Scan options; accepts camelCase or snake_case keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    media_type: MediaType
    batch_scan: bool = False
    collection_name: Optional[str] = None
    update_existing: bool = False
    fetch_metadata: bool = True
    require_metadata: bool = False
    batch_size: Optional[int] = Field(default=None, ge=1)


class ScanStartRequest(BaseModel):
    """Request to start a new scan."""
    path: str
    options: ScanRequestOptions


class CleanupRequest(BaseModel):
    stale_hours: Optional[float] = Field(default=None, gt=0)


def _scheduler(http_request: Request):
    return http_request.app.state.scan_scheduler


def _raise_validation(e: ValidationError):
    status_code = 404 if isinstance(e, PathNotFoundError) else 400
    raise HTTPException(status_code=status_code, detail=e.to_dict())


@router.post("", status_code=202)
async def start_scan(request: ScanStartRequest, http_request: Request):
    """
    Start a scan, or queue it behind the active one.

    Path validation happens before the response; everything after runs
    in the background and reports over the ``scan`` WebSocket channel.
    """
    scheduler = _scheduler(http_request)
    options = request.options
    path = map_host_path(request.path)

    if options.require_metadata:
        metadata = http_request.app.state.metadata_service
        if not await metadata.is_available(options.media_type):
            error = ProviderNotConfiguredError(
                f"No metadata provider is configured for {options.media_type.value}"
            )
            raise HTTPException(status_code=400, detail={"message": str(error)})

    try:
        result = await scheduler.submit(path, ScanOptions(
            media_type=options.media_type,
            batch_scan=options.batch_scan,
            collection_name=options.collection_name,
            update_existing=options.update_existing,
            fetch_metadata=options.fetch_metadata,
            batch_size=options.batch_size,
        ))
    except ValidationError as e:
        logger.info("Scan rejected", path=path, reason=e.message)
        _raise_validation(e)
    except ScanJobStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {
        **result.to_dict(),
        "path": path,
        "message": "Scan queued" if result.queued else "Scan started",
    }


@router.post("/resume/{scan_job_id}", status_code=202)
async def resume_scan(scan_job_id: int, http_request: Request):
    """Resume a FAILED, CANCELLED or orphaned PENDING job where it stopped."""
    try:
        result = await _scheduler(http_request).resume(scan_job_id)
    except ScanJobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ScanJobStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValidationError as e:
        _raise_validation(e)

    return {
        **result.to_dict(),
        "message": "Scan resume queued" if result.queued else "Scan resumed",
    }


@router.get("/job/{scan_job_id}")
async def get_scan_job(scan_job_id: int, http_request: Request):
    """Current snapshot of a scan job."""
    scheduler = _scheduler(http_request)
    try:
        job = await scheduler.pipeline.get_job(scan_job_id)
    except ScanJobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    snapshot = job_snapshot(job)
    snapshot["is_active"] = scheduler.active_job_id == scan_job_id
    snapshot["is_queued"] = scan_job_id in scheduler.queued_job_ids
    return snapshot


@router.post("/job/{scan_job_id}/cancel")
async def cancel_scan_job(scan_job_id: int, http_request: Request):
    """Cancel a running or queued scan job."""
    try:
        outcome = await _scheduler(http_request).cancel(scan_job_id)
    except ScanJobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ScanJobStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {"scan_job_id": scan_job_id, "status": outcome}


@router.post("/cleanup-stale-jobs")
async def cleanup_stale_jobs(http_request: Request, request: Optional[CleanupRequest] = None):
    """Fail stuck jobs and delete old failed/cancelled ones."""
    stale_hours = request.stale_hours if request else None
    result = await _scheduler(http_request).cleanup_stale_jobs(stale_hours=stale_hours)
    return {
        "count": result.total,
        "stale_marked_failed": result.stale_failed,
        "removed": result.removed,
    }


@router.get("/queue")
async def get_queue(http_request: Request):
    """Active scan and the jobs waiting behind it."""
    return _scheduler(http_request).status()


@router.get("/extensions")
async def get_supported_extensions():
    """Extensions the walker picks up, per media type."""
    return {media_type.value: sorted(extensions_for(media_type)) for media_type in MediaType}
