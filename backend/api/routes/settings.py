"""Settings management endpoints."""

from typing import Optional, Dict, Any, List
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ValidationError as PydanticValidationError

from backend.utils.config import get_config, update_config
from backend.utils.constants import API

router = APIRouter()


class TMDBSettingsUpdate(BaseModel):
    """TMDB settings update."""
    api_key: Optional[str] = None
    language: Optional[str] = None
    requests_per_second: Optional[float] = None
    max_retries: Optional[int] = None


class AniListSettingsUpdate(BaseModel):
    """AniList settings update."""
    enabled: Optional[bool] = None
    title_search: Optional[bool] = None
    requests_per_second: Optional[float] = None
    max_retries: Optional[int] = None


class MetadataSettingsUpdate(BaseModel):
    """Metadata provider settings update."""
    tmdb: Optional[TMDBSettingsUpdate] = None
    anilist: Optional[AniListSettingsUpdate] = None
    search_by_title: Optional[bool] = None


class ScanSettingsUpdate(BaseModel):
    """Scan settings update."""
    tv_batch_size: Optional[int] = None
    movie_batch_size: Optional[int] = None
    folder_timeout_seconds: Optional[float] = None
    folder_retries: Optional[int] = None
    stale_job_hours: Optional[float] = None
    failed_job_retention_days: Optional[int] = None


class PathMappingItem(BaseModel):
    host_path: str
    container_path: str


def _mask_sensitive(value: str) -> str:
    """Mask a sensitive value if it exists, otherwise return empty string."""
    return API.MASK_VALUE if value else ""


def _metadata_view() -> Dict[str, Any]:
    config = get_config()
    return {
        "tmdb": {
            "api_key": _mask_sensitive(config.metadata.tmdb.api_key),
            "language": config.metadata.tmdb.language,
            "requests_per_second": config.metadata.tmdb.requests_per_second,
            "max_retries": config.metadata.tmdb.max_retries,
            "is_configured": config.metadata.tmdb.is_configured,
        },
        "anilist": {
            "enabled": config.metadata.anilist.enabled,
            "title_search": config.metadata.anilist.title_search,
            "requests_per_second": config.metadata.anilist.requests_per_second,
            "max_retries": config.metadata.anilist.max_retries,
            "is_configured": config.metadata.anilist.is_configured,
        },
        "search_by_title": config.metadata.search_by_title,
    }


def _apply(updates: Dict[str, Any]) -> None:
    try:
        update_config(updates)
    except PydanticValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors())


@router.get("")
async def get_all_settings():
    """
    Get all settings with sensitive data masked.

    API keys are replaced with '***'. When saving, a key that is still
    '***' is skipped so the stored value is preserved.
    """
    config = get_config()
    return {
        "metadata": _metadata_view(),
        "scan": config.scan.model_dump(),
        "path_mappings": [m.model_dump() for m in config.path_mappings],
    }


@router.get("/metadata")
async def get_metadata_settings():
    """Metadata provider settings, keys masked."""
    return _metadata_view()


@router.put("/metadata")
async def update_metadata_settings(request: MetadataSettingsUpdate):
    """
    Update metadata provider settings.

    Takes effect on the next provider request; no restart needed.
    """
    updates = request.model_dump(exclude_none=True)
    tmdb = updates.get("tmdb", {})
    # Don't overwrite the key with the mask placeholder
    if tmdb.get("api_key") == API.MASK_VALUE:
        tmdb.pop("api_key")
    if "tmdb" in updates and not tmdb:
        updates.pop("tmdb")

    if updates:
        _apply({"metadata": updates})

    return {"status": "success", "message": "Metadata settings updated", "metadata": _metadata_view()}


@router.put("/scan")
async def update_scan_settings(request: ScanSettingsUpdate):
    """Update scan tuning."""
    updates = request.model_dump(exclude_none=True)
    if updates:
        _apply({"scan": updates})
    return {"status": "success", "message": "Scan settings updated", "scan": get_config().scan.model_dump()}


@router.put("/path-mappings")
async def update_path_mappings(mappings: List[PathMappingItem]):
    """Replace the host to container path mappings."""
    _apply({"path_mappings": [m.model_dump() for m in mappings]})
    return {"status": "success", "path_mappings": [m.model_dump() for m in get_config().path_mappings]}
