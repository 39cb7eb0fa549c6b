"""Scan root safety checks, run before any directory enumeration."""

import asyncio
import os
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

import structlog

from backend.core.scanner.errors import PathNotFoundError, ValidationError
from backend.core.scanner.walker import extensions_for
from backend.db.models import MediaType
from backend.utils.config import ScanConfig

logger = structlog.get_logger(__name__)

DANGEROUS_ROOT_PATHS = (
    "/",
    "/home",
    "/usr",
    "/var",
    "/etc",
    "/System",
    "/Library",
    "/Applications",
    "/Users",
    "/Windows",
    "/Program Files",
    "/Program Files (x86)",
    "C:\\",
    "D:\\",
    "E:\\",
    "F:\\",
)

_NORMALIZED_DANGEROUS = frozenset(p.replace("\\", "/").lower().rstrip("/") or "/" for p in DANGEROUS_ROOT_PATHS)


@dataclass
class BroadRootResult:
    is_broad_media_root: bool
    detected_collections: List[str] = field(default_factory=list)
    recommendation: Optional[str] = None


def _normalize(path: str) -> str:
    normalized = path.strip().replace("\\", "/").lower()
    return normalized.rstrip("/") or "/"


def is_dangerous_root_path(path: str) -> bool:
    """System roots and bare drive roots can never be scanned."""
    normalized = _normalize(path)
    if len(normalized) == 2 and normalized.endswith(":"):
        return True
    return normalized in _NORMALIZED_DANGEROUS


def path_depth(path: str) -> int:
    return len([part for part in path.replace("\\", "/").split("/") if part])


def _contains_media(dir_path: str, extensions: Iterable[str], depth: int = 0, max_depth: int = 2) -> bool:
    """Blocking check for a media file within ``max_depth`` levels."""
    if depth > max_depth:
        return False
    try:
        with os.scandir(dir_path) as it:
            entries = list(it)
    except OSError:
        return False

    for entry in entries:
        try:
            if entry.is_file() and os.path.splitext(entry.name)[1].lower() in extensions:
                return True
        except OSError:
            continue

    if depth < max_depth:
        for entry in entries:
            try:
                is_dir = entry.is_dir() and not entry.name.startswith(".")
            except OSError:
                continue
            if is_dir and _contains_media(entry.path, extensions, depth + 1, max_depth):
                return True
    return False


def _detect_broad_root(path: str, extensions: Iterable[str], config: ScanConfig) -> BroadRootResult:
    if path_depth(path) > config.broad_root_max_depth:
        return BroadRootResult(is_broad_media_root=False)

    try:
        with os.scandir(path) as it:
            subdirs = sorted(
                (e for e in it if e.is_dir() and not e.name.startswith(".")),
                key=lambda e: e.name,
            )
    except OSError as e:
        logger.warning("Could not inspect scan root", path=path, error=str(e))
        return BroadRootResult(is_broad_media_root=False)

    detected = [
        entry.name
        for entry in subdirs[: config.broad_root_sample_size]
        if _contains_media(entry.path, extensions)
    ]

    if len(detected) < config.broad_root_min_collections:
        return BroadRootResult(is_broad_media_root=False, detected_collections=detected)

    shown = ", ".join(detected[:5])
    if len(detected) > 5:
        shown += ", ..."
    recommendation = (
        f"This path contains {len(detected)} separate media collections ({shown}). "
        f"Scan each one on its own instead, for example: {os.path.join(path, detected[0])}"
    )
    return BroadRootResult(
        is_broad_media_root=True,
        detected_collections=detected,
        recommendation=recommendation,
    )


async def detect_broad_media_root(path: str, media_type: MediaType, config: ScanConfig) -> BroadRootResult:
    return await asyncio.to_thread(_detect_broad_root, path, extensions_for(media_type), config)


async def validate_scan_path(path: str, media_type: MediaType, config: Optional[ScanConfig] = None) -> None:
    """
    Gate a scan root.

    Raises ValidationError (with a recommendation where one applies) or
    PathNotFoundError. Returns None when the path is safe to walk.
    """
    config = config or ScanConfig()

    if not path or not path.strip():
        raise ValidationError("A scan path is required")

    if is_dangerous_root_path(path):
        raise ValidationError(
            f"Cannot scan an entire drive or system directory: {path}",
            recommendation="Choose the specific folder that holds your media, e.g. /media/movies",
        )

    exists, is_dir = await asyncio.to_thread(lambda: (os.path.exists(path), os.path.isdir(path)))
    if not exists:
        raise PathNotFoundError(f"Path does not exist: {path}")
    if not is_dir:
        raise PathNotFoundError(f"Path is not a directory: {path}")

    # Several show folders under one root is the normal TV layout
    if MediaType(media_type) == MediaType.TV_SHOW:
        return

    result = await detect_broad_media_root(path, media_type, config)
    if result.is_broad_media_root:
        logger.warning(
            "Rejected broad media root",
            path=path,
            media_type=MediaType(media_type).value,
            collections=result.detected_collections,
        )
        raise ValidationError(
            f"Path looks like a root holding several media collections: {path}",
            recommendation=result.recommendation,
            detected_collections=result.detected_collections,
        )
