"""
Directory walker.

Enumerates media files under a scan root, either in one pass or one
top-level folder at a time for batched scans. Filesystem calls run in a
worker thread so a slow network mount never blocks the event loop.
"""

import asyncio
import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import PurePosixPath
from typing import FrozenSet, List, Optional, Sequence

import structlog

from backend.db.models import MediaType
from backend.utils.config import ScanConfig
from backend.utils.constants import SCAN
from backend.utils.retry import with_timeout_and_retry

logger = structlog.get_logger(__name__)

# Pseudo folder standing for loose files directly under the scan root
ROOT_FOLDER = "."

_EXTENSIONS = {
    MediaType.MOVIE: frozenset(SCAN.VIDEO_EXTENSIONS),
    MediaType.TV_SHOW: frozenset(SCAN.VIDEO_EXTENSIONS),
    MediaType.MUSIC: frozenset(SCAN.AUDIO_EXTENSIONS),
    MediaType.COMIC: frozenset(SCAN.COMIC_EXTENSIONS),
}

_ALLOWED_DOT_DIRS = {".media", ".movies", ".tv"}

_SKIP_FILE_PATTERNS = (
    re.compile(r"^~\$"),
    re.compile(r"^Thumbs\.db$", re.IGNORECASE),
    re.compile(r"^desktop\.ini$", re.IGNORECASE),
    re.compile(r"^sample\.", re.IGNORECASE),
    re.compile(r"-sample\.", re.IGNORECASE),
)


class WalkMode(str, Enum):
    FULL = "full"
    BATCHED = "batched"


@dataclass(frozen=True)
class ScannedFile:
    path: str
    name: str
    size: int
    extension: str
    relative_path: str
    modified_at: Optional[datetime] = None

    @property
    def top_folder(self) -> str:
        parts = PurePosixPath(self.relative_path).parts
        return parts[0] if len(parts) > 1 else ROOT_FOLDER


def extensions_for(media_type: MediaType) -> FrozenSet[str]:
    return _EXTENSIONS[MediaType(media_type)]


def should_skip_entry(name: str, is_directory: bool) -> bool:
    """Hidden entries, system folders, extras and sample files are never scanned."""
    if name.startswith("."):
        if not is_directory or name.lower() not in _ALLOWED_DOT_DIRS:
            return True

    if is_directory:
        return name in SCAN.SKIP_DIRECTORIES or "@eadir" in name.lower()

    return any(pattern.search(name) for pattern in _SKIP_FILE_PATTERNS)


def _to_scanned_file(entry: os.DirEntry, root: str) -> ScannedFile:
    stat = entry.stat()
    relative = os.path.relpath(entry.path, root).replace(os.sep, "/")
    return ScannedFile(
        path=entry.path,
        name=entry.name,
        size=stat.st_size,
        extension=os.path.splitext(entry.name)[1].lower(),
        relative_path=relative,
        modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).replace(tzinfo=None),
    )


def _walk_sync(
    directory: str,
    root: str,
    extensions: FrozenSet[str],
    recursive: bool = True,
    strict: bool = True,
) -> List[ScannedFile]:
    """
    Depth-first enumeration.

    With ``strict`` an unreadable ``directory`` raises; unreadable
    subdirectories below it are always logged and skipped.
    """
    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as e:
        if strict:
            raise
        logger.warning("Skipping unreadable directory", path=directory, error=str(e))
        return []

    files: List[ScannedFile] = []
    for entry in entries:
        try:
            is_dir = entry.is_dir()
        except OSError as e:
            logger.warning("Could not stat entry", path=entry.path, error=str(e))
            continue

        if should_skip_entry(entry.name, is_dir):
            continue

        if is_dir:
            if recursive:
                files.extend(_walk_sync(entry.path, root, extensions, recursive=True, strict=False))
            continue

        if os.path.splitext(entry.name)[1].lower() not in extensions:
            continue

        try:
            files.append(_to_scanned_file(entry, root))
        except OSError as e:
            logger.warning("Could not stat file", path=entry.path, error=str(e))

    return files


def _sorted(files: List[ScannedFile]) -> List[ScannedFile]:
    return sorted(files, key=lambda f: f.relative_path)


async def walk(root: str, media_type: MediaType, config: Optional[ScanConfig] = None) -> List[ScannedFile]:
    """Full mode: every matching file under ``root``, sorted by relative path."""
    config = config or ScanConfig()
    extensions = extensions_for(media_type)

    files = await with_timeout_and_retry(
        lambda: asyncio.to_thread(_walk_sync, root, root, extensions),
        operation_name=f"walk {root}",
        timeout=config.discovery_timeout_seconds,
        max_retries=config.folder_retries,
    )
    logger.info("Walk complete", root=root, files=len(files))
    return _sorted(files)


async def discover_folders(root: str, config: Optional[ScanConfig] = None) -> List[str]:
    """
    Top-level units of work for a batched scan, sorted by name.

    Loose files directly under ``root`` are represented by ``ROOT_FOLDER``
    and come first.
    """
    config = config or ScanConfig()

    def _list() -> List[str]:
        folders = []
        has_loose_files = False
        with os.scandir(root) as it:
            for entry in it:
                try:
                    is_dir = entry.is_dir()
                except OSError:
                    continue
                if should_skip_entry(entry.name, is_dir):
                    continue
                if is_dir:
                    folders.append(entry.name)
                else:
                    has_loose_files = True
        folders.sort()
        return ([ROOT_FOLDER] if has_loose_files else []) + folders

    folders = await with_timeout_and_retry(
        lambda: asyncio.to_thread(_list),
        operation_name=f"discover folders in {root}",
        timeout=config.discovery_timeout_seconds,
        max_retries=config.folder_retries,
    )
    logger.info("Discovered folders", root=root, folders=len(folders))
    return folders


async def walk_folder(
    root: str,
    folder: str,
    media_type: MediaType,
    config: Optional[ScanConfig] = None,
) -> List[ScannedFile]:
    """Files of one top-level folder, relative paths still taken from ``root``."""
    config = config or ScanConfig()
    extensions = extensions_for(media_type)

    if folder == ROOT_FOLDER:
        operation = lambda: asyncio.to_thread(_walk_sync, root, root, extensions, False)
    else:
        directory = os.path.join(root, folder)
        operation = lambda: asyncio.to_thread(_walk_sync, directory, root, extensions)

    files = await with_timeout_and_retry(
        operation,
        operation_name=f"walk folder {folder}",
        timeout=config.folder_timeout_seconds,
        max_retries=config.folder_retries,
    )
    return _sorted(files)


def batch_folders(folders: Sequence[str], batch_size: int) -> List[List[str]]:
    size = max(1, batch_size)
    return [list(folders[i:i + size]) for i in range(0, len(folders), size)]


def default_batch_size(media_type: MediaType, config: Optional[ScanConfig] = None) -> int:
    config = config or ScanConfig()
    if MediaType(media_type) == MediaType.TV_SHOW:
        return config.tv_batch_size
    return config.movie_batch_size
