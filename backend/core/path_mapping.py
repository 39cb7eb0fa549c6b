"""Translate host paths typed in the UI into paths visible inside the container."""

import os
from typing import Iterable, Optional

import structlog

from backend.utils.config import PathMapping, get_config

logger = structlog.get_logger(__name__)


def _normalize(path: str) -> str:
    return os.path.normpath(path.replace("\\", "/")) if path else path


def map_host_path(path: str, mappings: Optional[Iterable[PathMapping]] = None) -> str:
    """
    Rewrite ``path`` using the longest matching host prefix.

    Paths outside every mapping are returned normalized but otherwise
    unchanged.
    """
    if not path:
        return path
    if mappings is None:
        mappings = get_config().path_mappings

    normalized = _normalize(path)
    best: Optional[PathMapping] = None
    for mapping in mappings:
        host = _normalize(mapping.host_path)
        if not host:
            continue
        if normalized == host or normalized.startswith(host.rstrip("/") + "/"):
            if best is None or len(host) > len(_normalize(best.host_path)):
                best = mapping

    if best is None:
        return normalized

    host = _normalize(best.host_path)
    suffix = normalized[len(host):].lstrip("/")
    mapped = os.path.join(_normalize(best.container_path), suffix) if suffix else _normalize(best.container_path)
    logger.debug("Mapped host path", host_path=path, container_path=mapped)
    return mapped
