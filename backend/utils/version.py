"""
Version lookup for Dester.

The version is read from the VERSION file at the project root so the
health endpoint, the OpenAPI schema and the startup log agree.

Usage:
    from backend.utils.version import VERSION
"""

from pathlib import Path

_VERSION_FILE = Path(__file__).parent.parent.parent / "VERSION"

_FALLBACK_VERSION = "0.4.0"


def _read_version() -> str:
    """Read version from VERSION file, with fallback."""
    try:
        if _VERSION_FILE.exists():
            return _VERSION_FILE.read_text().strip() or _FALLBACK_VERSION
    except OSError:
        pass
    return _FALLBACK_VERSION


VERSION = _read_version()
