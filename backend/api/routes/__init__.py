"""API Routes package."""

from . import (
    scan,
    settings,
    health,
    websocket_routes,
)

__all__ = [
    "scan",
    "settings",
    "health",
    "websocket_routes",
]
