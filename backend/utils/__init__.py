"""Dester utilities module."""

from backend.utils.config import (
    get_settings,
    get_config,
    load_config,
    save_config,
    update_config,
    AppConfig,
    Settings,
)

__all__ = [
    "get_settings",
    "get_config",
    "load_config",
    "save_config",
    "update_config",
    "AppConfig",
    "Settings",
]
