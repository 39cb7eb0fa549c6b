"""
Dester Configuration Management
Handles all application settings and environment variables
"""

import json
import threading
from pathlib import Path
from typing import Optional, List, Dict, Any

from pydantic import BaseModel
from pydantic_settings import BaseSettings


class TMDBConfig(BaseModel):
    """The Movie Database configuration."""
    api_key: str = ""
    language: str = "en-US"
    requests_per_second: float = 4.0
    max_retries: int = 3

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)


class AniListConfig(BaseModel):
    """AniList configuration (no API key required)."""
    enabled: bool = True
    # Anime-only catalogue: resolve {anilist-N} tags, but only title-search when opted in
    title_search: bool = False
    requests_per_second: float = 1.0
    max_retries: int = 3

    @property
    def is_configured(self) -> bool:
        return self.enabled


class MetadataConfig(BaseModel):
    """Metadata provider configuration."""
    tmdb: TMDBConfig = TMDBConfig()
    anilist: AniListConfig = AniListConfig()

    # Search providers by title when a file carries no provider tag
    search_by_title: bool = True


class PathMapping(BaseModel):
    """Host path prefix to container path prefix."""
    host_path: str
    container_path: str


class ScanConfig(BaseModel):
    """Scan configuration settings."""
    tv_batch_size: int = 5
    movie_batch_size: int = 25

    # Slow mount protection
    folder_timeout_seconds: float = 300.0
    folder_retries: int = 2
    discovery_timeout_seconds: float = 600.0

    # Broad media root detection
    broad_root_max_depth: int = 4
    broad_root_min_collections: int = 3
    broad_root_sample_size: int = 50

    # Stale job cleanup
    stale_job_hours: float = 6.0
    failed_job_retention_days: int = 7


class AppConfig(BaseModel):
    """Complete application configuration (stored in JSON)."""
    metadata: MetadataConfig = MetadataConfig()
    scan: ScanConfig = ScanConfig()
    path_mappings: List[PathMapping] = []


class Settings(BaseSettings):
    """Main application settings from environment."""
    app_name: str = "Dester"
    app_env: str = "production"
    debug: bool = False
    dev_mode: bool = False
    log_level: str = "INFO"

    data_dir: Path = Path("/app/data")

    # Seeds config.json on first boot only; the persisted value wins afterwards
    tmdb_api_key: str = ""

    host_media_path: str = ""
    container_media_path: str = "/media"

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def log_dir(self) -> Path:
        return self.data_dir / "logs"


# Thread-safe singleton
_settings_instance: Optional[Settings] = None
_settings_lock = threading.Lock()

_config_instance: Optional[AppConfig] = None
_config_lock = threading.RLock()


def get_settings() -> Settings:
    """Get cached application settings from environment (thread-safe)."""
    global _settings_instance

    if _settings_instance is None:
        with _settings_lock:
            if _settings_instance is None:
                _settings_instance = Settings()

    return _settings_instance


def get_config_path() -> Path:
    """Get path to config file."""
    settings = get_settings()
    return settings.data_dir / "config.json"


def load_config() -> AppConfig:
    """Load application configuration from file."""
    config_path = get_config_path()

    if config_path.exists():
        try:
            with open(config_path, "r") as f:
                data = json.load(f)
            return AppConfig(**data)
        except (OSError, ValueError):
            pass

    # Return default config with environment values applied
    settings = get_settings()
    config = AppConfig()

    config.metadata.tmdb.api_key = settings.tmdb_api_key
    if settings.host_media_path:
        config.path_mappings = [
            PathMapping(
                host_path=settings.host_media_path,
                container_path=settings.container_media_path,
            )
        ]

    return config


def save_config(config: AppConfig) -> None:
    """Save application configuration to file."""
    config_path = get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w") as f:
        json.dump(config.model_dump(), f, indent=2, default=str)


def get_config() -> AppConfig:
    """Get current application configuration (thread-safe)."""
    global _config_instance

    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = load_config()

    return _config_instance


def update_config(updates: Dict[str, Any]) -> AppConfig:
    """Update configuration with new values (thread-safe)."""
    global _config_instance

    with _config_lock:
        config = get_config()

        config_dict = config.model_dump()
        _deep_merge(config_dict, updates)

        _config_instance = AppConfig(**config_dict)
        save_config(_config_instance)

    return _config_instance


def reload_config() -> AppConfig:
    """Force reload configuration from disk."""
    global _config_instance

    with _config_lock:
        _config_instance = load_config()

    return _config_instance


def _deep_merge(base: dict, updates: dict) -> None:
    """Deep merge updates into base dict."""
    for key, value in updates.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
