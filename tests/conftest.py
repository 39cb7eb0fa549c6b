"""Shared fixtures: isolated data dir, temp SQLite database, media trees."""

import os
import tempfile

# Settings are read lazily; point them at a throwaway data dir before any
# backend module is imported.
os.environ["DATA_DIR"] = tempfile.mkdtemp(prefix="dester-test-")
os.environ["TMDB_API_KEY"] = ""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from backend.core.metadata.base import MediaMetadata, MetadataProvider, SearchResult, SeasonMetadata
from backend.core.metadata.service import MetadataService
from backend.core.scanner.pipeline import ScanPipeline
from backend.core.scanner.progress import ProgressEmitter
from backend.db import database
from backend.db.models import Base, ExternalIdSource, MediaType
from backend.utils import config as config_module
from backend.utils.config import AniListConfig, AppConfig, MetadataConfig


@pytest.fixture(autouse=True)
def app_config():
    """Fresh in-memory config per test; AniList off so nothing hits the network."""
    config = AppConfig(metadata=MetadataConfig(anilist=AniListConfig(enabled=False)))
    config_module._config_instance = config
    yield config
    config_module._config_instance = None


@asynccontextmanager
async def temp_database(path: Path):
    engine = database.build_engine(f"sqlite+aiosqlite:///{path}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    database.configure(engine)
    try:
        yield engine
    finally:
        await engine.dispose()
        database._engine = None
        database._async_session_factory = None


@pytest.fixture
async def db_engine(tmp_path):
    async with temp_database(tmp_path / "test.db") as engine:
        yield engine


@pytest.fixture
def make_db(tmp_path):
    """Factory for additional databases within one test."""
    counter = {"n": 0}

    def _make():
        counter["n"] += 1
        return temp_database(tmp_path / f"extra-{counter['n']}.db")

    return _make


def write_files(root: Path, files: Dict[str, int]) -> Path:
    """Create ``{relative_path: size_in_bytes}`` under ``root``."""
    for relative, size in files.items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(b"\0" * size)
    return root


@pytest.fixture
def media_root(tmp_path):
    root = tmp_path / "media"
    root.mkdir()
    return root


class RecordingWebSocketManager:
    """Stands in for WebSocketManager and keeps every broadcast."""

    def __init__(self):
        self.messages: List[dict] = []

    async def broadcast(self, channel: str, message: dict):
        self.messages.append(message)

    def of_type(self, event_type: str) -> List[dict]:
        return [m for m in self.messages if m["type"] == event_type]


@pytest.fixture
def ws():
    return RecordingWebSocketManager()


class FakeProvider(MetadataProvider):
    """In-memory provider keyed by external id."""

    name = "fake"
    source = ExternalIdSource.TMDB
    supported_media_types = (MediaType.MOVIE, MediaType.TV_SHOW)

    def __init__(
        self,
        items: Optional[Dict[str, MediaMetadata]] = None,
        seasons: Optional[Dict[tuple, SeasonMetadata]] = None,
        error: Optional[Exception] = None,
    ):
        self.items = items or {}
        self.seasons = seasons or {}
        self.error = error
        self.calls: List[tuple] = []

    async def is_available(self) -> bool:
        return True

    async def search(self, query, media_type, year=None, language=None):
        self.calls.append(("search", query, year))
        if self.error:
            raise self.error
        return [
            SearchResult(external_id=key, title=meta.title, media_type=media_type)
            for key, meta in self.items.items()
            if meta.title.lower() == query.lower()
        ]

    async def get_metadata(self, external_id, media_type, language=None):
        self.calls.append(("get_metadata", external_id))
        if self.error:
            raise self.error
        return self.items.get(external_id)

    async def get_season_metadata(self, show_external_id, season_number, language=None):
        self.calls.append(("season", show_external_id, season_number))
        return self.seasons.get((show_external_id, season_number))


@pytest.fixture
def make_pipeline(ws):
    def _make(*providers: MetadataProvider) -> ScanPipeline:
        return ScanPipeline(MetadataService(providers), ProgressEmitter(ws))
    return _make


@pytest.fixture
def tree():
    """``tree(root, {relative_path: size})`` builds a media tree."""
    return write_files
