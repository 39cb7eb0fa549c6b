"""Metadata provider interface and the normalized shapes providers map into."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Tuple

from pydantic import BaseModel

from backend.db.models import ExternalIdSource, MediaType


class ProviderError(Exception):
    """A provider call failed after retries."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code

    @property
    def is_transient(self) -> bool:
        return self.status_code is None or self.status_code == 429 or self.status_code >= 500


class PersonMetadata(BaseModel):
    name: str
    role: str
    character: Optional[str] = None
    profile_url: Optional[str] = None


class MovieDetails(BaseModel):
    duration: Optional[int] = None
    director: Optional[str] = None
    trailer_url: Optional[str] = None


class TVShowDetails(BaseModel):
    creator: Optional[str] = None
    network: Optional[str] = None
    number_of_seasons: Optional[int] = None
    number_of_episodes: Optional[int] = None


class ExternalIdRef(BaseModel):
    source: ExternalIdSource
    id: str


class MediaMetadata(BaseModel):
    """Provider-neutral metadata for one media item."""
    title: str
    original_title: Optional[str] = None
    description: Optional[str] = None
    release_date: Optional[datetime] = None
    rating: Optional[float] = None
    poster_url: Optional[str] = None
    backdrop_url: Optional[str] = None
    genres: List[str] = []

    movie: Optional[MovieDetails] = None
    tv_show: Optional[TVShowDetails] = None

    cast: List[PersonMetadata] = []
    crew: List[PersonMetadata] = []

    external_ids: List[ExternalIdRef] = []


class EpisodeMetadata(BaseModel):
    season_number: int
    episode_number: int
    title: Optional[str] = None
    overview: Optional[str] = None
    air_date: Optional[datetime] = None
    duration: Optional[int] = None
    still_url: Optional[str] = None


class SeasonMetadata(BaseModel):
    number: int
    name: Optional[str] = None
    overview: Optional[str] = None
    air_date: Optional[datetime] = None
    episode_count: Optional[int] = None
    poster_url: Optional[str] = None
    episodes: List[EpisodeMetadata] = []

    def episode(self, number: int) -> Optional[EpisodeMetadata]:
        for ep in self.episodes:
            if ep.episode_number == number:
                return ep
        return None


class SearchResult(BaseModel):
    external_id: str
    title: str
    original_title: Optional[str] = None
    release_date: Optional[datetime] = None
    overview: Optional[str] = None
    poster_url: Optional[str] = None
    media_type: MediaType


def parse_date(value: Optional[str]) -> Optional[datetime]:
    """Provider dates arrive as ``YYYY-MM-DD``; blanks and junk become None."""
    if not value:
        return None
    try:
        return datetime.strptime(value[:10], "%Y-%m-%d")
    except ValueError:
        return None


class MetadataProvider(ABC):
    """
    One remote metadata source.

    Providers differ only in wire format and field mapping; the pipeline
    talks to all of them through search/get_metadata.
    """

    name: str = ""
    source: ExternalIdSource
    supported_media_types: Tuple[MediaType, ...] = ()

    def supports(self, media_type: MediaType) -> bool:
        return MediaType(media_type) in self.supported_media_types

    def allows_title_search(self) -> bool:
        """Whether untagged files may be matched against this provider by title."""
        return True

    @abstractmethod
    async def is_available(self) -> bool:
        """Whether enrichment should be attempted (e.g. an API key is set)."""

    @abstractmethod
    async def search(
        self,
        query: str,
        media_type: MediaType,
        year: Optional[int] = None,
        language: Optional[str] = None,
    ) -> List[SearchResult]:
        ...

    @abstractmethod
    async def get_metadata(
        self,
        external_id: str,
        media_type: MediaType,
        language: Optional[str] = None,
    ) -> Optional[MediaMetadata]:
        ...

    async def get_season_metadata(
        self,
        show_external_id: str,
        season_number: int,
        language: Optional[str] = None,
    ) -> Optional[SeasonMetadata]:
        return None

    async def close(self) -> None:
        pass
