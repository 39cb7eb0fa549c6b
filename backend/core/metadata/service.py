"""Provider registry and best-effort enrichment."""

import re
import unicodedata
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

import httpx
import structlog

from backend.core.metadata.anilist import AniListProvider
from backend.core.metadata.base import MediaMetadata, MetadataProvider, ProviderError, SearchResult, SeasonMetadata
from backend.core.metadata.tmdb import TMDBProvider
from backend.core.scanner.errors import ProviderNotConfiguredError
from backend.core.scanner.external_ids import ParsedExternalId
from backend.db.models import ExternalIdSource, MediaType
from backend.utils.config import get_config

logger = structlog.get_logger(__name__)


def normalize_title(value: Optional[str]) -> str:
    """Case, accents and punctuation folded away: ``Amélie!`` -> ``amelie``."""
    if not value:
        return ""
    folded = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "", folded.lower())


def titles_match(query: str, result: SearchResult) -> bool:
    """A result matches when one normalized title contains the other."""
    wanted = normalize_title(query)
    if not wanted:
        return False
    for candidate in (result.title, result.original_title):
        found = normalize_title(candidate)
        if found and (wanted in found or found in wanted):
            return True
    return False


def best_match(query: str, results: List[SearchResult]) -> Optional[SearchResult]:
    """First result, in provider ranking order, whose title matches ``query``."""
    return next((r for r in results if titles_match(query, r)), None)


@dataclass
class EnrichmentOutcome:
    metadata: Optional[MediaMetadata] = None
    attempted: bool = False
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.metadata is not None

    @property
    def failed(self) -> bool:
        return self.attempted and self.metadata is None


class MetadataService:
    """Looks up providers by external-id source; registration order is priority order."""

    def __init__(self, providers: Optional[Iterable[MetadataProvider]] = None):
        self._providers: Dict[ExternalIdSource, MetadataProvider] = {}
        for provider in providers or []:
            self.register(provider)

    @classmethod
    def default(cls) -> "MetadataService":
        return cls([TMDBProvider(), AniListProvider()])

    def register(self, provider: MetadataProvider) -> None:
        self._providers[provider.source] = provider

    def get_provider(self, source: ExternalIdSource) -> Optional[MetadataProvider]:
        return self._providers.get(source)

    @property
    def providers(self) -> List[MetadataProvider]:
        return list(self._providers.values())

    async def available_providers(self, media_type: Optional[MediaType] = None) -> List[MetadataProvider]:
        available = []
        for provider in self._providers.values():
            if media_type is not None and not provider.supports(media_type):
                continue
            if await provider.is_available():
                available.append(provider)
        return available

    async def is_available(self, media_type: Optional[MediaType] = None) -> bool:
        return bool(await self.available_providers(media_type))

    async def fetch(
        self,
        media_type: MediaType,
        external_ids: List[ParsedExternalId],
        title: Optional[str] = None,
        year: Optional[int] = None,
    ) -> Optional[MediaMetadata]:
        """
        Resolve metadata from embedded IDs first, then by title search.

        Provider errors propagate; see ``enrich`` for the best-effort form.
        """
        for parsed in external_ids:
            provider = self._providers.get(parsed.source)
            if provider is None or not provider.supports(media_type) or not await provider.is_available():
                continue
            metadata = await provider.get_metadata(parsed.id, media_type)
            if metadata is not None:
                return metadata

        if not title or not get_config().metadata.search_by_title:
            return None

        for provider in await self.available_providers(media_type):
            if not provider.allows_title_search():
                continue
            results = await provider.search(title, media_type, year=year)
            match = best_match(title, results)
            if match is not None:
                return await provider.get_metadata(match.external_id, media_type)
            if results:
                logger.info(
                    "Ignoring search results with unrelated titles",
                    provider=provider.name,
                    query=title,
                    first_result=results[0].title,
                )
        return None

    async def enrich(
        self,
        media_type: MediaType,
        external_ids: List[ParsedExternalId],
        title: Optional[str] = None,
        year: Optional[int] = None,
    ) -> EnrichmentOutcome:
        """Never raises for provider trouble; a failure falls back to the parsed title."""
        if not await self.is_available(media_type):
            return EnrichmentOutcome()

        try:
            metadata = await self.fetch(media_type, external_ids, title=title, year=year)
        except (ProviderError, ProviderNotConfiguredError, httpx.HTTPError, ValueError) as e:
            logger.warning(
                "Metadata fetch failed, using parsed title",
                title=title,
                media_type=MediaType(media_type).value,
                error=str(e),
            )
            return EnrichmentOutcome(attempted=True, error=str(e))

        return EnrichmentOutcome(metadata=metadata, attempted=True)

    async def get_season_metadata(self, show_tmdb_id: str, season_number: int) -> Optional[SeasonMetadata]:
        provider = self._providers.get(ExternalIdSource.TMDB)
        if provider is None or not await provider.is_available():
            return None
        try:
            return await provider.get_season_metadata(show_tmdb_id, season_number)
        except (ProviderError, ProviderNotConfiguredError, httpx.HTTPError, ValueError) as e:
            logger.warning(
                "Season metadata fetch failed",
                show_tmdb_id=show_tmdb_id,
                season=season_number,
                error=str(e),
            )
            return None

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()
