"""Metadata providers."""

from .anilist import AniListProvider
from .base import MediaMetadata, MetadataProvider, ProviderError, SearchResult, SeasonMetadata
from .rate_limiter import TokenBucket
from .service import EnrichmentOutcome, MetadataService
from .tmdb import TMDBProvider

__all__ = [
    "AniListProvider",
    "EnrichmentOutcome",
    "MediaMetadata",
    "MetadataProvider",
    "MetadataService",
    "ProviderError",
    "SearchResult",
    "SeasonMetadata",
    "TMDBProvider",
    "TokenBucket",
]
