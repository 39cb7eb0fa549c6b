"""AniList GraphQL metadata provider for anime."""

from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
import structlog

from backend.core.metadata.base import (
    ExternalIdRef, MediaMetadata, MetadataProvider, MovieDetails, ProviderError,
    SearchResult, TVShowDetails,
)
from backend.core.metadata.rate_limiter import TokenBucket
from backend.db.models import ExternalIdSource, MediaType
from backend.utils.config import AniListConfig, get_config
from backend.utils.constants import TIMEOUTS
from backend.utils.retry import with_retry

logger = structlog.get_logger(__name__)

ANILIST_URL = "https://graphql.anilist.co"

_MEDIA_FIELDS = """
    id
    idMal
    format
    title { romaji english native }
    description(asHtml: false)
    startDate { year month day }
    averageScore
    genres
    episodes
    duration
    coverImage { extraLarge large }
    bannerImage
    studios(isMain: true) { nodes { name } }
    trailer { id site }
"""

SEARCH_QUERY = """
query ($search: String, $format: [MediaFormat], $year: Int) {
  Page(perPage: 10) {
    media(search: $search, type: ANIME, format_in: $format, seasonYear: $year) {
      %s
    }
  }
}
""" % _MEDIA_FIELDS

DETAILS_QUERY = """
query ($id: Int) {
  Media(id: $id, type: ANIME) {
    %s
  }
}
""" % _MEDIA_FIELDS

_FORMATS = {
    MediaType.TV_SHOW: ["TV", "TV_SHORT", "ONA", "OVA"],
    MediaType.MOVIE: ["MOVIE"],
}


def _fuzzy_date(value: Optional[Dict[str, Any]]) -> Optional[datetime]:
    if not value or not value.get("year"):
        return None
    return datetime(value["year"], value.get("month") or 1, value.get("day") or 1)


def _title(media: Dict[str, Any]) -> str:
    titles = media.get("title") or {}
    return titles.get("english") or titles.get("romaji") or titles.get("native") or ""


class AniListProvider(MetadataProvider):
    """Anime series and films from AniList. No API key is required."""

    name = "anilist"
    source = ExternalIdSource.ANILIST
    supported_media_types = (MediaType.TV_SHOW, MediaType.MOVIE)

    def __init__(self, url: str = ANILIST_URL):
        self.url = url
        self._client: Optional[httpx.AsyncClient] = None
        self._limiter: Optional[TokenBucket] = None

    def _config(self) -> AniListConfig:
        return get_config().metadata.anilist

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=TIMEOUTS.HTTP_DEFAULT,
                headers={"Accept": "application/json", "Content-Type": "application/json"},
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def is_available(self) -> bool:
        return self._config().is_configured

    def allows_title_search(self) -> bool:
        return self._config().title_search

    async def _query(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        config = self._config()
        if self._limiter is None or self._limiter.rate != config.requests_per_second:
            self._limiter = TokenBucket(config.requests_per_second)
        limiter = self._limiter

        async def _once() -> Dict[str, Any]:
            await limiter.acquire()
            client = await self._get_client()
            try:
                response = await client.post(self.url, json={"query": query, "variables": variables})
            except httpx.TransportError as e:
                raise ProviderError(self.name, str(e)) from e

            if response.status_code >= 400:
                raise ProviderError(
                    self.name,
                    f"GraphQL request returned {response.status_code}",
                    status_code=response.status_code,
                )
            payload = response.json()
            if payload.get("errors") and not payload.get("data"):
                raise ProviderError(self.name, payload["errors"][0].get("message", "GraphQL error"), status_code=400)
            return payload.get("data") or {}

        return await with_retry(
            _once,
            operation_name="anilist graphql",
            max_retries=config.max_retries,
            retry_on=(ProviderError,),
            should_retry=lambda e: e.is_transient,
        )

    async def search(
        self,
        query: str,
        media_type: MediaType,
        year: Optional[int] = None,
        language: Optional[str] = None,
    ) -> List[SearchResult]:
        media_type = MediaType(media_type)
        if not self.supports(media_type):
            return []

        variables: Dict[str, Any] = {"search": query, "format": _FORMATS[media_type]}
        if year:
            variables["year"] = year
        data = await self._query(SEARCH_QUERY, variables)

        return [
            SearchResult(
                external_id=str(media["id"]),
                title=_title(media),
                original_title=(media.get("title") or {}).get("native"),
                release_date=_fuzzy_date(media.get("startDate")),
                overview=media.get("description"),
                poster_url=(media.get("coverImage") or {}).get("extraLarge"),
                media_type=media_type,
            )
            for media in ((data.get("Page") or {}).get("media") or [])
        ]

    async def get_metadata(
        self,
        external_id: str,
        media_type: MediaType,
        language: Optional[str] = None,
    ) -> Optional[MediaMetadata]:
        media_type = MediaType(media_type)
        if not self.supports(media_type):
            return None
        try:
            anilist_id = int(external_id)
        except ValueError:
            logger.warning("Ignoring non-numeric AniList id", external_id=external_id)
            return None

        data = await self._query(DETAILS_QUERY, {"id": anilist_id})
        media = data.get("Media")
        if not media:
            return None
        return self._map(media, media_type)

    def _map(self, media: Dict[str, Any], media_type: MediaType) -> MediaMetadata:
        studios = [n["name"] for n in ((media.get("studios") or {}).get("nodes") or []) if n.get("name")]
        score = media.get("averageScore")
        trailer = media.get("trailer") or {}

        external_ids = [ExternalIdRef(source=ExternalIdSource.ANILIST, id=str(media["id"]))]
        if media.get("idMal"):
            external_ids.append(ExternalIdRef(source=ExternalIdSource.MYANIMELIST, id=str(media["idMal"])))

        movie = tv_show = None
        if media_type == MediaType.MOVIE:
            movie = MovieDetails(
                duration=media.get("duration"),
                trailer_url=(
                    f"https://www.youtube.com/watch?v={trailer['id']}"
                    if trailer.get("site") == "youtube" and trailer.get("id") else None
                ),
            )
        else:
            tv_show = TVShowDetails(
                network=studios[0] if studios else None,
                number_of_episodes=media.get("episodes"),
            )

        cover = media.get("coverImage") or {}
        return MediaMetadata(
            title=_title(media),
            original_title=(media.get("title") or {}).get("native"),
            description=media.get("description"),
            release_date=_fuzzy_date(media.get("startDate")),
            rating=round(score / 10, 1) if score is not None else None,
            poster_url=cover.get("extraLarge") or cover.get("large"),
            backdrop_url=media.get("bannerImage"),
            genres=list(media.get("genres") or []),
            movie=movie,
            tv_show=tv_show,
            external_ids=external_ids,
        )
