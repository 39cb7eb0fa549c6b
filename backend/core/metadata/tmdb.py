"""The Movie Database (TMDB) metadata provider."""

from typing import Any, Dict, List, Optional

import httpx
import structlog

from backend.core.metadata.base import (
    EpisodeMetadata, ExternalIdRef, MediaMetadata, MetadataProvider, MovieDetails,
    PersonMetadata, ProviderError, SearchResult, SeasonMetadata, TVShowDetails, parse_date,
)
from backend.core.metadata.rate_limiter import TokenBucket
from backend.core.scanner.errors import ProviderNotConfiguredError
from backend.db.models import ExternalIdSource, MediaType
from backend.utils.config import TMDBConfig, get_config
from backend.utils.constants import TIMEOUTS
from backend.utils.retry import with_retry

logger = structlog.get_logger(__name__)

TMDB_BASE_URL = "https://api.themoviedb.org/3"
TMDB_IMAGE_BASE_URL = "https://image.tmdb.org/t/p/original"

CREW_JOBS = ("Director", "Producer", "Screenplay", "Writer", "Original Music Composer", "Director of Photography")
MAX_CAST = 20


class TMDBProvider(MetadataProvider):
    """Movies and TV shows from TMDB."""

    name = "tmdb"
    source = ExternalIdSource.TMDB
    supported_media_types = (MediaType.MOVIE, MediaType.TV_SHOW)

    def __init__(self, base_url: str = TMDB_BASE_URL):
        self.base_url = base_url.rstrip("/")
        self._client: Optional[httpx.AsyncClient] = None
        self._limiter: Optional[TokenBucket] = None

    def _config(self) -> TMDBConfig:
        # Read on every call so a key saved in settings applies without restart
        return get_config().metadata.tmdb

    def _get_limiter(self, config: TMDBConfig) -> TokenBucket:
        if self._limiter is None or self._limiter.rate != config.requests_per_second:
            self._limiter = TokenBucket(config.requests_per_second)
        return self._limiter

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client with connection pooling."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=TIMEOUTS.HTTP_EXTENDED,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def is_available(self) -> bool:
        return self._config().is_configured

    async def _request(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """GET an endpoint; None on 404, ProviderError once retries run out."""
        config = self._config()
        if not config.is_configured:
            raise ProviderNotConfiguredError("TMDB API key is not configured")

        query = {"api_key": config.api_key, "language": config.language}
        query.update(params or {})
        url = f"{self.base_url}{endpoint}"
        limiter = self._get_limiter(config)

        async def _once() -> Optional[Dict[str, Any]]:
            await limiter.acquire()
            client = await self._get_client()
            try:
                response = await client.get(url, params=query)
            except httpx.TransportError as e:
                raise ProviderError(self.name, f"{endpoint}: {e}") from e

            if response.status_code == 404:
                return None
            if response.status_code >= 400:
                raise ProviderError(
                    self.name,
                    f"{endpoint} returned {response.status_code}",
                    status_code=response.status_code,
                )
            return response.json()

        return await with_retry(
            _once,
            operation_name=f"tmdb {endpoint}",
            max_retries=config.max_retries,
            retry_on=(ProviderError,),
            should_retry=lambda e: e.is_transient,
        )

    @staticmethod
    def image_url(path: Optional[str]) -> Optional[str]:
        return f"{TMDB_IMAGE_BASE_URL}{path}" if path else None

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

        is_movie = media_type == MediaType.MOVIE
        params: Dict[str, Any] = {"query": query, "include_adult": "false"}
        if language:
            params["language"] = language
        if year:
            params["year" if is_movie else "first_air_date_year"] = year

        data = await self._request("/search/movie" if is_movie else "/search/tv", params)
        results = []
        for item in (data or {}).get("results", []):
            results.append(SearchResult(
                external_id=str(item["id"]),
                title=item.get("title") or item.get("name") or "",
                original_title=item.get("original_title") or item.get("original_name"),
                release_date=parse_date(item.get("release_date") or item.get("first_air_date")),
                overview=item.get("overview") or None,
                poster_url=self.image_url(item.get("poster_path")),
                media_type=media_type,
            ))
        return results

    async def get_metadata(
        self,
        external_id: str,
        media_type: MediaType,
        language: Optional[str] = None,
    ) -> Optional[MediaMetadata]:
        media_type = MediaType(media_type)
        if not self.supports(media_type):
            return None

        params = {"language": language} if language else {}
        if media_type == MediaType.MOVIE:
            params["append_to_response"] = "credits,videos"
            data = await self._request(f"/movie/{external_id}", params)
            return self._map_movie(data) if data else None

        params["append_to_response"] = "credits,external_ids"
        data = await self._request(f"/tv/{external_id}", params)
        return self._map_tv_show(data) if data else None

    async def get_season_metadata(
        self,
        show_external_id: str,
        season_number: int,
        language: Optional[str] = None,
    ) -> Optional[SeasonMetadata]:
        params = {"language": language} if language else {}
        data = await self._request(f"/tv/{show_external_id}/season/{season_number}", params)
        if not data:
            return None

        episodes = [
            EpisodeMetadata(
                season_number=ep.get("season_number", season_number),
                episode_number=ep["episode_number"],
                title=ep.get("name"),
                overview=ep.get("overview") or None,
                air_date=parse_date(ep.get("air_date")),
                duration=ep.get("runtime"),
                still_url=self.image_url(ep.get("still_path")),
            )
            for ep in data.get("episodes", [])
            if ep.get("episode_number") is not None
        ]
        return SeasonMetadata(
            number=data.get("season_number", season_number),
            name=data.get("name"),
            overview=data.get("overview") or None,
            air_date=parse_date(data.get("air_date")),
            episode_count=len(episodes) or data.get("episode_count"),
            poster_url=self.image_url(data.get("poster_path")),
            episodes=episodes,
        )

    # =========================================================================
    # Mapping
    # =========================================================================

    def _people(self, credits: Optional[Dict[str, Any]]):
        credits = credits or {}
        cast_entries = sorted(credits.get("cast") or [], key=lambda c: c.get("order", 999))
        cast = [
            PersonMetadata(
                name=c["name"],
                role="actor",
                character=c.get("character"),
                profile_url=self.image_url(c.get("profile_path")),
            )
            for c in cast_entries[:MAX_CAST]
            if c.get("name")
        ]
        crew = [
            PersonMetadata(
                name=c["name"],
                role=c["job"].lower(),
                profile_url=self.image_url(c.get("profile_path")),
            )
            for c in credits.get("crew") or []
            if c.get("name") and c.get("job") in CREW_JOBS
        ]
        return cast, crew

    def _map_movie(self, data: Dict[str, Any]) -> MediaMetadata:
        cast, crew = self._people(data.get("credits"))
        director = next(
            (c.get("name") for c in (data.get("credits") or {}).get("crew") or [] if c.get("job") == "Director"),
            None,
        )
        trailer = next(
            (
                v for v in (data.get("videos") or {}).get("results") or []
                if v.get("type") == "Trailer" and v.get("site") == "YouTube" and v.get("official", True)
            ),
            None,
        )

        external_ids = [ExternalIdRef(source=ExternalIdSource.TMDB, id=str(data["id"]))]
        if data.get("imdb_id"):
            external_ids.append(ExternalIdRef(source=ExternalIdSource.IMDB, id=data["imdb_id"]))

        return MediaMetadata(
            title=data.get("title") or data.get("original_title") or "",
            original_title=data.get("original_title"),
            description=data.get("overview") or None,
            release_date=parse_date(data.get("release_date")),
            rating=data.get("vote_average"),
            poster_url=self.image_url(data.get("poster_path")),
            backdrop_url=self.image_url(data.get("backdrop_path")),
            genres=[g["name"] for g in data.get("genres") or [] if g.get("name")],
            movie=MovieDetails(
                duration=data.get("runtime"),
                director=director,
                trailer_url=f"https://www.youtube.com/watch?v={trailer['key']}" if trailer else None,
            ),
            cast=cast,
            crew=crew,
            external_ids=external_ids,
        )

    def _map_tv_show(self, data: Dict[str, Any]) -> MediaMetadata:
        cast, crew = self._people(data.get("credits"))
        ids = data.get("external_ids") or {}

        external_ids = [ExternalIdRef(source=ExternalIdSource.TMDB, id=str(data["id"]))]
        if ids.get("imdb_id"):
            external_ids.append(ExternalIdRef(source=ExternalIdSource.IMDB, id=ids["imdb_id"]))
        if ids.get("tvdb_id"):
            external_ids.append(ExternalIdRef(source=ExternalIdSource.TVDB, id=str(ids["tvdb_id"])))

        creators = data.get("created_by") or []
        networks = data.get("networks") or []
        return MediaMetadata(
            title=data.get("name") or data.get("original_name") or "",
            original_title=data.get("original_name"),
            description=data.get("overview") or None,
            release_date=parse_date(data.get("first_air_date")),
            rating=data.get("vote_average"),
            poster_url=self.image_url(data.get("poster_path")),
            backdrop_url=self.image_url(data.get("backdrop_path")),
            genres=[g["name"] for g in data.get("genres") or [] if g.get("name")],
            tv_show=TVShowDetails(
                creator=creators[0].get("name") if creators else None,
                network=networks[0].get("name") if networks else None,
                number_of_seasons=data.get("number_of_seasons"),
                number_of_episodes=data.get("number_of_episodes"),
            ),
            cast=cast,
            crew=crew,
            external_ids=external_ids,
        )
