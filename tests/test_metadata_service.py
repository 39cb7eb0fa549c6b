"""Tests for provider selection and best-effort enrichment."""

import httpx

from backend.core.metadata.anilist import ANILIST_URL, AniListProvider
from backend.core.metadata.base import ExternalIdRef, MediaMetadata, ProviderError, SearchResult
from backend.core.metadata.service import MetadataService, titles_match
from backend.core.scanner.external_ids import ParsedExternalId
from backend.db.models import ExternalIdSource, MediaType
from backend.utils.config import update_config

from conftest import FakeProvider

INCEPTION = MediaMetadata(
    title="Inception",
    external_ids=[ExternalIdRef(source=ExternalIdSource.TMDB, id="27205")],
)


class TestFetch:
    async def test_embedded_id_wins_over_search(self):
        provider = FakeProvider({"27205": INCEPTION})
        service = MetadataService([provider])

        metadata = await service.fetch(
            MediaType.MOVIE,
            [ParsedExternalId(ExternalIdSource.TMDB, "27205")],
            title="Something Else",
        )

        assert metadata.title == "Inception"
        assert provider.calls == [("get_metadata", "27205")]

    async def test_ids_for_unregistered_sources_are_ignored(self):
        provider = FakeProvider({"27205": INCEPTION})
        service = MetadataService([provider])

        metadata = await service.fetch(
            MediaType.MOVIE,
            [ParsedExternalId(ExternalIdSource.IMDB, "tt1375666")],
            title="Inception",
            year=2010,
        )

        assert metadata.title == "Inception"
        assert provider.calls == [("search", "Inception", 2010), ("get_metadata", "27205")]

    async def test_title_search_can_be_disabled(self):
        update_config({"metadata": {"search_by_title": False}})
        provider = FakeProvider({"27205": INCEPTION})

        assert await MetadataService([provider]).fetch(MediaType.MOVIE, [], title="Inception") is None
        assert provider.calls == []

    async def test_unsupported_media_type_skipped(self):
        provider = FakeProvider({"27205": INCEPTION})
        service = MetadataService([provider])

        assert not await service.is_available(MediaType.MUSIC)
        assert await service.fetch(MediaType.MUSIC, [], title="Inception") is None

    async def test_result_with_unrelated_title_is_rejected(self):
        class LooseSearch(FakeProvider):
            async def search(self, query, media_type, year=None, language=None):
                self.calls.append(("search", query, year))
                return [SearchResult(external_id="4382", title="Paprika", media_type=media_type)]

        provider = LooseSearch({"4382": MediaMetadata(title="Paprika")})

        assert await MetadataService([provider]).fetch(MediaType.MOVIE, [], title="Inception") is None
        assert provider.calls == [("search", "Inception", None)]

    async def test_first_matching_result_is_used(self):
        class RankedSearch(FakeProvider):
            async def search(self, query, media_type, year=None, language=None):
                return [
                    SearchResult(external_id="1", title="Paprika", media_type=media_type),
                    SearchResult(external_id="27205", title="Inception: The IMAX Experience", media_type=media_type),
                ]

        metadata = await MetadataService([RankedSearch({"27205": INCEPTION})]).fetch(
            MediaType.MOVIE, [], title="Inception"
        )

        assert metadata.title == "Inception"


class TestTitleMatching:
    def test_case_accents_and_punctuation_are_ignored(self):
        result = SearchResult(external_id="194", title="Amélie", media_type=MediaType.MOVIE)
        assert titles_match("amelie", result)
        assert titles_match("Spider-Man", SearchResult(external_id="557", title="Spider Man", media_type=MediaType.MOVIE))

    def test_original_title_counts(self):
        result = SearchResult(
            external_id="129", title="Spirited Away", original_title="Sen to Chihiro no Kamikakushi",
            media_type=MediaType.MOVIE,
        )
        assert titles_match("Sen to Chihiro no Kamikakushi", result)

    def test_unrelated_titles_do_not_match(self):
        result = SearchResult(external_id="4382", title="Paprika", original_title="パプリカ", media_type=MediaType.MOVIE)
        assert not titles_match("Inception", result)
        assert not titles_match("", result)


class TestAniListTitleSearch:
    async def test_tag_only_by_default(self, httpx_mock):
        update_config({"metadata": {"anilist": {"enabled": True}}})
        provider = AniListProvider()

        assert await MetadataService([provider]).fetch(MediaType.MOVIE, [], title="Inception") is None
        assert httpx_mock.get_requests() == []
        await provider.close()

    async def test_opted_in_search_still_rejects_unrelated_anime(self, httpx_mock):
        update_config({"metadata": {"anilist": {"enabled": True, "title_search": True}}})
        httpx_mock.add_response(
            url=ANILIST_URL,
            method="POST",
            json={"data": {"Page": {"media": [{
                "id": 4382,
                "title": {"romaji": "Paprika", "english": "Paprika", "native": "パプリカ"},
                "startDate": {"year": 2006, "month": 11, "day": 25},
            }]}}},
        )
        provider = AniListProvider()

        assert await MetadataService([provider]).fetch(MediaType.MOVIE, [], title="Inception") is None
        assert len(httpx_mock.get_requests()) == 1
        await provider.close()


class TestEnrich:
    async def test_success(self):
        outcome = await MetadataService([FakeProvider({"27205": INCEPTION})]).enrich(
            MediaType.MOVIE, [], title="Inception"
        )
        assert outcome.succeeded
        assert not outcome.failed

    async def test_no_match_counts_as_failed_attempt(self):
        outcome = await MetadataService([FakeProvider()]).enrich(MediaType.MOVIE, [], title="Unknown")
        assert outcome.attempted
        assert outcome.failed

    async def test_provider_error_is_swallowed(self):
        provider = FakeProvider(error=ProviderError("fake", "boom", status_code=500))
        outcome = await MetadataService([provider]).enrich(MediaType.MOVIE, [], title="Inception")
        assert outcome.failed
        assert "boom" in outcome.error

    async def test_transport_error_is_swallowed(self):
        provider = FakeProvider(error=httpx.ConnectError("refused"))
        outcome = await MetadataService([provider]).enrich(MediaType.MOVIE, [], title="Inception")
        assert outcome.failed

    async def test_no_providers_means_not_attempted(self):
        outcome = await MetadataService([]).enrich(MediaType.MOVIE, [], title="Inception")
        assert not outcome.attempted
        assert not outcome.failed


class TestRegistry:
    def test_default_registers_tmdb_and_anilist(self):
        service = MetadataService.default()
        assert service.get_provider(ExternalIdSource.TMDB).name == "tmdb"
        assert service.get_provider(ExternalIdSource.ANILIST).name == "anilist"

    async def test_anilist_follows_config(self):
        service = MetadataService.default()
        assert not await service.is_available(MediaType.TV_SHOW)
        update_config({"metadata": {"anilist": {"enabled": True}}})
        assert await service.is_available(MediaType.TV_SHOW)
        await service.close()
