"""Tests for embedded provider ID tags."""

from backend.core.scanner.external_ids import (
    ParsedExternalId, collect_external_ids, format_external_id, has_external_ids,
    is_valid_external_id_format, parse_external_id_by_source, parse_external_ids,
    parse_first_external_id, remove_external_ids,
)
from backend.db.models import ExternalIdSource


class TestParseExternalIds:
    def test_order_of_appearance(self):
        ids = parse_external_ids("Show {tvdb-81189} {imdb-tt0903747}")
        assert ids == [
            ParsedExternalId(ExternalIdSource.TVDB, "81189"),
            ParsedExternalId(ExternalIdSource.IMDB, "tt0903747"),
        ]

    def test_aliases(self):
        assert parse_first_external_id("{mal-5114}").source == ExternalIdSource.MYANIMELIST
        assert parse_first_external_id("{mb-abc123}").source == ExternalIdSource.MUSICBRAINZ
        assert parse_first_external_id("{cv-4050}").source == ExternalIdSource.COMICVINE

    def test_case_insensitive_source(self):
        assert parse_external_id_by_source("{TMDB-27205}", ExternalIdSource.TMDB) == "27205"

    def test_unknown_source_ignored(self):
        assert parse_external_ids("Movie {foo-123}") == []
        assert not has_external_ids("Movie {foo-123}")

    def test_empty_input(self):
        assert parse_external_ids("") == []
        assert parse_first_external_id("plain") is None


class TestRemoveExternalIds:
    def test_strips_known_tags_and_spaces(self):
        assert remove_external_ids("Inception {tmdb-27205} (2010)") == "Inception (2010)"

    def test_keeps_unknown_tags(self):
        assert remove_external_ids("Movie {foo-1}") == "Movie {foo-1}"

    def test_idempotent(self):
        once = remove_external_ids("A {tmdb-1}  B {imdb-tt2}")
        assert remove_external_ids(once) == once

    def test_tag_survives_removal_from_other_text(self):
        s = "Inception (2010) {tmdb-27205}"
        assert parse_external_ids(s) == [ParsedExternalId(ExternalIdSource.TMDB, "27205")]
        assert parse_external_ids(remove_external_ids(s)) == []


class TestHelpers:
    def test_format_round_trip(self):
        tag = format_external_id(ExternalIdSource.TMDB, "27205")
        assert tag == "{tmdb-27205}"
        assert is_valid_external_id_format(tag)
        assert parse_first_external_id(tag) == ParsedExternalId(ExternalIdSource.TMDB, "27205")

    def test_invalid_formats(self):
        assert not is_valid_external_id_format("tmdb-27205")
        assert not is_valid_external_id_format("{nope-1}")
        assert not is_valid_external_id_format("")

    def test_collect_first_per_source_wins(self):
        ids = collect_external_ids("Show {tmdb-1}/S01", "Show {tmdb-2} {imdb-tt3}/S01E01.mkv")
        assert ids == [
            ParsedExternalId(ExternalIdSource.TMDB, "1"),
            ParsedExternalId(ExternalIdSource.IMDB, "tt3"),
        ]
