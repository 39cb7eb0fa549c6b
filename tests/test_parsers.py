"""Tests for filename parsers."""

import pytest

from backend.core.scanner.parsers import (
    ComicInfo, MovieInfo, MusicInfo, TVShowInfo,
    fallback_title, parse_comic, parse_episode_numbers, parse_info, parse_movie,
    parse_music, parse_tv_show,
)
from backend.db.models import MediaType


class TestMovieParser:
    """Movie names: title, year and quality noise."""

    def test_title_and_year(self):
        info = parse_movie("Inception (2010).mkv", "Inception (2010).mkv")
        assert info == MovieInfo(title="Inception", year=2010)

    def test_quality_tags_removed(self):
        info = parse_movie("The.Matrix.(1999).1080p.BluRay.mkv", "The.Matrix.(1999).1080p.BluRay.mkv")
        assert info.title == "The Matrix"
        assert info.year == 1999

    def test_year_from_parent_folder(self):
        info = parse_movie("Inception (2010)/inception.mkv", "inception.mkv")
        assert info.title == "inception"
        assert info.year == 2010

    def test_external_id_tag_stripped_from_title(self):
        info = parse_movie("Inception (2010) {tmdb-27205}.mkv", "Inception (2010) {tmdb-27205}.mkv")
        assert info.title == "Inception"

    def test_no_year(self):
        assert parse_movie("Heat.mkv", "Heat.mkv").year is None


class TestEpisodeNumbers:
    @pytest.mark.parametrize("text, expected", [
        ("Show - S02E05.mkv", (2, 5)),
        ("show.s1e12.mkv", (1, 12)),
        ("Show 3x07.mkv", (3, 7)),
        ("Season 4 Episode 9.mkv", (4, 9)),
        ("Random.mkv", (None, None)),
    ])
    def test_patterns(self, text, expected):
        assert parse_episode_numbers(text) == expected


class TestTVShowParser:
    """Show name and season/episode placement."""

    def test_show_from_name_before_marker(self):
        info = parse_tv_show("Breaking Bad - S01E01.mkv", "Breaking Bad - S01E01.mkv")
        assert info.show_name == "Breaking Bad"
        assert (info.season, info.episode) == (1, 1)
        assert info.is_placeable

    def test_show_from_first_folder(self):
        info = parse_tv_show("The Wire/Season 1/episode.s01e03.mkv", "episode.s01e03.mkv")
        assert info.show_name == "The Wire"
        assert (info.season, info.episode) == (1, 3)

    def test_tag_in_folder_does_not_leak_into_show_name(self):
        info = parse_tv_show("Lost {tvdb-73739}/S01E02.mkv", "S01E02.mkv")
        assert info.show_name == "Lost"

    def test_file_without_marker_is_not_placeable(self):
        info = parse_tv_show("Random.mkv", "Random.mkv")
        assert info.season is None
        assert not info.is_placeable


class TestMusicParser:
    def test_artist_album_track(self):
        info = parse_music("Radiohead/OK Computer/02 - Paranoid Android.flac", "02 - Paranoid Android.flac")
        assert info == MusicInfo(
            title="Paranoid Android", artist="Radiohead", album="OK Computer", track_number=2
        )

    def test_loose_file_gets_unknown_artist(self):
        info = parse_music("song.mp3", "song.mp3")
        assert info.artist == "Unknown Artist"
        assert info.album is None
        assert info.title == "song"


class TestComicParser:
    def test_hash_issue_and_volume(self):
        info = parse_comic("Saga Vol. 2 #13.cbz", "Saga Vol. 2 #13.cbz")
        assert info.issue == 13
        assert info.volume == "2"
        assert info.title == "Saga"

    def test_series_from_folder(self):
        info = parse_comic("Watchmen/Watchmen 001.cbr", "Watchmen 001.cbr")
        assert info == ComicInfo(title="Watchmen", issue=1, volume=None, series="Watchmen")


class TestParseInfo:
    def test_dispatch_by_media_type(self):
        assert isinstance(parse_info(MediaType.TV_SHOW, "a/S01E01.mkv", "S01E01.mkv"), TVShowInfo)
        assert isinstance(parse_info("MOVIE", "x.mkv", "x.mkv"), MovieInfo)

    @pytest.mark.parametrize("media_type", list(MediaType))
    def test_deterministic(self, media_type):
        args = ("Some Folder {tmdb-1}/Some.File.S01E02 (2001) #3.mkv", "Some.File.S01E02 (2001) #3.mkv")
        assert parse_info(media_type, *args) == parse_info(media_type, *args)

    def test_fallback_title_never_empty(self):
        assert fallback_title("{tmdb-1}.mkv")
        assert parse_movie("(2010).mkv", "(2010).mkv").title
