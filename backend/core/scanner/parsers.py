"""
Filename parsers.

Each parser turns a path relative to the scan root plus the file name into
the identity fields for one media type. They are pure functions: no I/O,
same input always gives the same output.
"""

import re
from dataclasses import dataclass
from pathlib import PurePath
from typing import List, Optional, Tuple, Union

from backend.core.scanner.external_ids import remove_external_ids
from backend.db.models import MediaType

_YEAR = re.compile(r"\((\d{4})\)")
_QUALITY_TAGS = re.compile(r"\b(1080p|720p|480p|4K|HDTV|BluRay|WEB-DL|WEBRip)\b", re.IGNORECASE)
_SEPARATORS = re.compile(r"[._-]+")
_SPACES = re.compile(r"\s+")

_EPISODE_PATTERNS = (
    re.compile(r"[Ss](\d{1,2})[Ee](\d{1,3})"),
    re.compile(r"(\d{1,2})x(\d{1,3})"),
    re.compile(r"[Ss]eason\s*(\d{1,2}).*[Ee]pisode\s*(\d{1,3})", re.IGNORECASE),
)
_SHOW_BEFORE_MARKER = re.compile(r"^(.+?)\s*-\s*[Ss]\d{1,2}[Ee]\d{1,3}")

_TRACK_PREFIX = re.compile(r"^(\d+)[-.\s]+")

_VOLUME = re.compile(r"Vol(?:ume)?\.?\s*(\d+)", re.IGNORECASE)
_HASH_ISSUE = re.compile(r"#(\d+)")
_BARE_ISSUE = re.compile(r"(\d+)")

UNKNOWN_ARTIST = "Unknown Artist"


@dataclass(frozen=True)
class MovieInfo:
    title: str
    year: Optional[int] = None
    media_type: MediaType = MediaType.MOVIE


@dataclass(frozen=True)
class TVShowInfo:
    title: str
    show_name: str
    season: Optional[int] = None
    episode: Optional[int] = None
    media_type: MediaType = MediaType.TV_SHOW

    @property
    def is_placeable(self) -> bool:
        """True when the file can be slotted into the season/episode tree."""
        return bool(self.show_name) and self.season is not None and self.episode is not None


@dataclass(frozen=True)
class MusicInfo:
    title: str
    artist: str = UNKNOWN_ARTIST
    album: Optional[str] = None
    track_number: Optional[int] = None
    media_type: MediaType = MediaType.MUSIC


@dataclass(frozen=True)
class ComicInfo:
    title: str
    issue: Optional[int] = None
    volume: Optional[str] = None
    series: Optional[str] = None
    media_type: MediaType = MediaType.COMIC


ParsedMediaInfo = Union[MovieInfo, TVShowInfo, MusicInfo, ComicInfo]


def _segments(relative_path: str) -> List[str]:
    return [part for part in re.split(r"[/\\]", relative_path or "") if part]


def _stem(file_name: str) -> str:
    return PurePath(file_name).stem if PurePath(file_name).suffix else file_name


def _tidy(text: str) -> str:
    return _SPACES.sub(" ", text).strip()


def fallback_title(file_name: str) -> str:
    """Sanitized file name, used whenever a parser ends up with nothing."""
    title = _tidy(_SEPARATORS.sub(" ", _stem(remove_external_ids(file_name))))
    return title or file_name


def parse_movie(relative_path: str, file_name: str) -> MovieInfo:
    """
    ``Inception (2010) 1080p.mkv`` -> title "Inception", year 2010.

    When the file name carries no year the parent folder is consulted,
    since ``Inception (2010)/inception.mkv`` is an equally common layout.
    """
    name = remove_external_ids(file_name)
    match = _YEAR.search(name)
    if match is None:
        segments = _segments(relative_path)
        if len(segments) > 1:
            match = _YEAR.search(remove_external_ids(segments[-2]))
    year = int(match.group(1)) if match else None

    title = _stem(name)
    title = _YEAR.sub("", title, count=1)
    title = _QUALITY_TAGS.sub("", title)
    title = _tidy(_SEPARATORS.sub(" ", title))

    return MovieInfo(title=title or fallback_title(file_name), year=year)


def parse_episode_numbers(text: str) -> Tuple[Optional[int], Optional[int]]:
    """First matching season/episode pattern wins."""
    for pattern in _EPISODE_PATTERNS:
        match = pattern.search(text)
        if match:
            return int(match.group(1)), int(match.group(2))
    return None, None


def parse_tv_show(relative_path: str, file_name: str) -> TVShowInfo:
    clean_path = remove_external_ids(relative_path or file_name)
    clean_name = remove_external_ids(file_name)

    season, episode = parse_episode_numbers(clean_path)
    if season is None:
        season, episode = parse_episode_numbers(clean_name)

    parts = _segments(clean_path)
    match = _SHOW_BEFORE_MARKER.match(clean_name)
    if match:
        show_name = match.group(1).strip()
    elif len(parts) > 1:
        show_name = parts[0].strip()
    else:
        show_name = _stem(clean_name).strip()

    show_name = show_name or fallback_title(file_name)
    return TVShowInfo(title=show_name, show_name=show_name, season=season, episode=episode)


def parse_music(relative_path: str, file_name: str) -> MusicInfo:
    """``Artist/Album/01 - Track.flac``."""
    parts = _segments(remove_external_ids(relative_path))
    clean_name = remove_external_ids(file_name)

    artist = parts[0].strip() if len(parts) > 1 else ""
    album = parts[1].strip() if len(parts) > 2 else None

    stem = _stem(clean_name)
    track_match = _TRACK_PREFIX.match(stem)
    track_number = int(track_match.group(1)) if track_match else None
    title = _tidy(_TRACK_PREFIX.sub("", stem, count=1))

    return MusicInfo(
        title=title or fallback_title(file_name),
        artist=artist or UNKNOWN_ARTIST,
        album=album or None,
        track_number=track_number,
    )


def parse_comic(relative_path: str, file_name: str) -> ComicInfo:
    clean_path = remove_external_ids(relative_path)
    clean_name = remove_external_ids(file_name)
    parts = _segments(clean_path)
    series = parts[0].strip() if len(parts) > 1 else None

    volume_match = _VOLUME.search(clean_name) or _VOLUME.search(clean_path)
    volume = volume_match.group(1) if volume_match else None

    # Volume digits must not be mistaken for the issue number
    stem = _VOLUME.sub("", _stem(clean_name))
    issue_match = _HASH_ISSUE.search(stem) or _BARE_ISSUE.search(stem)
    issue = int(issue_match.group(1)) if issue_match else None

    if series:
        title = series
    elif issue_match:
        title = _tidy(stem[:issue_match.start()] + stem[issue_match.end():]).strip(" -_.")
    else:
        title = _tidy(stem)

    return ComicInfo(title=title or fallback_title(file_name), issue=issue, volume=volume, series=series)


PARSERS = {
    MediaType.MOVIE: parse_movie,
    MediaType.TV_SHOW: parse_tv_show,
    MediaType.MUSIC: parse_music,
    MediaType.COMIC: parse_comic,
}


def parse_info(media_type: MediaType, relative_path: str, file_name: str) -> ParsedMediaInfo:
    return PARSERS[MediaType(media_type)](relative_path, file_name)
