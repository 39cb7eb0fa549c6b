"""
Provider ID tags embedded in folder and file names.

Users pin a library item to a provider entry by adding a braced tag such as
``Inception (2010) {tmdb-27205}`` or ``Show {tvdb-81189} {imdb-tt0903747}``.
Tags with an unknown source are left alone.
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from backend.db.models import ExternalIdSource

_TAG_PATTERN = re.compile(r"\{([a-zA-Z0-9]+)-([a-zA-Z0-9]+)\}")
_SPACES = re.compile(r"\s{2,}")

SOURCE_MAP: Dict[str, ExternalIdSource] = {
    "tmdb": ExternalIdSource.TMDB,
    "imdb": ExternalIdSource.IMDB,
    "tvdb": ExternalIdSource.TVDB,
    "anidb": ExternalIdSource.ANIDB,
    "anilist": ExternalIdSource.ANILIST,
    "myanimelist": ExternalIdSource.MYANIMELIST,
    "mal": ExternalIdSource.MYANIMELIST,
    "musicbrainz": ExternalIdSource.MUSICBRAINZ,
    "mb": ExternalIdSource.MUSICBRAINZ,
    "spotify": ExternalIdSource.SPOTIFY,
    "comicvine": ExternalIdSource.COMICVINE,
    "cv": ExternalIdSource.COMICVINE,
}

# Canonical tag prefix per source, used when writing tags back out
_TAG_PREFIX: Dict[ExternalIdSource, str] = {
    ExternalIdSource.TMDB: "tmdb",
    ExternalIdSource.IMDB: "imdb",
    ExternalIdSource.TVDB: "tvdb",
    ExternalIdSource.ANIDB: "anidb",
    ExternalIdSource.ANILIST: "anilist",
    ExternalIdSource.MYANIMELIST: "mal",
    ExternalIdSource.MUSICBRAINZ: "mb",
    ExternalIdSource.SPOTIFY: "spotify",
    ExternalIdSource.COMICVINE: "cv",
}


@dataclass(frozen=True)
class ParsedExternalId:
    source: ExternalIdSource
    id: str


def parse_external_ids(text: str) -> List[ParsedExternalId]:
    """Return every recognised tag in order of appearance."""
    if not text:
        return []

    found = []
    for match in _TAG_PATTERN.finditer(text):
        source = SOURCE_MAP.get(match.group(1).lower())
        if source is not None:
            found.append(ParsedExternalId(source=source, id=match.group(2)))
    return found


def remove_external_ids(text: str) -> str:
    """Strip recognised tags and tidy the whitespace they leave behind."""
    if not text:
        return text

    def _strip(match: re.Match) -> str:
        return "" if match.group(1).lower() in SOURCE_MAP else match.group(0)

    cleaned = _TAG_PATTERN.sub(_strip, text)
    return _SPACES.sub(" ", cleaned).strip()


def parse_first_external_id(text: str) -> Optional[ParsedExternalId]:
    ids = parse_external_ids(text)
    return ids[0] if ids else None


def parse_external_id_by_source(text: str, source: ExternalIdSource) -> Optional[str]:
    for parsed in parse_external_ids(text):
        if parsed.source == source:
            return parsed.id
    return None


def has_external_ids(text: str) -> bool:
    return bool(parse_external_ids(text))


def format_external_id(source: ExternalIdSource, external_id: str) -> str:
    """Build the tag a user would put in a folder name, e.g. ``{tmdb-27205}``."""
    return f"{{{_TAG_PREFIX[source]}-{external_id}}}"


def is_valid_external_id_format(tag: str) -> bool:
    match = _TAG_PATTERN.fullmatch(tag.strip()) if tag else None
    return bool(match) and match.group(1).lower() in SOURCE_MAP


def collect_external_ids(*parts: str) -> List[ParsedExternalId]:
    """Merge tags from several strings, first occurrence per source wins."""
    seen = set()
    merged = []
    for part in parts:
        for parsed in parse_external_ids(part):
            if parsed.source not in seen:
                seen.add(parsed.source)
                merged.append(parsed)
    return merged
