"""
Persistence adapter for the scan pipeline.

The only writer of media, collection and external-id rows. Every operation
runs on the caller's session; callers commit once per file (or per show) so
a half-built entity never becomes visible.
"""

import re
import unicodedata
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type

import structlog
from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from backend.core.metadata.base import MediaMetadata
from backend.core.scanner.external_ids import ParsedExternalId
from backend.core.scanner.walker import ScannedFile
from backend.db.models import (
    Collection, Comic, Episode, ExternalId, ExternalIdSource, Genre, Media, MediaCollection,
    MediaType, Movie, Music, Season, TVShow, media_genres,
)

logger = structlog.get_logger(__name__)

SUBTYPE_MODELS: Dict[MediaType, Type] = {
    MediaType.MOVIE: Movie,
    MediaType.MUSIC: Music,
    MediaType.COMIC: Comic,
}

# Media columns a metadata refresh may overwrite
_MEDIA_METADATA_FIELDS = ("description", "poster_url", "backdrop_url", "rating", "release_date")


class UpsertAction(str, Enum):
    ADDED = "added"
    UPDATED = "updated"
    SKIPPED = "skipped"


@dataclass
class UpsertResult:
    media_id: int
    action: UpsertAction


def slugify(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-zA-Z0-9]+", "-", normalized).strip("-").lower()
    return slug or "library"


def _present(value: Any) -> bool:
    return value is not None and value != "" and value != []


def apply_metadata(media: Media, metadata: Optional[MediaMetadata], overwrite_title: bool = True) -> None:
    """Copy metadata onto a media row; fields the provider left empty keep their value."""
    if metadata is None:
        return
    if overwrite_title and _present(metadata.title):
        media.title = metadata.title
    for field in _MEDIA_METADATA_FIELDS:
        value = getattr(metadata, field)
        if _present(value):
            setattr(media, field, value)


def _subtype_metadata_fields(media_type: MediaType, metadata: Optional[MediaMetadata]) -> Dict[str, Any]:
    if metadata is None:
        return {}
    if media_type == MediaType.MOVIE and metadata.movie:
        details = metadata.movie.model_dump()
        return {k: v for k, v in details.items() if _present(v)}
    return {}


class MediaRepository:
    """Upserts against the relational store, keyed by file path."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # =========================================================================
    # Collections
    # =========================================================================

    async def upsert_library(self, name: str, path: str, media_type: MediaType) -> Collection:
        """Find the library collection by slug, creating or re-pointing it."""
        slug = slugify(name)
        collection = await self.session.scalar(select(Collection).where(Collection.slug == slug))
        if collection is None:
            collection = Collection(
                name=name,
                slug=slug,
                is_library=True,
                library_path=path,
                library_type=media_type,
            )
            self.session.add(collection)
            await self.session.flush()
            logger.info("Created library collection", name=name, slug=slug, path=path)
        else:
            collection.is_library = True
            collection.library_path = path
            collection.library_type = media_type
        return collection

    async def link_to_collection(self, media_id: int, collection_id: int) -> None:
        stmt = sqlite_insert(MediaCollection).values(media_id=media_id, collection_id=collection_id)
        await self.session.execute(
            stmt.on_conflict_do_nothing(index_elements=["media_id", "collection_id"])
        )

    # =========================================================================
    # External IDs and genres
    # =========================================================================

    async def existing_sources(self, media_id: int) -> set:
        rows = await self.session.scalars(select(ExternalId.source).where(ExternalId.media_id == media_id))
        return set(rows.all())

    async def add_external_ids(
        self,
        media_id: int,
        external_ids: Iterable[Tuple[ExternalIdSource, str]],
    ) -> int:
        """Add IDs for sources the media does not have yet; returns how many were new."""
        present = await self.existing_sources(media_id)
        added = 0
        for source, value in external_ids:
            if source in present or not value:
                continue
            stmt = sqlite_insert(ExternalId).values(source=source, external_id=str(value), media_id=media_id)
            # A concurrent rescan may have inserted the same source first
            result = await self.session.execute(
                stmt.on_conflict_do_nothing(index_elements=["source", "media_id"])
            )
            present.add(source)
            added += result.rowcount or 0
        return added

    async def set_genres(self, media_id: int, names: Iterable[str]) -> None:
        names = sorted({n.strip() for n in names if n and n.strip()})
        if not names:
            return
        await self.session.execute(
            sqlite_insert(Genre).values([{"name": n} for n in names]).on_conflict_do_nothing(index_elements=["name"])
        )
        genre_ids = (await self.session.scalars(select(Genre.id).where(Genre.name.in_(names)))).all()
        await self.session.execute(
            sqlite_insert(media_genres)
            .values([{"media_id": media_id, "genre_id": gid} for gid in genre_ids])
            .on_conflict_do_nothing()
        )

    async def _attach_ids_and_genres(
        self,
        media_id: int,
        parsed_ids: List[ParsedExternalId],
        metadata: Optional[MediaMetadata],
    ) -> None:
        ids = [(p.source, p.id) for p in parsed_ids]
        if metadata is not None:
            ids.extend((ref.source, ref.id) for ref in metadata.external_ids)
            await self.set_genres(media_id, metadata.genres)
        await self.add_external_ids(media_id, ids)

    # =========================================================================
    # Single-file media (movie, music, comic)
    # =========================================================================

    async def find_by_file_path(self, media_type: MediaType, file_path: str):
        model = SUBTYPE_MODELS[MediaType(media_type)]
        return await self.session.scalar(select(model).where(model.file_path == file_path))

    async def upsert_media(
        self,
        media_type: MediaType,
        title: str,
        file: ScannedFile,
        collection_id: int,
        subtype_fields: Optional[Dict[str, Any]] = None,
        metadata: Optional[MediaMetadata] = None,
        parsed_ids: Optional[List[ParsedExternalId]] = None,
        update_existing: bool = False,
    ) -> UpsertResult:
        """
        Create or refresh the media row owning ``file``.

        An existing row is always linked to ``collection_id``; it is only
        refreshed when ``update_existing`` is set.
        """
        media_type = MediaType(media_type)
        model = SUBTYPE_MODELS[media_type]
        parsed_ids = parsed_ids or []
        fields = dict(subtype_fields or {})
        fields.update(_subtype_metadata_fields(media_type, metadata))

        existing = await self.find_by_file_path(media_type, file.path)
        if existing is not None:
            await self.link_to_collection(existing.media_id, collection_id)
            if not update_existing:
                return UpsertResult(existing.media_id, UpsertAction.SKIPPED)

            media = await self.session.get(Media, existing.media_id)
            apply_metadata(media, metadata)
            for key, value in fields.items():
                if _present(value):
                    setattr(existing, key, value)
            existing.file_size = file.size
            existing.file_modified_at = file.modified_at
            await self._attach_ids_and_genres(media.id, parsed_ids, metadata)
            return UpsertResult(media.id, UpsertAction.UPDATED)

        media = Media(type=media_type, title=title)
        apply_metadata(media, metadata)
        self.session.add(media)
        await self.session.flush()

        subtype = model(
            media_id=media.id,
            file_path=file.path,
            file_size=file.size,
            file_modified_at=file.modified_at,
            **{k: v for k, v in fields.items() if v is not None},
        )
        self.session.add(subtype)
        await self.session.flush()

        await self.link_to_collection(media.id, collection_id)
        await self._attach_ids_and_genres(media.id, parsed_ids, metadata)
        return UpsertResult(media.id, UpsertAction.ADDED)

    # =========================================================================
    # TV: show -> season -> episode
    # =========================================================================

    async def find_show(self, title: str) -> Optional[TVShow]:
        return await self.session.scalar(
            select(TVShow)
            .join(Media, TVShow.media_id == Media.id)
            .where(Media.type == MediaType.TV_SHOW, Media.title == title)
            .limit(1)
        )

    async def find_show_by_external_id(self, source: ExternalIdSource, value: str) -> Optional[TVShow]:
        return await self.session.scalar(
            select(TVShow)
            .join(ExternalId, ExternalId.media_id == TVShow.media_id)
            .where(ExternalId.source == source, ExternalId.external_id == value)
            .limit(1)
        )

    async def find_show_by_file_paths(self, paths: Iterable[str]) -> Optional[TVShow]:
        """The show already owning an episode at one of ``paths``; stable across retitling."""
        paths = list(paths)
        for i in range(0, len(paths), 500):
            show = await self.session.scalar(
                select(TVShow)
                .join(Season, Season.tv_show_id == TVShow.id)
                .join(Episode, Episode.season_id == Season.id)
                .where(Episode.file_path.in_(paths[i:i + 500]))
                .limit(1)
            )
            if show is not None:
                return show
        return None

    async def find_or_create_show(
        self,
        show_name: str,
        collection_id: int,
        metadata: Optional[MediaMetadata] = None,
        parsed_ids: Optional[List[ParsedExternalId]] = None,
        update_existing: bool = False,
        file_paths: Iterable[str] = (),
    ) -> Tuple[TVShow, bool]:
        """Returns the show and whether it was created."""
        parsed_ids = parsed_ids or []
        show = None
        for parsed in parsed_ids:
            show = await self.find_show_by_external_id(parsed.source, parsed.id)
            if show is not None:
                break
        if show is None and file_paths:
            show = await self.find_show_by_file_paths(file_paths)
        if show is None:
            show = await self.find_show(show_name)
        if show is None and metadata is not None and metadata.title != show_name:
            show = await self.find_show(metadata.title)

        created = show is None
        if created:
            media = Media(type=MediaType.TV_SHOW, title=show_name)
            apply_metadata(media, metadata)
            self.session.add(media)
            await self.session.flush()
            show = TVShow(media_id=media.id)
            self.session.add(show)
        elif update_existing:
            media = await self.session.get(Media, show.media_id)
            apply_metadata(media, metadata)

        if metadata is not None and metadata.tv_show is not None and (created or update_existing):
            for key, value in metadata.tv_show.model_dump().items():
                if _present(value):
                    setattr(show, key, value)

        await self.session.flush()
        await self.link_to_collection(show.media_id, collection_id)
        if created or update_existing:
            await self._attach_ids_and_genres(show.media_id, parsed_ids, metadata)
        return show, created

    async def find_or_create_season(self, show: TVShow, number: int, **fields) -> Season:
        season = await self.session.scalar(
            select(Season).where(Season.tv_show_id == show.id, Season.number == number)
        )
        if season is None:
            season = Season(tv_show_id=show.id, number=number)
            self.session.add(season)
        for key, value in fields.items():
            if _present(value):
                setattr(season, key, value)
        await self.session.flush()
        return season

    async def upsert_episode(
        self,
        season: Season,
        number: int,
        file: ScannedFile,
        title: str,
        update_existing: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ) -> UpsertAction:
        """Episode rows are keyed by their own file path; ``details`` come from season metadata."""
        details = {k: v for k, v in (details or {}).items() if _present(v)}
        episode = await self.session.scalar(select(Episode).where(Episode.file_path == file.path))
        if episode is not None:
            if not update_existing:
                return UpsertAction.SKIPPED
            episode.season_id = season.id
            episode.number = number
            episode.file_size = file.size
            episode.file_modified_at = file.modified_at
            for key, value in details.items():
                setattr(episode, key, value)
            await self.session.flush()
            return UpsertAction.UPDATED

        episode = Episode(
            season_id=season.id,
            number=number,
            title=details.pop("title", None) or title,
            file_path=file.path,
            file_size=file.size,
            file_modified_at=file.modified_at,
            **details,
        )
        self.session.add(episode)
        await self.session.flush()
        return UpsertAction.ADDED

    # =========================================================================
    # Resume support
    # =========================================================================

    async def persisted_paths(self, media_type: MediaType, paths: Iterable[str]) -> set:
        """Which of ``paths`` already have a subtype row."""
        paths = list(paths)
        if not paths:
            return set()
        model = Episode if MediaType(media_type) == MediaType.TV_SHOW else SUBTYPE_MODELS[MediaType(media_type)]
        found = set()
        # Stay under SQLite's bound-parameter limit
        for i in range(0, len(paths), 500):
            chunk = paths[i:i + 500]
            rows = await self.session.scalars(select(model.file_path).where(model.file_path.in_(chunk)))
            found.update(rows.all())
        return found
