"""
Media processors.

One processor per media type, selected by the MediaType tag. Each knows how
to parse its files and save them through the persistence adapter with
per-file (or per-show) transactions, so one bad file never aborts a scan.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields as dataclass_fields
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from backend.core.metadata.service import EnrichmentOutcome, MetadataService
from backend.core.scanner.errors import FatalScanError, ScanCancelled
from backend.core.scanner.external_ids import ParsedExternalId, collect_external_ids
from backend.core.scanner.parsers import (
    ComicInfo, MovieInfo, MusicInfo, ParsedMediaInfo, TVShowInfo,
    parse_comic, parse_movie, parse_music, parse_tv_show,
)
from backend.core.scanner.persistence import MediaRepository, UpsertAction
from backend.core.scanner.walker import ScannedFile
from backend.db.database import get_db_session
from backend.db.models import ExternalId, ExternalIdSource, MediaType

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[int, int, str], Awaitable[None]]


@dataclass
class SaveStats:
    added: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    unparsable: int = 0
    metadata_success: int = 0
    metadata_failed: int = 0

    def record(self, action: UpsertAction) -> None:
        setattr(self, action.value, getattr(self, action.value) + 1)

    def record_metadata(self, outcome: EnrichmentOutcome) -> None:
        if outcome.succeeded:
            self.metadata_success += 1
        elif outcome.failed:
            self.metadata_failed += 1

    def merge(self, other: "SaveStats") -> "SaveStats":
        for f in dataclass_fields(self):
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))
        return self

    def as_dict(self) -> Dict[str, int]:
        return {f.name: getattr(self, f.name) for f in dataclass_fields(self)}


@dataclass
class ScanContext:
    """What a processor needs to know about the scan it is running in."""
    collection_id: int
    metadata: MetadataService
    update_existing: bool = False
    fetch_metadata: bool = True
    on_progress: Optional[ProgressCallback] = None
    is_cancelled: Callable[[], bool] = field(default=lambda: False)

    def check_cancelled(self) -> None:
        if self.is_cancelled():
            raise ScanCancelled("Scan cancelled")

    async def progress(self, current: int, total: int, item: str) -> None:
        if self.on_progress is not None:
            await self.on_progress(current, total, item)


class MediaProcessor(ABC):
    media_type: MediaType

    @abstractmethod
    def parse_info(self, relative_path: str, file_name: str) -> ParsedMediaInfo:
        ...

    @abstractmethod
    async def save_to_database(self, files: List[ScannedFile], ctx: ScanContext) -> SaveStats:
        ...

    def get_file_paths(self, files: List[ScannedFile]) -> List[str]:
        return [f.path for f in files]


class SingleFileProcessor(MediaProcessor):
    """Media where one file is one media row (movies, music, comics)."""

    def subtype_fields(self, parsed: ParsedMediaInfo) -> dict:
        return {}

    def search_terms(self, parsed: ParsedMediaInfo) -> Tuple[Optional[str], Optional[int]]:
        return parsed.title, None

    async def save_to_database(self, files: List[ScannedFile], ctx: ScanContext) -> SaveStats:
        stats = SaveStats()
        total = len(files)
        for index, file in enumerate(files, start=1):
            ctx.check_cancelled()
            try:
                await self._save_file(file, ctx, stats)
            except SQLAlchemyError as e:
                stats.failed += 1
                logger.warning("Failed to save file", path=file.path, error=str(e))
            await ctx.progress(index, total, file.name)
        return stats

    async def _save_file(self, file: ScannedFile, ctx: ScanContext, stats: SaveStats) -> None:
        parsed = self.parse_info(file.relative_path, file.name)
        parsed_ids = collect_external_ids(file.relative_path)

        async with get_db_session() as session:
            repo = MediaRepository(session)
            existing = await repo.find_by_file_path(self.media_type, file.path)
            if existing is not None and not ctx.update_existing:
                await repo.link_to_collection(existing.media_id, ctx.collection_id)
                await session.commit()
                stats.record(UpsertAction.SKIPPED)
                return

        outcome = EnrichmentOutcome()
        if ctx.fetch_metadata:
            query, year = self.search_terms(parsed)
            outcome = await ctx.metadata.enrich(self.media_type, parsed_ids, title=query, year=year)
            stats.record_metadata(outcome)

        async with get_db_session() as session:
            repo = MediaRepository(session)
            result = await repo.upsert_media(
                self.media_type,
                parsed.title,
                file,
                ctx.collection_id,
                subtype_fields=self.subtype_fields(parsed),
                metadata=outcome.metadata,
                parsed_ids=parsed_ids,
                update_existing=ctx.update_existing,
            )
            await session.commit()
        stats.record(result.action)


class MovieProcessor(SingleFileProcessor):
    media_type = MediaType.MOVIE

    def parse_info(self, relative_path: str, file_name: str) -> MovieInfo:
        return parse_movie(relative_path, file_name)

    def search_terms(self, parsed: MovieInfo):
        return parsed.title, parsed.year


class MusicProcessor(SingleFileProcessor):
    media_type = MediaType.MUSIC

    def parse_info(self, relative_path: str, file_name: str) -> MusicInfo:
        return parse_music(relative_path, file_name)

    def subtype_fields(self, parsed: MusicInfo) -> dict:
        return {"artist": parsed.artist, "album": parsed.album}


class ComicProcessor(SingleFileProcessor):
    media_type = MediaType.COMIC

    def parse_info(self, relative_path: str, file_name: str) -> ComicInfo:
        return parse_comic(relative_path, file_name)

    def subtype_fields(self, parsed: ComicInfo) -> dict:
        return {"issue": parsed.issue, "volume": parsed.volume}


@dataclass
class _EpisodeFile:
    number: int
    file: ScannedFile


class TVShowProcessor(MediaProcessor):
    """Files grouped into show -> season -> episode, persisted in that order."""

    media_type = MediaType.TV_SHOW

    def parse_info(self, relative_path: str, file_name: str) -> TVShowInfo:
        return parse_tv_show(relative_path, file_name)

    def group_files(self, files: List[ScannedFile]) -> Tuple[Dict[str, Dict[int, List[_EpisodeFile]]], int]:
        """Returns ``{show: {season: [episodes]}}`` and the count of unplaceable files."""
        shows: Dict[str, Dict[int, List[_EpisodeFile]]] = {}
        unparsable = 0
        for file in files:
            parsed = self.parse_info(file.relative_path, file.name)
            if not parsed.is_placeable:
                unparsable += 1
                logger.warning("Could not parse season/episode, skipping", relative_path=file.relative_path)
                continue
            seasons = shows.setdefault(parsed.show_name, {})
            seasons.setdefault(parsed.season, []).append(_EpisodeFile(parsed.episode, file))
        return shows, unparsable

    async def save_to_database(self, files: List[ScannedFile], ctx: ScanContext) -> SaveStats:
        stats = SaveStats()
        shows, stats.unparsable = self.group_files(files)
        total = len(files)
        done = stats.unparsable

        for show_name, seasons in shows.items():
            ctx.check_cancelled()
            show_files = [ep.file for eps in seasons.values() for ep in eps]
            await self._save_show(show_name, seasons, show_files, ctx, stats)
            done += len(show_files)
            await ctx.progress(done, total, show_name)
        return stats

    async def _existing_tmdb_id(self, repo: MediaRepository, media_id: int) -> Optional[str]:
        return await repo.session.scalar(
            select(ExternalId.external_id).where(
                ExternalId.media_id == media_id, ExternalId.source == ExternalIdSource.TMDB
            )
        )

    async def _save_show(
        self,
        show_name: str,
        seasons: Dict[int, List[_EpisodeFile]],
        show_files: List[ScannedFile],
        ctx: ScanContext,
        stats: SaveStats,
    ) -> None:
        parsed_ids: List[ParsedExternalId] = collect_external_ids(*(f.relative_path for f in show_files))

        async with get_db_session() as session:
            repo = MediaRepository(session)
            existing_show = None
            for parsed in parsed_ids:
                existing_show = await repo.find_show_by_external_id(parsed.source, parsed.id)
                if existing_show is not None:
                    break
            persisted = await repo.persisted_paths(MediaType.TV_SHOW, (f.path for f in show_files))
            # Provider metadata may have retitled the show since these episodes were saved
            if existing_show is None and persisted:
                existing_show = await repo.find_show_by_file_paths(persisted)
            if existing_show is None:
                existing_show = await repo.find_show(show_name)
            tmdb_id = await self._existing_tmdb_id(repo, existing_show.media_id) if existing_show else None

            if existing_show is not None and not ctx.update_existing and len(persisted) == len(show_files):
                await repo.link_to_collection(existing_show.media_id, ctx.collection_id)
                await session.commit()
                stats.skipped += len(show_files)
                return

        outcome = EnrichmentOutcome()
        if ctx.fetch_metadata and (existing_show is None or ctx.update_existing):
            outcome = await ctx.metadata.enrich(MediaType.TV_SHOW, parsed_ids, title=show_name)
            stats.record_metadata(outcome)

        if outcome.metadata is not None:
            tmdb_id = next(
                (ref.id for ref in outcome.metadata.external_ids if ref.source == ExternalIdSource.TMDB),
                tmdb_id,
            )
        tmdb_id = tmdb_id or next((p.id for p in parsed_ids if p.source == ExternalIdSource.TMDB), None)

        try:
            async with get_db_session() as session:
                repo = MediaRepository(session)
                show, created = await repo.find_or_create_show(
                    show_name,
                    ctx.collection_id,
                    metadata=outcome.metadata,
                    parsed_ids=parsed_ids,
                    update_existing=ctx.update_existing,
                    file_paths=persisted,
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Could not create show", show=show_name, error=str(e), exc_info=True)
            raise FatalScanError(f'Could not create show "{show_name}": {e}') from e

        if created:
            logger.info("Created TV show", show=show_name, seasons=len(seasons))

        for season_number in sorted(seasons):
            ctx.check_cancelled()
            episodes = sorted(seasons[season_number], key=lambda ep: (ep.number, ep.file.relative_path))
            pending = [ep for ep in episodes if ctx.update_existing or ep.file.path not in persisted]
            stats.skipped += len(episodes) - len(pending)
            if not pending:
                continue

            season_meta = None
            if ctx.fetch_metadata and tmdb_id:
                season_meta = await ctx.metadata.get_season_metadata(tmdb_id, season_number)

            season_fields = {}
            if season_meta is not None:
                season_fields = {
                    "title": season_meta.name,
                    "overview": season_meta.overview,
                    "poster_url": season_meta.poster_url,
                    "air_date": season_meta.air_date,
                }

            for ep in pending:
                details = {}
                if season_meta is not None:
                    meta = season_meta.episode(ep.number)
                    if meta is not None:
                        details = {
                            "title": meta.title,
                            "overview": meta.overview,
                            "air_date": meta.air_date,
                            "duration": meta.duration,
                            "still_url": meta.still_url,
                        }
                try:
                    async with get_db_session() as session:
                        repo = MediaRepository(session)
                        season = await repo.find_or_create_season(show, season_number, **season_fields)
                        action = await repo.upsert_episode(
                            season,
                            ep.number,
                            ep.file,
                            title=ep.file.name.rsplit(".", 1)[0],
                            update_existing=ctx.update_existing,
                            details=details,
                        )
                        await session.commit()
                    stats.record(action)
                except SQLAlchemyError as e:
                    stats.failed += 1
                    logger.warning("Failed to save episode", path=ep.file.path, error=str(e))


PROCESSORS: Dict[MediaType, MediaProcessor] = {
    MediaType.MOVIE: MovieProcessor(),
    MediaType.TV_SHOW: TVShowProcessor(),
    MediaType.MUSIC: MusicProcessor(),
    MediaType.COMIC: ComicProcessor(),
}


def get_processor(media_type: MediaType) -> MediaProcessor:
    return PROCESSORS[MediaType(media_type)]
