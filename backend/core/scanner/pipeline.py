"""
Scan pipeline.

Runs one ScanJob end to end: walk (full or batched), parse, enrich and
persist, keeping the job row current so an interrupted scan can resume
where it stopped. Per-file and per-folder failures are counted, not fatal.
"""

import asyncio
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, Iterable, List, Optional

import structlog
from sqlalchemy import and_, delete, func, or_, select

from backend.core.metadata.service import MetadataService
from backend.core.scanner.errors import (
    FatalScanError, ScanCancelled, ScanJobNotFoundError, ScanJobStateError,
)
from backend.core.scanner.path_validator import validate_scan_path
from backend.core.scanner.persistence import MediaRepository
from backend.core.scanner.processors import SaveStats, ScanContext, get_processor
from backend.core.scanner.progress import ProgressEmitter
from backend.core.scanner.walker import (
    ScannedFile, batch_folders, default_batch_size, discover_folders, walk, walk_folder,
)
from backend.db.database import get_db_session
from backend.db.models import MediaType, MetadataStatus, ScanJob, ScanJobStatus, utcnow
from backend.utils.config import ScanConfig, get_config
from backend.utils.constants import SCAN

logger = structlog.get_logger(__name__)

ACTIVE_STATUSES = (ScanJobStatus.PENDING, ScanJobStatus.RUNNING)
RESUMABLE_STATUSES = (ScanJobStatus.PENDING, ScanJobStatus.FAILED, ScanJobStatus.CANCELLED)


@dataclass
class ScanOptions:
    media_type: MediaType
    batch_scan: bool = False
    collection_name: Optional[str] = None
    update_existing: bool = False
    fetch_metadata: bool = True
    batch_size: Optional[int] = None


@dataclass
class CleanupResult:
    stale_failed: int = 0
    removed: int = 0

    @property
    def total(self) -> int:
        return self.stale_failed + self.removed


def job_snapshot(job: ScanJob) -> Dict:
    """Serializable view of a job, as returned by the API."""
    return {
        "id": job.id,
        "library_id": job.library_id,
        "scan_path": job.scan_path,
        "media_type": job.media_type.value if job.media_type else None,
        "status": job.status.value,
        "metadata_status": job.metadata_status.value,
        "batch_scan": bool(job.batch_scan),
        "update_existing": bool(job.update_existing),
        "fetch_metadata": bool(job.fetch_metadata),
        "scanned_count": job.scanned_count or 0,
        "metadata_success_count": job.metadata_success_count or 0,
        "metadata_failed_count": job.metadata_failed_count or 0,
        "added_count": job.added_count or 0,
        "updated_count": job.updated_count or 0,
        "skipped_count": job.skipped_count or 0,
        "failed_count": job.failed_count or 0,
        "batch_size": job.batch_size,
        "total_folders": job.total_folders or 0,
        "processed_folders": len(job.processed_folders or []),
        "failed_folders": list(job.failed_folders or []),
        "pending_folders": len(job.pending_folders or []),
        "progress_percent": job.progress_percent,
        "error_message": job.error_message,
        "started_at": job.started_at,
        "completed_at": job.completed_at,
        "metadata_started_at": job.metadata_started_at,
        "metadata_completed_at": job.metadata_completed_at,
        "last_batch_at": job.last_batch_at,
        "created_at": job.created_at,
        "updated_at": job.updated_at,
    }


class ScanPipeline:
    """Executes scan jobs; holds no per-scan state between runs."""

    def __init__(
        self,
        metadata: MetadataService,
        emitter: Optional[ProgressEmitter] = None,
        config_getter: Callable = get_config,
    ):
        self.metadata = metadata
        self.emitter = emitter or ProgressEmitter()
        self._config_getter = config_getter

    @property
    def scan_config(self) -> ScanConfig:
        return self._config_getter().scan

    # =========================================================================
    # Job bookkeeping
    # =========================================================================

    async def get_job(self, job_id: int) -> ScanJob:
        async with get_db_session() as db:
            job = await db.get(ScanJob, job_id)
        if job is None:
            raise ScanJobNotFoundError(job_id)
        return job

    async def _update_job(self, job_id: int, **fields) -> None:
        async with get_db_session() as db:
            job = await db.get(ScanJob, job_id)
            if job:
                for key, value in fields.items():
                    setattr(job, key, value)
                await db.commit()

    async def create_job(self, path: str, options: ScanOptions) -> ScanJob:
        """Validate the root, upsert its library collection and record a PENDING job."""
        path = os.path.normpath(path)
        media_type = MediaType(options.media_type)
        await validate_scan_path(path, media_type, self.scan_config)

        name = options.collection_name or os.path.basename(path) or path
        batch_size = options.batch_size or default_batch_size(media_type, self.scan_config)

        async with get_db_session() as db:
            library = await MediaRepository(db).upsert_library(name, path, media_type)
            job = ScanJob(
                library_id=library.id,
                scan_path=path,
                media_type=media_type,
                status=ScanJobStatus.PENDING,
                metadata_status=MetadataStatus.PENDING if options.fetch_metadata else MetadataStatus.NOT_STARTED,
                batch_scan=options.batch_scan,
                update_existing=options.update_existing,
                fetch_metadata=options.fetch_metadata,
                batch_size=batch_size if options.batch_scan else None,
                pending_folders=[],
                processed_folders=[],
                failed_folders=[],
            )
            db.add(job)
            await db.commit()
            await db.refresh(job)

        logger.info(
            "Scan job created",
            scan_job_id=job.id,
            path=path,
            media_type=media_type.value,
            batch_scan=options.batch_scan,
        )
        return job

    async def prepare_resume(self, job_id: int) -> ScanJob:
        job = await self.get_job(job_id)
        if job.status not in RESUMABLE_STATUSES:
            raise ScanJobStateError(f"Scan job {job_id} is {job.status.value} and cannot be resumed")

        await validate_scan_path(job.scan_path, job.media_type, self.scan_config)
        await self._update_job(job_id, status=ScanJobStatus.PENDING, error_message=None, completed_at=None)
        logger.info("Scan job queued for resume", scan_job_id=job_id)
        return await self.get_job(job_id)

    async def mark_cancelled(self, job_id: int) -> None:
        await self._update_job(job_id, status=ScanJobStatus.CANCELLED, completed_at=utcnow())
        await self.emitter.cancelled(job_id)

    # =========================================================================
    # Execution
    # =========================================================================

    async def run(
        self,
        job_id: int,
        resume: bool = False,
        is_cancelled: Callable[[], bool] = lambda: False,
    ) -> Optional[SaveStats]:
        """
        Execute a job to a terminal state.

        Never raises for scan failures: they end up on the job row and as a
        ``scan:error`` event. Task cancellation is re-raised.
        """
        log = logger.bind(scan_job_id=job_id)
        try:
            job = await self.get_job(job_id)
        except ScanJobNotFoundError as e:
            log.error("Scan job vanished before it could start")
            await self.emitter.error(str(e), scan_job_id=job_id)
            return None

        media_type = MediaType(job.media_type)
        metadata_on = bool(job.fetch_metadata) and await self.metadata.is_available(media_type)
        now = utcnow()
        await self._update_job(
            job_id,
            status=ScanJobStatus.RUNNING,
            started_at=job.started_at or now,
            metadata_status=MetadataStatus.IN_PROGRESS if metadata_on else MetadataStatus.NOT_STARTED,
            metadata_started_at=(job.metadata_started_at or now) if metadata_on else None,
        )
        await self.emitter.started(job_id, job.scan_path, media_type.value, bool(job.batch_scan))
        log.info("Scan started", path=job.scan_path, media_type=media_type.value, resume=resume)

        totals = SaveStats(
            added=job.added_count or 0,
            updated=job.updated_count or 0,
            skipped=job.skipped_count or 0,
            failed=job.failed_count or 0,
            metadata_success=job.metadata_success_count or 0,
            metadata_failed=job.metadata_failed_count or 0,
        )
        ctx = ScanContext(
            collection_id=job.library_id,
            metadata=self.metadata,
            update_existing=bool(job.update_existing),
            fetch_metadata=metadata_on,
            is_cancelled=is_cancelled,
        )

        try:
            if job.batch_scan:
                await self._run_batched(job, ctx, totals, resume)
            else:
                await self._run_full(job, ctx, totals, resume)
        except ScanCancelled:
            log.info("Scan cancelled")
            await self._finish(job_id, ScanJobStatus.CANCELLED, totals, metadata_on)
            await self.emitter.cancelled(job_id)
            return totals
        except asyncio.CancelledError:
            log.info("Scan task cancelled")
            await self._finish(job_id, ScanJobStatus.CANCELLED, totals, metadata_on)
            raise
        except Exception as e:
            message = str(e) or e.__class__.__name__
            log.error("Scan failed", error=message, fatal=isinstance(e, FatalScanError), exc_info=True)
            await self._finish(job_id, ScanJobStatus.FAILED, totals, metadata_on, error=message)
            await self.emitter.error(message, scan_job_id=job_id)
            return totals

        await self._finish(job_id, ScanJobStatus.COMPLETED, totals, metadata_on)
        job = await self.get_job(job_id)
        await self.emitter.complete(job_id, {
            "added": totals.added,
            "updated": totals.updated,
            "skipped": totals.skipped,
            "failed": totals.failed,
            "unparsable": totals.unparsable,
            "folders_processed": len(job.processed_folders or []),
            "folders_failed": len(job.failed_folders or []),
            "metadata_success": totals.metadata_success,
            "metadata_failed": totals.metadata_failed,
        })
        log.info("Scan completed", **totals.as_dict())
        return totals

    async def _finish(
        self,
        job_id: int,
        status: ScanJobStatus,
        totals: SaveStats,
        metadata_on: bool,
        error: Optional[str] = None,
    ) -> None:
        fields = self._counter_fields(totals)
        fields.update(status=status, completed_at=utcnow())
        if error:
            fields["error_message"] = error
        if metadata_on:
            all_failed = totals.metadata_failed > 0 and totals.metadata_success == 0
            if status == ScanJobStatus.COMPLETED and not all_failed:
                fields["metadata_status"] = MetadataStatus.COMPLETED
            else:
                fields["metadata_status"] = MetadataStatus.FAILED
            fields["metadata_completed_at"] = utcnow()
        await self._update_job(job_id, **fields)

    @staticmethod
    def _counter_fields(totals: SaveStats) -> Dict:
        return {
            "added_count": totals.added,
            "updated_count": totals.updated,
            "skipped_count": totals.skipped,
            "failed_count": totals.failed,
            "metadata_success_count": totals.metadata_success,
            "metadata_failed_count": totals.metadata_failed,
        }

    def _progress_callback(self, job_id: int, phase: str = "saving"):
        async def _report(current: int, total: int, item: str) -> None:
            if current % SCAN.PROGRESS_EVERY == 0 or current == total:
                await self.emitter.progress(job_id, phase, current, total, message=f"Saving {item}")
        return _report

    async def _remaining(self, media_type: MediaType, files: List[ScannedFile]) -> List[ScannedFile]:
        """Files not yet represented by a persisted row."""
        async with get_db_session() as db:
            done = await MediaRepository(db).persisted_paths(media_type, (f.path for f in files))
        return [f for f in files if f.path not in done]

    async def _run_full(self, job: ScanJob, ctx: ScanContext, totals: SaveStats, resume: bool) -> None:
        media_type = MediaType(job.media_type)
        await self.emitter.progress(job.id, "discovering", message=f"Walking {job.scan_path}")
        files = await walk(job.scan_path, media_type, self.scan_config)
        await self._update_job(job.id, scanned_count=len(files))
        ctx.check_cancelled()

        if resume and not ctx.update_existing:
            before = len(files)
            files = await self._remaining(media_type, files)
            logger.info("Resuming scan", scan_job_id=job.id, remaining=len(files), already_saved=before - len(files))

        await self.emitter.progress(job.id, "scanning", 0, len(files), message=f"Found {len(files)} files")
        if ctx.fetch_metadata:
            await self.emitter.progress(job.id, "fetching-metadata", 0, len(files))

        ctx.on_progress = self._progress_callback(job.id)
        stats = await get_processor(media_type).save_to_database(files, ctx)
        totals.merge(stats)

    async def _run_batched(self, job: ScanJob, ctx: ScanContext, totals: SaveStats, resume: bool) -> None:
        media_type = MediaType(job.media_type)
        processed: List[str] = list(job.processed_folders or [])
        failed: List[str] = list(job.failed_folders or [])
        scanned = job.scanned_count or 0

        if resume and (processed or failed or job.pending_folders):
            # Failed folders get another attempt on resume
            pending = list(job.pending_folders or []) + failed
            failed = []
            logger.info("Resuming batched scan", scan_job_id=job.id, pending=len(pending), processed=len(processed))
        else:
            await self.emitter.progress(job.id, "discovering", message=f"Discovering folders in {job.scan_path}")
            pending = await discover_folders(job.scan_path, self.scan_config)
            processed, scanned = [], 0
            await self._update_job(
                job.id,
                total_folders=len(pending),
                pending_folders=list(pending),
                processed_folders=[],
                failed_folders=[],
                scanned_count=0,
            )

        total_folders = len(pending) + len(processed)
        batch_size = job.batch_size or default_batch_size(media_type, self.scan_config)
        processor = get_processor(media_type)
        batches = batch_folders(pending, batch_size)

        for batch_number, batch in enumerate(batches, start=1):
            for folder in batch:
                ctx.check_cancelled()
                try:
                    files = await walk_folder(job.scan_path, folder, media_type, self.scan_config)
                except (OSError, TimeoutError) as e:
                    logger.warning("Folder failed", scan_job_id=job.id, folder=folder, error=str(e))
                    failed.append(folder)
                    pending.remove(folder)
                    continue

                if resume and not ctx.update_existing:
                    files = await self._remaining(media_type, files)

                scanned += len(files)
                await self.emitter.progress(
                    job.id, "scanning",
                    len(processed) + len(failed), total_folders,
                    message=f"Scanning {folder}",
                )
                stats = await processor.save_to_database(files, ctx)
                totals.merge(stats)
                processed.append(folder)
                pending.remove(folder)

            await self._update_job(
                job.id,
                pending_folders=list(pending),
                processed_folders=list(processed),
                failed_folders=list(failed),
                total_folders=total_folders,
                scanned_count=scanned,
                last_batch_at=utcnow(),
                **self._counter_fields(totals),
            )
            await self.emitter.progress(
                job.id, "batch-complete",
                len(processed) + len(failed), total_folders,
                message=f"Batch {batch_number}/{len(batches)} complete",
                batch=batch_number,
                total_batches=len(batches),
                added=totals.added,
                updated=totals.updated,
                skipped=totals.skipped,
            )

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def cleanup_stale_jobs(
        self,
        stale_hours: Optional[float] = None,
        retention_days: Optional[float] = None,
        exclude_ids: Iterable[int] = (),
    ) -> CleanupResult:
        """
        Fail jobs stuck in PENDING/RUNNING past ``stale_hours`` of inactivity
        and delete FAILED/CANCELLED jobs older than ``retention_days``.
        """
        config = self.scan_config
        stale_hours = config.stale_job_hours if stale_hours is None else stale_hours
        retention_days = config.failed_job_retention_days if retention_days is None else retention_days
        exclude_ids = list(exclude_ids)
        now = utcnow()
        stale_before = now - timedelta(hours=stale_hours)
        retain_after = now - timedelta(days=retention_days)
        result = CleanupResult()

        last_activity = func.coalesce(ScanJob.last_batch_at, ScanJob.started_at, ScanJob.created_at)
        async with get_db_session() as db:
            query = select(ScanJob).where(
                ScanJob.status.in_(ACTIVE_STATUSES),
                last_activity < stale_before,
            )
            if exclude_ids:
                query = query.where(ScanJob.id.notin_(exclude_ids))

            for job in (await db.scalars(query)).all():
                last_seen = job.last_batch_at or job.started_at or job.created_at
                job.status = ScanJobStatus.FAILED
                job.completed_at = now
                job.error_message = (
                    f"Scan job marked as failed due to inactivity (timeout: {stale_hours:g} hours). "
                    f"Last activity: {last_seen.isoformat() if last_seen else 'unknown'}"
                )
                if job.metadata_status == MetadataStatus.IN_PROGRESS:
                    job.metadata_status = MetadataStatus.FAILED
                result.stale_failed += 1
                logger.warning("Marked stale scan job as failed", scan_job_id=job.id, path=job.scan_path)

            removal = delete(ScanJob).where(
                ScanJob.status.in_((ScanJobStatus.FAILED, ScanJobStatus.CANCELLED)),
                or_(
                    ScanJob.completed_at < retain_after,
                    and_(ScanJob.completed_at.is_(None), ScanJob.created_at < retain_after),
                ),
            )
            if exclude_ids:
                removal = removal.where(ScanJob.id.notin_(exclude_ids))
            deleted = await db.execute(removal)
            result.removed = deleted.rowcount or 0
            await db.commit()

        if result.total:
            logger.info("Cleaned up scan jobs", stale_failed=result.stale_failed, removed=result.removed)
        return result
