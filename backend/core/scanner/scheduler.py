"""
Scan scheduler.

At most one scan runs at a time; later submissions wait in a FIFO queue
and start from the completion handler of the scan before them.
"""

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Optional, Set

import structlog

from backend.core.scanner.errors import ScanJobStateError
from backend.core.scanner.pipeline import CleanupResult, ScanOptions, ScanPipeline

logger = structlog.get_logger(__name__)


@dataclass
class QueuedScan:
    job_id: int
    path: str
    resume: bool = False


@dataclass
class SubmitResult:
    scan_job_id: int
    queued: bool
    queue_position: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scan_job_id": self.scan_job_id,
            "queued": self.queued,
            "queue_position": self.queue_position,
        }


class ScanScheduler:
    """Owns the single running scan task and the queue behind it."""

    def __init__(self, pipeline: ScanPipeline):
        self.pipeline = pipeline
        self._queue: Deque[QueuedScan] = deque()
        self._active: Optional[QueuedScan] = None
        self._task: Optional[asyncio.Task] = None
        self._cancel_requested: Set[int] = set()
        self._resuming: Set[int] = set()
        self._shutting_down = False

    @property
    def is_running(self) -> bool:
        return self._active is not None

    @property
    def active_job_id(self) -> Optional[int]:
        return self._active.job_id if self._active else None

    @property
    def queued_job_ids(self):
        return [item.job_id for item in self._queue]

    async def submit(self, path: str, options: ScanOptions) -> SubmitResult:
        """Validate and record a job, then start it or queue it."""
        job = await self.pipeline.create_job(path, options)
        return await self._enqueue(QueuedScan(job.id, job.scan_path))

    async def resume(self, job_id: int) -> SubmitResult:
        if job_id == self.active_job_id or job_id in self.queued_job_ids or job_id in self._resuming:
            raise ScanJobStateError(f"Scan job {job_id} is already running or queued")
        # Held across the awaits below so a concurrent resume of the same job is refused
        self._resuming.add(job_id)
        try:
            job = await self.pipeline.prepare_resume(job_id)
            return await self._enqueue(QueuedScan(job.id, job.scan_path, resume=True))
        finally:
            self._resuming.discard(job_id)

    async def _enqueue(self, item: QueuedScan) -> SubmitResult:
        if self._shutting_down:
            raise ScanJobStateError("Scanner is shutting down")
        # No await between the check and the start: the event loop cannot
        # interleave another submission here.
        if self._active is None:
            self._start(item)
            return SubmitResult(item.job_id, queued=False)

        self._queue.append(item)
        position = len(self._queue)
        logger.info("Scan queued", scan_job_id=item.job_id, queue_position=position)
        await self.pipeline.emitter.queued(item.job_id, item.path, position)
        return SubmitResult(item.job_id, queued=True, queue_position=position)

    def _start(self, item: QueuedScan) -> None:
        self._active = item
        self._task = asyncio.create_task(
            self.pipeline.run(
                item.job_id,
                resume=item.resume,
                is_cancelled=lambda: item.job_id in self._cancel_requested,
            ),
            name=f"scan-{item.job_id}",
        )
        self._task.add_done_callback(self._on_done)
        logger.info("Scan task started", scan_job_id=item.job_id, resume=item.resume)

    def _on_done(self, task: asyncio.Task) -> None:
        finished = self._active
        self._active = None
        self._task = None
        if finished is not None:
            self._cancel_requested.discard(finished.job_id)

        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Scan task crashed",
                scan_job_id=finished.job_id if finished else None,
                error=str(task.exception()),
            )

        if self._queue and not self._shutting_down:
            self._start(self._queue.popleft())

    async def cancel(self, job_id: int) -> str:
        """
        Cancel a running or queued job.

        Returns ``"cancelling"`` for the active job (it stops at the next
        file boundary) or ``"cancelled"`` for a queued one.
        """
        if job_id == self.active_job_id:
            self._cancel_requested.add(job_id)
            logger.info("Cancellation requested", scan_job_id=job_id)
            return "cancelling"

        for item in list(self._queue):
            if item.job_id == job_id:
                self._queue.remove(item)
                await self.pipeline.mark_cancelled(job_id)
                logger.info("Queued scan cancelled", scan_job_id=job_id)
                return "cancelled"

        job = await self.pipeline.get_job(job_id)
        raise ScanJobStateError(f"Scan job {job_id} is {job.status.value} and not running")

    def status(self) -> Dict[str, Any]:
        return {
            "active": self.is_running,
            "active_scan_job_id": self.active_job_id,
            "queue_length": len(self._queue),
            "queued_job_ids": self.queued_job_ids,
        }

    async def cleanup_stale_jobs(self, stale_hours: Optional[float] = None) -> CleanupResult:
        """Stale sweep that leaves the active and queued jobs alone."""
        exclude = self.queued_job_ids + list(self._resuming)
        if self._active is not None:
            exclude.append(self._active.job_id)
        return await self.pipeline.cleanup_stale_jobs(stale_hours=stale_hours, exclude_ids=exclude)

    async def wait_idle(self) -> None:
        """Wait until the active scan and everything queued behind it finish."""
        while self._task is not None:
            task = self._task
            await asyncio.wait({task})
            # Let the done-callback run and start the next queued scan
            await asyncio.sleep(0)

    async def shutdown(self) -> None:
        self._shutting_down = True
        for item in list(self._queue):
            await self.pipeline.mark_cancelled(item.job_id)
        self._queue.clear()

        task = self._task
        if task is not None:
            logger.info("Stopping active scan", scan_job_id=self.active_job_id)
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Scan scheduler stopped")
