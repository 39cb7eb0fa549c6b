"""Queueing behaviour of the scan scheduler, with the pipeline stubbed out."""

import asyncio
from types import SimpleNamespace

import pytest

from backend.core.scanner.errors import ScanJobNotFoundError, ScanJobStateError
from backend.core.scanner.pipeline import ScanOptions
from backend.core.scanner.scheduler import ScanScheduler
from backend.db.models import MediaType, ScanJobStatus

OPTIONS = ScanOptions(media_type=MediaType.MOVIE)


class StubEmitter:
    def __init__(self):
        self.queued_events = []

    async def queued(self, scan_job_id, path, queue_position):
        self.queued_events.append((scan_job_id, queue_position))


class StubPipeline:
    """Runs block until the test releases them."""

    def __init__(self):
        self.emitter = StubEmitter()
        self.jobs = {}
        self.started = []
        self.finished = []
        self.cancelled = []
        self.release = {}

    async def create_job(self, path, options):
        job = SimpleNamespace(id=len(self.jobs) + 1, scan_path=path, status=ScanJobStatus.PENDING)
        self.jobs[job.id] = job
        self.release[job.id] = asyncio.Event()
        return job

    async def prepare_resume(self, job_id):
        job = await self.get_job(job_id)
        # Real resumes touch the database and filesystem before returning
        await asyncio.sleep(0)
        self.release.setdefault(job_id, asyncio.Event()).clear()
        return job

    async def get_job(self, job_id):
        if job_id not in self.jobs:
            raise ScanJobNotFoundError(job_id)
        return self.jobs[job_id]

    async def run(self, job_id, resume=False, is_cancelled=lambda: False):
        self.started.append(job_id)
        while not self.release[job_id].is_set():
            if is_cancelled():
                self.jobs[job_id].status = ScanJobStatus.CANCELLED
                self.finished.append(job_id)
                return
            await asyncio.sleep(0.01)
        self.jobs[job_id].status = ScanJobStatus.COMPLETED
        self.finished.append(job_id)

    async def mark_cancelled(self, job_id):
        self.jobs[job_id].status = ScanJobStatus.CANCELLED
        self.cancelled.append(job_id)

    async def cleanup_stale_jobs(self, stale_hours=None, retention_days=None, exclude_ids=()):
        self.excluded = list(exclude_ids)


@pytest.fixture
def pipeline():
    return StubPipeline()


@pytest.fixture
async def scheduler(pipeline):
    scheduler = ScanScheduler(pipeline)
    yield scheduler
    for event in pipeline.release.values():
        event.set()
    await scheduler.shutdown()


class TestSubmit:
    async def test_first_scan_starts_immediately(self, scheduler, pipeline):
        result = await scheduler.submit("/media/movies", OPTIONS)

        assert result.to_dict() == {"scan_job_id": 1, "queued": False, "queue_position": None}
        await asyncio.sleep(0)
        assert pipeline.started == [1]
        assert scheduler.is_running

    async def test_later_scans_queue_in_order(self, scheduler, pipeline):
        await scheduler.submit("/media/a", OPTIONS)
        second = await scheduler.submit("/media/b", OPTIONS)
        third = await scheduler.submit("/media/c", OPTIONS)

        assert (second.queued, second.queue_position) == (True, 1)
        assert (third.queued, third.queue_position) == (True, 2)
        assert pipeline.emitter.queued_events == [(2, 1), (3, 2)]
        assert scheduler.status() == {
            "active": True,
            "active_scan_job_id": 1,
            "queue_length": 2,
            "queued_job_ids": [2, 3],
        }

    async def test_queue_drains_fifo(self, scheduler, pipeline):
        for path in ("/media/a", "/media/b", "/media/c"):
            await scheduler.submit(path, OPTIONS)

        for job_id in (1, 2, 3):
            pipeline.release[job_id].set()
        await scheduler.wait_idle()

        assert pipeline.started == [1, 2, 3]
        assert pipeline.finished == [1, 2, 3]
        assert not scheduler.is_running
        assert scheduler.status()["queue_length"] == 0

    async def test_only_one_scan_runs_at_a_time(self, scheduler, pipeline):
        await scheduler.submit("/media/a", OPTIONS)
        await scheduler.submit("/media/b", OPTIONS)
        await asyncio.sleep(0.05)

        assert pipeline.started == [1]


class TestCancel:
    async def test_cancel_queued_job(self, scheduler, pipeline):
        await scheduler.submit("/media/a", OPTIONS)
        await scheduler.submit("/media/b", OPTIONS)

        assert await scheduler.cancel(2) == "cancelled"
        assert pipeline.cancelled == [2]
        assert scheduler.queued_job_ids == []

        pipeline.release[1].set()
        await scheduler.wait_idle()
        assert pipeline.started == [1]

    async def test_cancel_active_job(self, scheduler, pipeline):
        await scheduler.submit("/media/a", OPTIONS)
        await scheduler.submit("/media/b", OPTIONS)

        assert await scheduler.cancel(1) == "cancelling"
        pipeline.release[2].set()
        await scheduler.wait_idle()

        assert pipeline.jobs[1].status == ScanJobStatus.CANCELLED
        assert pipeline.started == [1, 2]

    async def test_cancel_finished_job_is_a_state_error(self, scheduler, pipeline):
        await scheduler.submit("/media/a", OPTIONS)
        pipeline.release[1].set()
        await scheduler.wait_idle()

        with pytest.raises(ScanJobStateError):
            await scheduler.cancel(1)

    async def test_cancel_unknown_job(self, scheduler):
        with pytest.raises(ScanJobNotFoundError):
            await scheduler.cancel(99)


class TestResume:
    async def test_resume_rejects_running_job(self, scheduler, pipeline):
        await scheduler.submit("/media/a", OPTIONS)

        with pytest.raises(ScanJobStateError):
            await scheduler.resume(1)

    async def test_resume_queues_behind_active(self, scheduler, pipeline):
        await scheduler.submit("/media/a", OPTIONS)
        pipeline.release[1].set()
        await scheduler.wait_idle()
        await scheduler.submit("/media/b", OPTIONS)

        result = await scheduler.resume(1)

        assert (result.queued, result.queue_position) == (True, 1)

    async def test_concurrent_resume_of_one_job_runs_once(self, scheduler, pipeline):
        await scheduler.submit("/media/a", OPTIONS)
        pipeline.release[1].set()
        await scheduler.wait_idle()

        results = await asyncio.gather(scheduler.resume(1), scheduler.resume(1), return_exceptions=True)

        assert len([r for r in results if isinstance(r, ScanJobStateError)]) == 1
        pipeline.release[1].set()
        await scheduler.wait_idle()
        assert pipeline.started == [1, 1]


class TestMaintenance:
    async def test_cleanup_excludes_active_and_queued(self, scheduler, pipeline):
        await scheduler.submit("/media/a", OPTIONS)
        await scheduler.submit("/media/b", OPTIONS)

        await scheduler.cleanup_stale_jobs()

        assert sorted(pipeline.excluded) == [1, 2]

    async def test_shutdown_cancels_queue(self, pipeline):
        scheduler = ScanScheduler(pipeline)
        await scheduler.submit("/media/a", OPTIONS)
        await scheduler.submit("/media/b", OPTIONS)

        await scheduler.shutdown()

        assert pipeline.cancelled == [2]
        assert not scheduler.is_running
        with pytest.raises(ScanJobStateError):
            await scheduler.submit("/media/c", OPTIONS)
