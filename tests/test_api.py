"""HTTP surface: scan control, job snapshots and settings."""

import httpx
import pytest

from backend.main import app, lifespan
from backend.utils.config import get_config


@pytest.fixture(autouse=True)
def allow_nested_roots(app_config):
    app_config.scan.broad_root_max_depth = 0


@pytest.fixture
async def client(db_engine):
    async with lifespan(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            yield client


async def start_scan(client, path, **options):
    options.setdefault("mediaType", "MOVIE")
    return await client.post("/api/scan", json={"path": str(path), "options": options})


async def scan_to_completion(client, path, **options):
    response = await start_scan(client, path, **options)
    assert response.status_code == 202, response.text
    await app.state.scan_scheduler.wait_idle()
    return response.json()["scan_job_id"]


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/api/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["scan_active"] is False
        assert body["metadata_available"] is False

    async def test_root(self, client):
        response = await client.get("/")
        assert response.json()["message"] == "Dester API"


class TestStartScan:
    async def test_accepted_and_completes(self, client, media_root, tree):
        tree(media_root, {"Inception (2010).mkv": 10})

        response = await start_scan(client, media_root)

        assert response.status_code == 202
        body = response.json()
        assert body["queued"] is False
        assert body["path"] == str(media_root)

        await app.state.scan_scheduler.wait_idle()
        job = (await client.get(f"/api/scan/job/{body['scan_job_id']}")).json()
        assert job["status"] == "COMPLETED"
        assert job["added_count"] == 1
        assert job["is_active"] is False
        assert job["is_queued"] is False

    async def test_camel_case_batch_options(self, client, media_root, tree):
        tree(media_root, {"A (2000)/A.mkv": 1, "B (2001)/B.mkv": 1, "C (2002)/C.mkv": 1})

        job_id = await scan_to_completion(client, media_root, batchScan=True, batchSize=2, collectionName="Films")

        job = (await client.get(f"/api/scan/job/{job_id}")).json()
        assert job["batch_scan"] is True
        assert job["batch_size"] == 2
        assert job["total_folders"] == 3
        assert job["processed_folders"] == 3
        assert job["progress_percent"] == 100.0

    async def test_system_root_rejected(self, client):
        response = await start_scan(client, "/")

        assert response.status_code == 400
        assert "recommendation" in response.json()["detail"]

    async def test_missing_path_is_404(self, client, tmp_path):
        response = await start_scan(client, tmp_path / "nowhere")
        assert response.status_code == 404

    async def test_unknown_media_type_is_422(self, client, media_root):
        response = await start_scan(client, media_root, mediaType="PODCAST")
        assert response.status_code == 422

    async def test_require_metadata_without_provider(self, client, media_root, tree):
        tree(media_root, {"Inception (2010).mkv": 10})

        response = await start_scan(client, media_root, requireMetadata=True)

        assert response.status_code == 400
        assert "metadata provider" in response.json()["detail"]["message"]

    async def test_host_path_is_mapped(self, client, media_root, tree):
        tree(media_root, {"Inception (2010).mkv": 10})
        response = await client.put(
            "/api/settings/path-mappings",
            json=[{"host_path": "/srv/nas/movies", "container_path": str(media_root)}],
        )
        assert response.status_code == 200

        response = await start_scan(client, "/srv/nas/movies")

        assert response.status_code == 202
        assert response.json()["path"] == str(media_root)
        await app.state.scan_scheduler.wait_idle()


class TestJobs:
    async def test_unknown_job(self, client):
        assert (await client.get("/api/scan/job/999")).status_code == 404
        assert (await client.post("/api/scan/job/999/cancel")).status_code == 404
        assert (await client.post("/api/scan/resume/999")).status_code == 404

    async def test_completed_job_conflicts(self, client, media_root, tree):
        tree(media_root, {"Inception (2010).mkv": 10})
        job_id = await scan_to_completion(client, media_root)

        assert (await client.post(f"/api/scan/job/{job_id}/cancel")).status_code == 409
        assert (await client.post(f"/api/scan/resume/{job_id}")).status_code == 409

    async def test_queue_when_idle(self, client):
        response = await client.get("/api/scan/queue")

        assert response.json() == {
            "active": False,
            "active_scan_job_id": None,
            "queue_length": 0,
            "queued_job_ids": [],
        }

    async def test_cleanup_stale_jobs(self, client):
        response = await client.post("/api/scan/cleanup-stale-jobs", json={"stale_hours": 2})

        assert response.status_code == 200
        assert response.json() == {"count": 0, "stale_marked_failed": 0, "removed": 0}

    async def test_extensions(self, client):
        body = (await client.get("/api/scan/extensions")).json()

        assert ".mkv" in body["MOVIE"]
        assert ".flac" in body["MUSIC"]
        assert ".cbz" in body["COMIC"]


class TestSettings:
    async def test_api_key_is_masked(self, client):
        response = await client.put("/api/settings/metadata", json={"tmdb": {"api_key": "secret"}})
        assert response.status_code == 200

        body = (await client.get("/api/settings")).json()

        assert body["metadata"]["tmdb"]["api_key"] == "***"
        assert body["metadata"]["tmdb"]["is_configured"] is True
        assert get_config().metadata.tmdb.api_key == "secret"

    async def test_masked_key_is_not_saved(self, client):
        await client.put("/api/settings/metadata", json={"tmdb": {"api_key": "secret"}})

        await client.put("/api/settings/metadata", json={"tmdb": {"api_key": "***", "language": "de-DE"}})

        tmdb = get_config().metadata.tmdb
        assert tmdb.api_key == "secret"
        assert tmdb.language == "de-DE"

    async def test_scan_settings(self, client):
        response = await client.put("/api/settings/scan", json={"tv_batch_size": 3})

        assert response.json()["scan"]["tv_batch_size"] == 3
        assert get_config().scan.tv_batch_size == 3
