"""Tests for the FastAPI bridge routes."""
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient, ASGITransport

from comfy_jobs.core.errors import ComfyConnectionError, RequestError
from comfy_jobs.core.handlers import bridge
from comfy_jobs.fastapi_app import app
from conftest import executing

WORKFLOW = {"4": {"class_type": "CheckpointLoaderSimple", "inputs": {}}}


@pytest.fixture
def api():
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_health(api):
    async with api:
        response = await api.get("/api/health")
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_connection_status_disconnected(api):
    async with api:
        response = await api.get("/api/connection")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "disconnected"
    assert data["connected"] is False


@pytest.mark.asyncio
async def test_post_connection_failure_sets_error(api):
    failing = AsyncMock(side_effect=ComfyConnectionError("connection refused"))
    with patch("comfy_jobs.core.handlers.ComfyClient.connect", failing):
        async with api:
            response = await api.post("/api/connection", json={
                "comfy_url": "http://localhost:8188",
            })

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "error"
    assert "connection refused" in data["error"]
    assert bridge.client is None


@pytest.mark.asyncio
async def test_post_connection_success(api):
    with patch("comfy_jobs.core.handlers.ComfyClient.connect", AsyncMock()):
        async with api:
            response = await api.post("/api/connection", json={
                "comfy_url": "https://gpu-box:8188",
            })

    data = response.json()
    assert data["status"] == "connected"
    assert bridge.client is not None
    assert bridge.client.endpoint == "gpu-box:8188"
    assert bridge.client.secure is True


@pytest.mark.asyncio
async def test_submit_requires_connection(api):
    async with api:
        response = await api.post("/api/jobs", json={"prompt": WORKFLOW})
    assert response.status_code == 503


@pytest.mark.asyncio
async def test_unknown_job_is_404(api):
    async with api:
        response = await api.get("/api/jobs/nope")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_submit_track_and_complete(api, client):
    bridge.client = client

    async with api:
        response = await api.post("/api/jobs", json={"prompt": WORKFLOW})
        assert response.status_code == 200
        job_id = response.json()["job_id"]
        assert response.json()["status"] == "queued"

        await client.transport.handle_frame(executing(job_id, "4"))
        status = await api.get(f"/api/jobs/{job_id}")
        assert status.json()["status"] == "running"

        await client.transport.handle_frame(executing(job_id, None))
        status = await api.get(f"/api/jobs/{job_id}")
        assert status.json()["status"] == "completed"


@pytest.mark.asyncio
async def test_submit_with_node_errors_is_400(api, client):
    bridge.client = client
    client._requests.post = AsyncMock(return_value={
        "prompt_id": "p-1",
        "node_errors": {"4": {"errors": [{"type": "value_not_in_list"}]}},
    })

    async with api:
        response = await api.post("/api/jobs", json={"prompt": WORKFLOW})

    assert response.status_code == 400
    data = response.json()
    assert data["status"] == "failed"
    assert "4" in data["errors"]


@pytest.mark.asyncio
async def test_cancel_job(api, client):
    bridge.client = client

    async with api:
        job_id = (await api.post("/api/jobs", json={"prompt": WORKFLOW})).json()["job_id"]
        response = await api.post(f"/api/jobs/{job_id}/cancel")

    assert response.status_code == 200
    assert response.json() == {"job_id": job_id, "cancelled": True, "status": "cancelled"}


@pytest.mark.asyncio
async def test_clear_queue_fails_jobs(api, client):
    bridge.client = client

    async with api:
        job_id = (await api.post("/api/jobs", json={"prompt": WORKFLOW})).json()["job_id"]
        response = await api.post("/api/queue/clear")
        status = await api.get(f"/api/jobs/{job_id}")

    assert response.json() == {"cleared": True, "failed_jobs": 1}
    assert status.json()["status"] == "failed"


@pytest.mark.asyncio
async def test_system_stats_failure_is_502(api, client):
    bridge.client = client
    client._requests.get = AsyncMock(
        side_effect=RequestError(500, "Internal Server Error", "http://localhost:8188/system_stats")
    )

    async with api:
        response = await api.get("/api/system_stats")

    assert response.status_code == 502
    assert response.json()["status"] == 500
