"""Framework-agnostic request handlers for the bridge API.

These handlers contain the bridge logic without any framework-specific code
and share one ComfyClient between requests.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from .client import ComfyClient
from .errors import ComfyConnectionError, ComfyError, RequestError
from .job import ComfyJob
from .state import ConnectionStatus, env_flag, get_comfy_url, parse_endpoint, state

logger = logging.getLogger(__name__)


@dataclass
class ApiResponse:
    """Standard API response wrapper."""
    data: dict
    status: int = 200


@dataclass
class Bridge:
    """The client the bridge talks through and the jobs it submitted."""
    client: Optional[ComfyClient] = None
    jobs: dict[str, ComfyJob] = field(default_factory=dict)

    @property
    def is_connected(self) -> bool:
        return self.client is not None and self.client.is_open

    async def reset(self) -> None:
        if self.client is not None:
            await self.client.close()
        self.client = None
        self.jobs.clear()


bridge = Bridge()


def _not_connected() -> ApiResponse:
    return ApiResponse(data={"error": "Not connected to ComfyUI"}, status=503)


def _request_failed(e: RequestError) -> ApiResponse:
    return ApiResponse(
        data={"error": str(e), "status": e.status, "reason": e.reason},
        status=502,
    )


def job_summary(job: ComfyJob) -> dict:
    return {
        "job_id": job.id,
        "status": job.status.value,
        "errors": job.errors,
    }


async def handle_health() -> ApiResponse:
    """Handle health check request."""
    return ApiResponse(data={"status": "ok"})


async def handle_get_connection() -> ApiResponse:
    return ApiResponse(data={
        "status": state.connection_status.value,
        "comfy_url": state.comfy_url,
        "error": state.error_message,
        "connected": bridge.is_connected,
        "client_id": bridge.client.client_id if bridge.client else None,
    })


async def handle_post_connection(comfy_url: Optional[str] = None) -> ApiResponse:
    """Replace the shared client with one connected to comfy_url."""
    url = get_comfy_url(comfy_url)
    endpoint, secure = parse_endpoint(url)
    await bridge.reset()

    state.comfy_url = url
    state.connection_status = ConnectionStatus.connecting
    client = ComfyClient(
        endpoint,
        debug=env_flag("COMFY_DEBUG"),
        secure=secure,
        fail_on_disconnect=env_flag("COMFY_FAIL_ON_DISCONNECT"),
    )
    try:
        await client.connect()
        bridge.client = client
        state.connection_status = ConnectionStatus.connected
        state.error_message = None
        logger.info("Connected to ComfyUI at %s", url)
    except ComfyError as e:
        state.connection_status = ConnectionStatus.error
        state.error_message = str(e)
        logger.error("Failed to connect to ComfyUI: %s", e)

    return await handle_get_connection()


async def handle_submit(workflow: dict) -> ApiResponse:
    """Queue a raw API-format workflow."""
    if not bridge.is_connected:
        return _not_connected()
    assert bridge.client is not None

    try:
        job = await bridge.client.submit(workflow)
    except RequestError as e:
        return _request_failed(e)
    except ComfyConnectionError:
        return _not_connected()

    if job.id is None:
        return ApiResponse(data=job_summary(job), status=400)
    bridge.jobs[job.id] = job
    return ApiResponse(data=job_summary(job))


async def handle_get_job(job_id: str) -> ApiResponse:
    job = bridge.jobs.get(job_id)
    if job is None:
        return ApiResponse(data={"error": "Job not found"}, status=404)
    return ApiResponse(data=job_summary(job))


async def handle_cancel_job(job_id: str) -> ApiResponse:
    if not bridge.is_connected:
        return _not_connected()
    job = bridge.jobs.get(job_id)
    if job is None:
        return ApiResponse(data={"error": "Job not found"}, status=404)

    try:
        cancelled = await job.cancel()
    except RequestError as e:
        return _request_failed(e)
    return ApiResponse(data={"job_id": job_id, "cancelled": cancelled, "status": job.status.value})


async def handle_clear_queue() -> ApiResponse:
    if not bridge.is_connected:
        return _not_connected()
    assert bridge.client is not None

    tracked = len(bridge.client.registry)
    try:
        await bridge.client.clear_queue()
    except RequestError as e:
        return _request_failed(e)
    return ApiResponse(data={"cleared": True, "failed_jobs": tracked})


async def handle_system_stats() -> ApiResponse:
    if not bridge.is_connected:
        return _not_connected()
    assert bridge.client is not None

    try:
        stats: Any = await bridge.client.system_stats()
    except RequestError as e:
        return _request_failed(e)
    return ApiResponse(data=stats)


async def handle_shutdown() -> None:
    await bridge.reset()
    state.connection_status = ConnectionStatus.disconnected
