"""FastAPI bridge exposing a shared ComfyClient over HTTP."""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from comfy_jobs.core.handlers import (
    ApiResponse,
    handle_cancel_job,
    handle_clear_queue,
    handle_get_connection,
    handle_get_job,
    handle_health,
    handle_post_connection,
    handle_shutdown,
    handle_submit,
    handle_system_stats,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    yield
    # Cleanup on shutdown
    await handle_shutdown()


app = FastAPI(title="Comfy Jobs Bridge", version="0.1.0", lifespan=lifespan)


# Request Models

class ConnectionRequest(BaseModel):
    comfy_url: Optional[str] = None


class SubmitRequest(BaseModel):
    prompt: dict


def _json_response(resp: ApiResponse) -> JSONResponse:
    return JSONResponse(content=resp.data, status_code=resp.status)


# Health & Connection Endpoints

@app.get("/api/health")
async def health():
    return _json_response(await handle_health())


@app.get("/api/connection")
async def get_connection():
    return _json_response(await handle_get_connection())


@app.post("/api/connection")
async def post_connection(request: ConnectionRequest):
    return _json_response(await handle_post_connection(request.comfy_url))


@app.get("/api/system_stats")
async def system_stats():
    return _json_response(await handle_system_stats())


# Job Endpoints

@app.post("/api/jobs")
async def submit_job(request: SubmitRequest):
    """Queue a raw API-format workflow."""
    return _json_response(await handle_submit(request.prompt))


@app.get("/api/jobs/{job_id}")
async def get_job(job_id: str):
    return _json_response(await handle_get_job(job_id))


@app.post("/api/jobs/{job_id}/cancel")
async def cancel_job(job_id: str):
    return _json_response(await handle_cancel_job(job_id))


@app.post("/api/queue/clear")
async def clear_queue():
    """Clear the backend queue, failing every tracked job."""
    return _json_response(await handle_clear_queue())
