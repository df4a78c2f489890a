"""ComfyUI client: one event stream, a job registry and the REST endpoints.

Usage:
    async with ComfyClient("localhost:8188") as client:
        job = await client.submit(workflow, on_completed=print)
        await job.completion()
"""
import json
import logging
import uuid
from typing import Any, Optional, Union

import aiohttp
from pydantic import ValidationError

from .errors import ComfyConnectionError
from .job import ComfyJob
from .registry import JobRegistry, RegistryEntry
from .request_manager import AiohttpRequestManager
from .transport import ComfyTransport
from .types import ExecutingData, ExecutionStatus, JobObserver, ResourceType, StreamEvent

logger = logging.getLogger(__name__)


class ComfyClient:
    """A ComfyUI client, exposing job submission and the REST endpoints."""

    def __init__(
        self,
        endpoint: str,
        debug: bool = False,
        secure: bool = False,
        fail_on_disconnect: bool = False,
    ):
        """
        Args:
            endpoint: host[:port] of the ComfyUI server, without scheme.
            debug: log connection and ignored-event details.
            secure: use https/wss instead of http/ws.
            fail_on_disconnect: fail every tracked job if the stream drops.
                Otherwise they stay pending until an administrative call
                resolves them.
        """
        self.endpoint = endpoint.rstrip("/")
        self.debug = debug
        self.secure = secure
        self.fail_on_disconnect = fail_on_disconnect
        self.client_id: str = str(uuid.uuid4())
        self.registry = JobRegistry()
        self.queue_remaining: Optional[int] = None
        self._requests = AiohttpRequestManager(secure=secure)
        self.transport = ComfyTransport(
            self.endpoint,
            self.client_id,
            self._requests,
            self._dispatch,
            secure=secure,
            debug=debug,
            on_close=self._on_stream_lost,
        )

    @property
    def is_open(self) -> bool:
        return self.transport.is_open

    async def __aenter__(self) -> "ComfyClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def connect(self) -> None:
        """Open the event stream. Raises ComfyConnectionError on failure."""
        try:
            await self.transport.connect()
        except ComfyConnectionError:
            await self._requests.close()
            raise

    async def close(self) -> None:
        """Close the event stream and the HTTP session. Idempotent."""
        try:
            await self.transport.close()
        finally:
            await self._requests.close()

    # === Stream dispatch ===

    async def _dispatch(self, event: StreamEvent) -> None:
        if event.type == "status":
            try:
                status = ExecutionStatus.model_validate(event.data)
            except ValidationError as e:
                logger.debug("Dropping malformed status frame: %s", e)
                return
            self.queue_remaining = status.queue_remaining
            if self.debug:
                logger.debug("Status: %s", event.data)
            return

        entry = self.registry.get(event.data.get("prompt_id"))
        if entry is None:
            return

        if event.type == "executing":
            try:
                data = ExecutingData.model_validate(event.data)
            except ValidationError as e:
                logger.debug("Dropping malformed executing frame: %s", e)
                return
            if data.node is None:
                await entry.complete()
            else:
                await entry.update(data.node)
        elif event.type in ("execution_error", "execution_interrupted"):
            await entry.fail(event.data)

    async def _on_stream_lost(self) -> None:
        pending = len(self.registry)
        if not self.fail_on_disconnect:
            if pending:
                logger.warning(
                    "Event stream closed with %d job(s) still pending", pending
                )
            return
        logger.warning("Event stream closed, failing %d pending job(s)", pending)
        await self.registry.for_each_entry(
            lambda entry: entry.fail({"reason": "disconnected"})
        )

    # === Jobs ===

    def new_job(self, workflow: Any) -> ComfyJob:
        """Build a job for workflow without queueing it."""
        return ComfyJob(workflow)

    async def submit(
        self,
        workflow: Union[ComfyJob, Any],
        observer: Optional[JobObserver] = None,
        **callbacks,
    ) -> ComfyJob:
        """Queue a workflow (or an unsubmitted ComfyJob) and return its job.

        The workflow is the bare API-format prompt graph. It is wrapped as
        ``{"prompt": workflow, "client_id": ..., "prompt_id": ...}`` before
        posting, so a full ``/prompt`` body must not be passed here.
        """
        job = workflow if isinstance(workflow, ComfyJob) else ComfyJob(workflow)
        return await job.submit(self, observer, **callbacks)

    async def cancel(self, job: Union[ComfyJob, str]) -> bool:
        """Cancel a job, given the job or its prompt id."""
        if isinstance(job, ComfyJob):
            return await job.cancel()
        entry = self.registry.get(job)
        if entry is None:
            return False
        return await entry.job.cancel()

    # === Prompt ===

    async def get_prompt(self) -> dict:
        return await self._get("/prompt")

    async def post_prompt(self, workflow: Any, prompt_id: Optional[str] = None) -> dict:
        """POST a prompt graph wrapped in a ``/prompt`` body.

        The caller handles node errors in the response.
        """
        if not self.is_open:
            raise ComfyConnectionError("Not connected to ComfyUI")
        data = {"prompt": workflow, "client_id": self.client_id}
        if prompt_id is not None:
            data["prompt_id"] = prompt_id
        return await self._post("/prompt", data)

    # === Queue ===

    async def get_queue(self) -> dict:
        return await self._get("/queue")

    async def clear_queue(self) -> Any:
        """Clear the backend queue and fail every tracked job."""
        result = await self._post("/queue", {"clear": True})
        await self.registry.for_each_entry(_force_error)
        return result

    async def delete_queue_entries(self, entries: list[str]) -> Any:
        """Delete queue entries and fail the matching tracked jobs."""
        result = await self.remove_queue_entries(entries)
        await self.registry.for_entries_matching(entries, _force_error)
        return result

    async def remove_queue_entries(self, entries: list[str]) -> Any:
        """Delete queue entries without touching tracked jobs."""
        return await self._post("/queue", {"delete": list(entries)})

    # === History ===

    async def get_history(self, prompt_id: Optional[str] = None) -> dict:
        return await self._get(f"/history/{prompt_id}" if prompt_id else "/history")

    async def clear_history(self) -> Any:
        # Tracked jobs aren't in the history until they finish
        return await self._post("/history", {"clear": True})

    async def delete_history_entries(self, entries: list[str]) -> Any:
        result = await self._post("/history", {"delete": list(entries)})
        await self.registry.for_entries_matching(entries, _force_error)
        return result

    # === System ===

    async def system_stats(self) -> dict:
        return await self._get("/system_stats")

    async def embeddings(self) -> list:
        return await self._get("/embeddings")

    async def extensions(self) -> list:
        return await self._get("/extensions")

    async def object_info(self, node_class: Optional[str] = None) -> dict:
        return await self._get(f"/object_info/{node_class}" if node_class else "/object_info")

    async def interrupt(self) -> Any:
        return await self._post("/interrupt")

    async def free(self, unload_models: bool = False, free_memory: bool = False) -> Any:
        return await self._post(
            "/free", {"unload_models": unload_models, "free_memory": free_memory}
        )

    # === Files ===

    async def upload_image(
        self,
        content: bytes,
        filename: str,
        overwrite: bool = False,
        subfolder: str = "",
        type: ResourceType = ResourceType.input,
    ) -> dict:
        form = self._upload_form(content, filename, overwrite, subfolder, type)
        return await self._requests.post_form(
            self._url("/upload/image"), form, params=self._params()
        )

    async def upload_mask(
        self,
        content: bytes,
        filename: str,
        original_ref: Union[dict, str, None] = None,
        overwrite: bool = False,
        subfolder: str = "",
        type: ResourceType = ResourceType.input,
    ) -> dict:
        form = self._upload_form(content, filename, overwrite, subfolder, type)
        if original_ref is not None:
            if not isinstance(original_ref, str):
                original_ref = json.dumps(original_ref)
            form.add_field("original_ref", original_ref)
        return await self._requests.post_form(
            self._url("/upload/mask"), form, params=self._params()
        )

    async def view(
        self,
        filename: str,
        subfolder: Optional[str] = None,
        type: Optional[ResourceType] = None,
        channel: Optional[str] = None,
        format: Optional[str] = None,
        quality: Optional[int] = None,
    ) -> bytes:
        """Download a rendered file.

        Args:
            channel: 'rgba', 'rgb' or 'a'.
            format: preview format ('jpg', 'png', 'webp'), with optional quality.
        """
        params = {"filename": filename}
        if subfolder:
            params["subfolder"] = subfolder
        if type is not None:
            params["type"] = ResourceType(type).value
        if format:
            params["preview"] = f"{format};{quality}" if quality else format
        if channel:
            params["channel"] = channel
        return await self._requests.get(self._url("/view"), params=self._params(**params))

    async def view_metadata(self, folder: str, filename: str) -> dict:
        return await self._get(f"/view_metadata/{folder}", filename=filename)

    # === Helpers ===

    def _url(self, path: str) -> str:
        return f"http{'s' if self.secure else ''}://{self.endpoint}{path}"

    def _params(self, **extra) -> dict:
        return {"clientId": self.client_id, **extra}

    async def _get(self, path: str, **params) -> Any:
        return await self._requests.get(self._url(path), params=self._params(**params))

    async def _post(self, path: str, data: Optional[dict] = None) -> Any:
        return await self._requests.post(self._url(path), data, params=self._params())

    @staticmethod
    def _upload_form(
        content: bytes,
        filename: str,
        overwrite: bool,
        subfolder: str,
        type: ResourceType,
    ) -> aiohttp.FormData:
        form = aiohttp.FormData()
        if overwrite:
            form.add_field("overwrite", "true")
        form.add_field("image", content, filename=filename)
        form.add_field("subfolder", subfolder)
        form.add_field("type", ResourceType(type).value)
        return form


async def _force_error(entry: RegistryEntry) -> None:
    # Jobs removed by a bulk operation fail with an empty error list
    await entry.fail([])
