"""A workflow submitted to ComfyUI and the lifecycle the event stream drives.

States: building -> queued -> running -> completed | failed | cancelled.
Only the stream (and cancel() / bulk queue operations on the client) move a
job past ``queued``. Terminal states are final.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING, Any, Optional

from .errors import ComfyConnectionError, InvalidStateError, RequestError, SubmissionError
from .registry import RegistryEntry, invoke_callback
from .types import JobObserver, JobStatus

if TYPE_CHECKING:
    from .client import ComfyClient

logger = logging.getLogger(__name__)


class ComfyJob:
    """A job instance to be deployed on a ComfyUI server."""

    def __init__(self, workflow: Any):
        """Build a new job detached from any client.

        Args:
            workflow: final API-format prompt graph to send to the backend.
        """
        self._workflow = workflow
        self._client: Optional[ComfyClient] = None
        self._id: Optional[str] = None
        self._registry_key: Optional[str] = None
        self._status = JobStatus.building
        self._submitted = False
        self._observer = JobObserver()
        self._errors: Any = None
        self._exception: Optional[Exception] = None
        self._done = asyncio.Event()

    def __repr__(self):
        return f"<ComfyJob id={self._id} status={self._status.value}>"

    @property
    def id(self) -> Optional[str]:
        """The prompt id. None until the job is queued."""
        return self._id

    @property
    def client(self) -> Optional[ComfyClient]:
        return self._client

    @property
    def status(self) -> JobStatus:
        return self._status

    @property
    def workflow(self) -> Any:
        return self._workflow

    @property
    def errors(self) -> Any:
        """Raw error payload reported by the backend, if the job failed."""
        return self._errors

    @property
    def exception(self) -> Optional[Exception]:
        return self._exception

    @property
    def done(self) -> bool:
        return self._status.is_terminal

    def clone(self) -> ComfyJob:
        """A fresh, unsubmitted job with the same workflow."""
        return ComfyJob(self._workflow)

    async def submit(
        self,
        client: ComfyClient,
        observer: Optional[JobObserver] = None,
        **callbacks,
    ) -> ComfyJob:
        """Queue this job on client.

        The workflow is the API-format prompt graph only. It is posted as
        ``{"prompt": workflow, "client_id": ..., "prompt_id": ...}``, so do not
        pass a full ``/prompt`` request body or it will be wrapped twice.

        Callbacks are given either as a JobObserver or as keyword arguments
        (on_completed, on_cancelled, on_update, on_error).

        Returns:
            this job, either queued or failed with the reported node errors.

        Raises:
            InvalidStateError: the job was already submitted.
            ComfyConnectionError: the client's event stream is not open.
            RequestError: the backend refused the request for another reason.
            TypeError: an unknown callback keyword. The job stays submittable.
        """
        if self._submitted or self._status is not JobStatus.building:
            raise InvalidStateError("Cannot queue a ComfyJob twice. Consider cloning.")
        observer = observer or JobObserver(**callbacks)
        if not client.is_open:
            raise ComfyConnectionError("Not connected to ComfyUI")

        self._submitted = True
        self._client = client
        self._observer = observer

        # Register before posting so events that beat the response aren't lost
        prompt_id = str(uuid.uuid4())
        self._registry_key = prompt_id
        client.registry.register(prompt_id, self._entry())

        try:
            result = await client.post_prompt(self._workflow, prompt_id=prompt_id)
        except RequestError as e:
            client.registry.unregister(prompt_id)
            if self._status.is_terminal:
                raise
            node_errors = (e.data or {}).get("node_errors")
            if node_errors:
                await self._reject(node_errors, (e.data or {}).get("error"))
                return self
            self._status = JobStatus.failed
            self._errors = e.data
            self._exception = e
            self._done.set()
            raise
        except BaseException as e:
            # Cancelled mid-request: the backend may or may not have the prompt
            client.registry.unregister(prompt_id)
            if not self._status.is_terminal:
                self._status = JobStatus.failed
                self._exception = e
                self._done.set()
            raise

        node_errors = result.get("node_errors") or {}
        if node_errors:
            client.registry.unregister(prompt_id)
            await self._reject(node_errors, result.get("error"))
            return self

        returned_id = result.get("prompt_id") or prompt_id
        if returned_id != prompt_id:
            logger.warning(
                "Prompt ID mismatch: expected %s, got %s", prompt_id, returned_id
            )
            # Keep the id an early stream event already assigned
            if self._id is None:
                entry = client.registry.unregister(prompt_id)
                if entry is not None:
                    self._registry_key = returned_id
                    client.registry.register(returned_id, entry)

        if self._id is None:
            self._id = returned_id
        if self._status is JobStatus.building:
            self._status = JobStatus.queued
        logger.info("Job %s queued", self._id)
        return self

    async def completion(self) -> JobStatus:
        """Wait until the job reaches a terminal state and return it."""
        if not self._submitted:
            raise InvalidStateError("Cannot wait on a job that was never queued")
        await self._done.wait()
        return self._status

    async def cancel(self) -> bool:
        """Remove this job from the backend queue.

        Returns:
            True if the job was cancelled, False if there was nothing to cancel.
        """
        if not self._status.is_active or self._client is None:
            return False

        await self._client.remove_queue_entries([self._registry_key])
        return await self._on_cancelled(self)

    def _entry(self) -> RegistryEntry:
        return RegistryEntry(
            job=self,
            handlers=JobObserver(
                on_completed=self._on_completed,
                on_cancelled=self._on_cancelled,
                on_update=self._on_update,
                on_error=self._on_error,
            ),
        )

    def _accept_early_event(self) -> None:
        # The stream can report on a prompt before its POST response arrives
        if self._status is JobStatus.building:
            self._status = JobStatus.queued
            self._id = self._registry_key

    def _finish(self, status: JobStatus) -> None:
        self._status = status
        if self._client is not None:
            self._client.registry.unregister(self._registry_key)
        self._done.set()

    async def _reject(self, node_errors: dict, error: Any) -> None:
        self._status = JobStatus.failed
        self._errors = node_errors
        self._exception = SubmissionError(node_errors, error)
        self._done.set()
        logger.info("Job rejected with %d node error(s)", len(node_errors))
        await invoke_callback(self._observer.on_error, self, node_errors)

    async def _on_update(self, job: ComfyJob, node: Any) -> None:
        if self._status.is_terminal:
            return
        self._accept_early_event()
        self._status = JobStatus.running
        await invoke_callback(self._observer.on_update, self, node)

    async def _on_completed(self, job: ComfyJob) -> None:
        if self._status.is_terminal:
            return
        self._accept_early_event()
        self._finish(JobStatus.completed)
        logger.info("Job %s completed", self._id)
        await invoke_callback(self._observer.on_completed, self)

    async def _on_error(self, job: ComfyJob, errors: Any) -> None:
        if self._status.is_terminal:
            return
        self._accept_early_event()
        self._errors = errors
        self._finish(JobStatus.failed)
        logger.info("Job %s failed", self._id)
        await invoke_callback(self._observer.on_error, self, errors)

    async def _on_cancelled(self, job: ComfyJob) -> bool:
        if self._status.is_terminal:
            return False
        self._finish(JobStatus.cancelled)
        logger.info("Job %s cancelled", self._id)
        await invoke_callback(self._observer.on_cancelled, self)
        return True
