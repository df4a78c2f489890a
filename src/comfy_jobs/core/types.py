"""Shared types for jobs, resources and stream frames."""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    building = "building"
    queued = "queued"
    running = "running"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in (JobStatus.queued, JobStatus.running)


TERMINAL_STATUSES = frozenset(
    {JobStatus.completed, JobStatus.failed, JobStatus.cancelled}
)


class ResourceType(str, Enum):
    """Folders ComfyUI reads and writes files in."""
    input = "input"
    output = "output"
    temp = "temp"


# Callbacks may be plain functions or coroutine functions.
CompletedCallback = Callable[[Any], Union[None, Awaitable[None]]]
CancelledCallback = Callable[[Any], Union[None, Awaitable[None]]]
UpdateCallback = Callable[[Any, Any], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[Any, Any], Union[None, Awaitable[None]]]


@dataclass
class JobObserver:
    """Callbacks for each transition of a job's lifecycle.

    on_completed(job): the job finished executing.
    on_cancelled(job): the job was removed from the queue by cancel().
    on_update(job, node): a node started executing; may fire many times.
    on_error(job, errors): the job failed; errors is the raw backend payload.
    """
    on_completed: Optional[CompletedCallback] = None
    on_cancelled: Optional[CancelledCallback] = None
    on_update: Optional[UpdateCallback] = None
    on_error: Optional[ErrorCallback] = None


class StreamEvent(BaseModel):
    """A JSON frame received on the websocket."""
    type: str
    data: dict = Field(default_factory=dict)


class ExecutingData(BaseModel):
    """Payload of an ``executing`` frame. A null node means the prompt is done."""
    prompt_id: Optional[str] = None
    node: Optional[Union[str, int]] = None


class ExecutionStatus(BaseModel):
    """Payload of a ``status`` frame."""
    sid: Optional[str] = None
    status: dict = Field(default_factory=dict)

    @property
    def queue_remaining(self) -> Optional[int]:
        return self.status.get("exec_info", {}).get("queue_remaining")
