"""Comfy Jobs - submit workflows to ComfyUI and track them over its event stream."""
from .core import (
    ComfyClient,
    ComfyJob,
    JobObserver,
    JobStatus,
    ResourceType,
    ComfyError,
    ProtocolError,
    SubmissionError,
    RequestError,
    InvalidStateError,
    ComfyConnectionError,
)

__all__ = [
    "ComfyClient",
    "ComfyJob",
    "JobObserver",
    "JobStatus",
    "ResourceType",
    "ComfyError",
    "ProtocolError",
    "SubmissionError",
    "RequestError",
    "InvalidStateError",
    "ComfyConnectionError",
]
