"""Core module containing the job client and framework-agnostic bridge logic."""
from .state import state, ConnectionStatus, AppState, parse_endpoint
from .errors import (
    ComfyError,
    ProtocolError,
    SubmissionError,
    RequestError,
    InvalidStateError,
    ComfyConnectionError,
)
from .types import JobStatus, JobObserver, ResourceType, StreamEvent
from .registry import JobRegistry, RegistryEntry
from .request_manager import AiohttpRequestManager
from .transport import ComfyTransport
from .job import ComfyJob
from .client import ComfyClient

__all__ = [
    # State
    "state",
    "ConnectionStatus",
    "AppState",
    "parse_endpoint",
    # Errors
    "ComfyError",
    "ProtocolError",
    "SubmissionError",
    "RequestError",
    "InvalidStateError",
    "ComfyConnectionError",
    # Types
    "JobStatus",
    "JobObserver",
    "ResourceType",
    "StreamEvent",
    # Client
    "JobRegistry",
    "RegistryEntry",
    "AiohttpRequestManager",
    "ComfyTransport",
    "ComfyJob",
    "ComfyClient",
]
