"""Errors raised by the ComfyUI job client."""


class ComfyError(Exception):
    """Base class for every error raised by this package."""


class ProtocolError(ComfyError):
    """A stream frame could not be decoded."""

    def __init__(self, message: str, frame: str | bytes | None = None):
        self.frame = frame
        super().__init__(message)


class SubmissionError(ComfyError):
    """The backend rejected a workflow with per-node validation errors."""

    def __init__(self, node_errors: dict, error: dict | str | None = None):
        self.node_errors = node_errors
        self.error = error
        super().__init__(f"Workflow rejected: {len(node_errors)} node(s) with errors")


class RequestError(ComfyError):
    """Request error with status code and details.

    A status of 0 means the request never produced an HTTP response.
    """

    def __init__(
        self,
        status: int,
        reason: str,
        url: str,
        data: dict | None = None,
    ):
        self.status = status
        self.reason = reason
        self.url = url
        self.data = data
        super().__init__(f"{status} {reason}".strip())

    def __str__(self):
        return f"{self.status} {self.reason} ({self.url})"


class InvalidStateError(ComfyError):
    """An operation was called on a job in a state that doesn't allow it."""


class ComfyConnectionError(ComfyError, ConnectionError):
    """The event stream is closed or could not be opened."""
