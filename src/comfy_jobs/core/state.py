import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import urlsplit


DEFAULT_COMFY_URL = "http://localhost:8188"


class ConnectionStatus(str, Enum):
    disconnected = "disconnected"
    connecting = "connecting"
    connected = "connected"
    error = "error"


@dataclass
class AppState:
    connection_status: ConnectionStatus = ConnectionStatus.disconnected
    comfy_url: str = DEFAULT_COMFY_URL
    error_message: Optional[str] = None


def env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def get_comfy_url(request_url: Optional[str] = None) -> str:
    """Get ComfyUI URL with fallback to env var and default."""
    if request_url:
        return request_url
    return os.getenv("COMFY_URL", DEFAULT_COMFY_URL)


def parse_endpoint(url: str) -> tuple[str, bool]:
    """Split a ComfyUI URL into (host:port, secure).

    "https://host:8188/" -> ("host:8188", True); a bare "host:8188" is insecure.
    """
    if "://" not in url:
        return url.rstrip("/"), False
    parts = urlsplit(url)
    endpoint = (parts.netloc + parts.path).rstrip("/")
    return endpoint, parts.scheme in ("https", "wss")


# Global application state
state = AppState()
