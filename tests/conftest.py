import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from comfy_jobs.core.client import ComfyClient
from comfy_jobs.core.handlers import bridge
from comfy_jobs.core.state import state, ConnectionStatus, DEFAULT_COMFY_URL


@pytest.fixture(autouse=True)
def reset_state():
    """Reset global state before each test."""
    state.connection_status = ConnectionStatus.disconnected
    state.comfy_url = DEFAULT_COMFY_URL
    state.error_message = None
    bridge.client = None
    bridge.jobs.clear()
    yield


async def echo_post(url, data=None, params=None, timeout=None):
    """Fake backend: accept every prompt under the id the client sent."""
    if url.endswith("/prompt"):
        return {"prompt_id": data["prompt_id"], "number": 0, "node_errors": {}}
    return b""


@pytest.fixture
def client():
    """A ComfyClient with an open stream and a mocked request manager."""
    client = ComfyClient("localhost:8188")
    client.transport._is_open = True
    client._requests = MagicMock()
    client._requests.get = AsyncMock(return_value={})
    client._requests.post = AsyncMock(side_effect=echo_post)
    client._requests.post_form = AsyncMock(return_value={"name": "image.png"})
    client._requests.close = AsyncMock()
    return client


def frame(type_: str, **data) -> str:
    return json.dumps({"type": type_, "data": data})


def executing(prompt_id, node) -> str:
    return frame("executing", prompt_id=prompt_id, node=node)


def posted(client, path: str) -> list:
    """Bodies of every POST the client sent to path."""
    return [
        c.args[1] if len(c.args) > 1 else c.kwargs.get("data")
        for c in client._requests.post.call_args_list
        if c.args[0].endswith(path)
    ]
