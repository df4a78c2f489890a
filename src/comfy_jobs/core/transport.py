"""Websocket event stream shared by every job submitted through one client."""
import asyncio
import logging
from typing import Awaitable, Callable, Optional
from urllib.parse import urlencode

import aiohttp
from pydantic import ValidationError

from .errors import ComfyConnectionError, ProtocolError
from .request_manager import AiohttpRequestManager
from .types import StreamEvent

logger = logging.getLogger(__name__)

# Frame types forwarded to the dispatcher. Anything else is dropped.
DISPATCHED_TYPES = frozenset(
    {"status", "executing", "execution_error", "execution_interrupted"}
)

Dispatcher = Callable[[StreamEvent], Awaitable[None]]


def decode_frame(raw: str | bytes) -> StreamEvent:
    """Decode a text frame into a StreamEvent, raising ProtocolError if malformed."""
    try:
        return StreamEvent.model_validate_json(raw)
    except ValidationError as e:
        raise ProtocolError(f"Malformed frame: {e.error_count()} error(s)", raw) from e


class ComfyTransport:
    """Owns one websocket connection and feeds decoded events to a dispatcher.

    Frames are handled one at a time, in arrival order. Losing the connection
    only flips ``is_open``; pending jobs are left to whoever listens to
    ``on_close``.
    """

    def __init__(
        self,
        endpoint: str,
        client_id: str,
        requests: AiohttpRequestManager,
        dispatcher: Dispatcher,
        secure: bool = False,
        debug: bool = False,
        on_close: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.endpoint = endpoint
        self.client_id = client_id
        self.secure = secure
        self.debug = debug
        self._requests = requests
        self._dispatcher = dispatcher
        self._on_close = on_close
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._listener_task: Optional[asyncio.Task] = None
        self._is_open: bool = False
        self._closing: bool = False

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def url(self) -> str:
        scheme = "wss" if self.secure else "ws"
        return f"{scheme}://{self.endpoint}/ws?{urlencode({'clientId': self.client_id})}"

    async def connect(self) -> None:
        """Open the websocket and start listening."""
        if self._is_open:
            return
        await self._discard_stale()
        session = await self._requests.ensure_session()
        self._closing = False

        try:
            self._ws = await session.ws_connect(self.url, max_msg_size=2**30)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            self._is_open = False
            raise ComfyConnectionError(f"Failed to open event stream at {self.url}: {e}") from e

        self._is_open = True
        if self.debug:
            logger.info(
                "Connection at %s started with identity %s", self.endpoint, self.client_id
            )
        self._listener_task = asyncio.create_task(self._listen())

    async def close(self) -> None:
        """Close the websocket. Safe to call more than once."""
        self._closing = True
        self._is_open = False

        if self._listener_task is asyncio.current_task():
            # Closed from a callback running inside the listener
            self._listener_task = None
        elif self._listener_task:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            self._listener_task = None

        if self._ws:
            await self._ws.close()
            self._ws = None

    async def _discard_stale(self) -> None:
        # Left behind when the previous stream ended without close()
        task, self._listener_task = self._listener_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self._ws is not None:
            await self._ws.close()
            self._ws = None

    async def _listen(self) -> None:
        """Read frames until the socket closes."""
        assert self._ws is not None
        ws = self._ws
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self.handle_frame(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    # Preview images, not tracked
                    if self.debug:
                        logger.debug("Ignoring binary frame (%d bytes)", len(msg.data))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    if self.debug:
                        logger.error("Error in the ComfyUI event stream: %s", ws.exception())
                    break
        except aiohttp.ClientError as e:
            if self.debug:
                logger.error("Error in the ComfyUI event stream: %s", e)
        finally:
            self._is_open = False
            if self.debug:
                logger.info("Connection with the ComfyUI backend closed")

        if not self._closing and self._on_close is not None:
            await self._on_close()

    async def handle_frame(self, raw: str | bytes) -> None:
        """Decode one frame and hand it to the dispatcher."""
        try:
            event = decode_frame(raw)
        except ProtocolError as e:
            logger.debug("Dropping frame: %s", e)
            return

        if event.type not in DISPATCHED_TYPES:
            if self.debug:
                logger.debug("Ignoring %s event: %s", event.type, event.data)
            return

        try:
            await self._dispatcher(event)
        except Exception:
            logger.exception("Handler for %s event failed", event.type)
