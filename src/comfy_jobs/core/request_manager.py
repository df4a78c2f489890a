"""
Aiohttp request manager used for every REST call of the ComfyUI client.
Owns the aiohttp session, which the websocket transport shares.
"""

import asyncio
import json
import logging
import ssl

import aiohttp
import certifi

from .errors import RequestError

logger = logging.getLogger(__name__)


class AiohttpRequestManager:
    """
    Thin async HTTP layer. Success yields the decoded body, any response
    with status >= 400 raises RequestError. Nothing is retried.
    """

    def __init__(self, secure: bool = False):
        self._secure = secure
        self._session: aiohttp.ClientSession | None = None

    @property
    def closed(self) -> bool:
        return self._session is None or self._session.closed

    async def ensure_session(self) -> aiohttp.ClientSession:
        """Lazy session creation with proper SSL context."""
        if self._session is None or self._session.closed:
            if self._secure:
                # Create SSL context using certifi's CA bundle
                ssl_context = ssl.create_default_context(cafile=certifi.where())
                connector = aiohttp.TCPConnector(ssl=ssl_context)
            else:
                connector = aiohttp.TCPConnector()
            self._session = aiohttp.ClientSession(connector=connector)
        return self._session

    async def get(
        self,
        url: str,
        params: dict | None = None,
        timeout: float | None = None,
    ) -> dict | list | bytes:
        """
        GET request, auto-parses JSON responses.

        Args:
            url: Request URL
            params: Query parameters
            timeout: Optional timeout in seconds

        Returns:
            Parsed JSON or raw bytes
        """
        session = await self.ensure_session()
        client_timeout = aiohttp.ClientTimeout(total=timeout) if timeout else None

        try:
            async with session.get(
                url, params=params, timeout=client_timeout
            ) as response:
                return await self._handle_response(response, url)
        except aiohttp.ClientError as e:
            raise RequestError(0, str(e), url) from e
        except asyncio.TimeoutError as e:
            raise RequestError(
                0, "Connection timed out, the server took too long to respond", url
            ) from e

    async def post(
        self,
        url: str,
        data: dict | None = None,
        params: dict | None = None,
        timeout: float | None = None,
    ) -> dict | list | bytes:
        """
        POST JSON request.

        Args:
            url: Request URL
            data: JSON data to send, or None for an empty body
            params: Query parameters
            timeout: Optional timeout in seconds

        Returns:
            Parsed JSON or raw bytes
        """
        session = await self.ensure_session()
        client_timeout = aiohttp.ClientTimeout(total=timeout) if timeout else None

        try:
            async with session.post(
                url, json=data, params=params, timeout=client_timeout
            ) as response:
                return await self._handle_response(response, url)
        except aiohttp.ClientError as e:
            raise RequestError(0, str(e), url) from e
        except asyncio.TimeoutError as e:
            raise RequestError(
                0, "Connection timed out, the server took too long to respond", url
            ) from e

    async def post_form(
        self,
        url: str,
        form: aiohttp.FormData,
        params: dict | None = None,
    ) -> dict | list | bytes:
        """POST a multipart form (file uploads)."""
        session = await self.ensure_session()

        try:
            async with session.post(url, data=form, params=params) as response:
                return await self._handle_response(response, url)
        except aiohttp.ClientError as e:
            raise RequestError(0, str(e), url) from e

    async def _handle_response(
        self, response: aiohttp.ClientResponse, url: str
    ) -> dict | list | bytes:
        """Handle response, parsing JSON if appropriate."""
        if response.status >= 400:
            try:
                data = await response.json()
            except (json.JSONDecodeError, aiohttp.ContentTypeError):
                data = None
            logger.debug("Request to %s failed: %s %s", url, response.status, response.reason)
            raise RequestError(
                response.status,
                response.reason or "",
                url,
                data=data if isinstance(data, dict) else None,
            )

        content_type = response.headers.get("Content-Type", "")
        if "application/json" in content_type:
            return await response.json()
        else:
            return await response.read()

    async def close(self):
        """Close the session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
