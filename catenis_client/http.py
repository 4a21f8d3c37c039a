"""Asyncio HTTP transport for the Catenis API, built on aiohttp."""

from __future__ import annotations

import logging

import aiohttp
from yarl import URL

from .config import ClientOptions
from .errors import CatenisTimeout, TransportError
from .protocol import PreparedRequest, RawResponse

_LOGGER = logging.getLogger(__name__)


class AsyncHttpTransport:
    """Send prepared requests over an ``aiohttp.ClientSession``.

    Transport failures are mapped to ``TransportError``/``CatenisTimeout`` and
    are never retried here. A session passed in by the caller is left open by
    ``close()``; a session created by the transport is closed.
    """

    def __init__(
        self,
        options: ClientOptions,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._options = options
        self._session = session
        self._owns_session = session is None

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=None,
            sock_connect=self._options.connect_timeout,
            sock_read=self._options.read_timeout,
        )

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            # Response bodies are decoded by the shared protocol layer
            self._session = aiohttp.ClientSession(auto_decompress=False)
            self._owns_session = True
        return self._session

    async def send(self, request: PreparedRequest) -> RawResponse:
        """Send a request and return the raw response."""
        session = self._get_session()
        try:
            async with session.request(
                request.method,
                URL(request.url, encoded=True),
                headers=request.headers,
                data=request.body or None,
                timeout=self._timeout(),
            ) as resp:
                body = await resp.read()
                headers = dict(resp.headers)
                if not self._owns_session and getattr(session, "auto_decompress", True):
                    # Already decoded by aiohttp
                    headers = {
                        key: value
                        for key, value in headers.items()
                        if key.lower() != "content-encoding"
                    }
                return RawResponse(
                    status=resp.status,
                    reason=resp.reason,
                    headers=headers,
                    body=body,
                )
        except TimeoutError as err:
            raise CatenisTimeout(
                f"{request.method} {request.path} request timed out"
            ) from err
        except aiohttp.ClientError as err:
            _LOGGER.debug("%s %s failed: %s", request.method, request.path, err)
            raise TransportError(
                f"{request.method} {request.path} request failed: {err}"
            ) from err

    async def close(self) -> None:
        """Close the underlying session if this transport created it."""
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None
