"""Asyncio Catenis API client."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import aiohttp

from .api import ApiMethod
from .client import ClientBase
from .config import ClientOptions
from .credentials import DeviceCredentials
from .http import AsyncHttpTransport
from .notification import NotificationEventName
from .protocol import parse_response
from .signing import QueryParams
from .ws_client import AsyncWsNotifyChannel

_LOGGER = logging.getLogger(__name__)


class AsyncCatenisClient(ClientBase):
    """Asyncio Catenis API client.

    Every endpoint wrapper returns a coroutine:

        async with AsyncCatenisClient(credentials) as client:
            result = await client.log_message("Hello world")
    """

    def __init__(
        self,
        credentials: DeviceCredentials | tuple[str, str] | None = None,
        options: ClientOptions | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        super().__init__(credentials, options)
        self._transport = AsyncHttpTransport(self.options, session)

    async def _invoke(
        self,
        api_method: ApiMethod,
        *,
        url_params: Mapping[str, str] | None = None,
        query: QueryParams | None = None,
        body: Any = None,
    ) -> Any:
        """Send one API call and return the ``data`` member of its response.

        Raises:
            ApiError: The server answered with a non-2xx status.
            TransportError: The request could not be completed.
            DecodeError: The response was not the expected JSON envelope.
        """
        request = self.prepare(api_method, url_params=url_params, query=query, body=body)
        _LOGGER.debug("[%s] %s %s", self.device_id, request.method, request.path)
        response = await self._transport.send(request)
        _LOGGER.debug(
            "[%s] %s %s -> %s", self.device_id, request.method, request.path, response.status
        )
        return parse_response(response)

    invoke = _invoke

    def new_ws_notify_channel(
        self, event: NotificationEventName | str, **kwargs: Any
    ) -> AsyncWsNotifyChannel:
        """Create an asyncio notification channel; await ``open()`` to connect."""
        device_id, event = self._channel_args(event)
        return AsyncWsNotifyChannel(
            device_id,
            event,
            lambda: self.prepare_notify_request(event),
            **kwargs,
        )

    async def close(self) -> None:
        await self._transport.close()

    async def __aenter__(self) -> AsyncCatenisClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
