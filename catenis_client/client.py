"""Blocking Catenis API client."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import requests

from .api import NOTIFY_WS, ApiMethod, CatenisApi
from .config import BaseOrigin, ClientOptions, resolve_origin
from .credentials import DeviceCredentials
from .errors import ConfigurationError
from .http_sync import HttpTransport
from .notification import NotificationEventName
from .protocol import PreparedRequest, merge_url_params, parse_response, prepare_request
from .signing import QueryParams
from .ws_sync import WsNotifyChannel

_LOGGER = logging.getLogger(__name__)


def _credentials(
    credentials: DeviceCredentials | tuple[str, str] | None,
) -> DeviceCredentials | None:
    if credentials is None or isinstance(credentials, DeviceCredentials):
        return credentials
    return DeviceCredentials.from_pair(credentials)


class ClientBase(CatenisApi):
    """Request preparation shared by the blocking and asyncio clients."""

    def __init__(
        self,
        credentials: DeviceCredentials | tuple[str, str] | None = None,
        options: ClientOptions | None = None,
    ) -> None:
        self.credentials = _credentials(credentials)
        self.options = options or ClientOptions()
        self.origin: BaseOrigin = resolve_origin(self.options)

    @property
    def device_id(self) -> str | None:
        return self.credentials.device_id if self.credentials else None

    def prepare(
        self,
        api_method: ApiMethod,
        *,
        url_params: Mapping[str, str] | None = None,
        query: QueryParams | None = None,
        body: Any = None,
        timestamp: str | None = None,
        ws: bool = False,
    ) -> PreparedRequest:
        """Build the (signed) request for an endpoint.

        Raises:
            ConfigurationError: If the endpoint must be signed and the client
                has no device credentials.
        """
        if api_method.signed and self.credentials is None:
            raise ConfigurationError(
                f"Device credentials are required to call {api_method.name}"
            )
        return prepare_request(
            api_method.http_method,
            merge_url_params(api_method.path, url_params),
            origin=self.origin,
            version=self.options.version,
            credentials=self.credentials if api_method.signed else None,
            query=query,
            body=body,
            use_compression=self.options.use_compression,
            compress_threshold=self.options.compress_threshold,
            timestamp=timestamp,
            ws=ws,
        )

    def prepare_notify_request(
        self, event: NotificationEventName | str
    ) -> PreparedRequest:
        """Signed WebSocket upgrade request for a notification event.

        Called for every connection attempt so each handshake carries a fresh timestamp.
        """
        event = NotificationEventName(event)
        return self.prepare(NOTIFY_WS, url_params={"event_name": event.value}, ws=True)

    def _channel_args(
        self, event: NotificationEventName | str
    ) -> tuple[str, NotificationEventName]:
        if self.credentials is None:
            raise ConfigurationError(
                "Device credentials are required to open a notification channel"
            )
        return self.credentials.device_id, NotificationEventName(event)


class CatenisClient(ClientBase):
    """Blocking Catenis API client.

    Usage:
        with CatenisClient(("d8YpQ7jgPBJEkBrnvp58", secret)) as client:
            result = client.log_message("Hello world")
    """

    def __init__(
        self,
        credentials: DeviceCredentials | tuple[str, str] | None = None,
        options: ClientOptions | None = None,
        *,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(credentials, options)
        self._transport = HttpTransport(self.options, session)

    def _invoke(
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
        response = self._transport.send(request)
        _LOGGER.debug(
            "[%s] %s %s -> %s", self.device_id, request.method, request.path, response.status
        )
        return parse_response(response)

    invoke = _invoke

    def new_ws_notify_channel(
        self, event: NotificationEventName | str, **kwargs: Any
    ) -> WsNotifyChannel:
        """Create a blocking notification channel; call ``open()`` to connect."""
        device_id, event = self._channel_args(event)
        return WsNotifyChannel(
            device_id,
            event,
            lambda: self.prepare_notify_request(event),
            **kwargs,
        )

    def close(self) -> None:
        self._transport.close()

    def __enter__(self) -> CatenisClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
