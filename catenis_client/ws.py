"""WebSocket connection helpers for the Catenis notification service."""

from __future__ import annotations

import asyncio

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidStatus,
    InvalidURI,
    WebSocketException,
)
from websockets.sync.client import ClientConnection as SyncClientConnection
from websockets.sync.client import connect as sync_connect

from .channel import AUTH_REJECTED_STATUSES, NOTIFY_WS_PROTOCOL
from .errors import (
    CatenisTimeout,
    ChannelHandshakeError,
    TransportError,
)


def _rejected_status(err: InvalidStatus) -> int | None:
    response = getattr(err, "response", None)
    return getattr(response, "status_code", None)


def _handshake_error(err: InvalidHandshake | InvalidURI) -> Exception:
    if isinstance(err, InvalidStatus):
        status = _rejected_status(err)
        if status in AUTH_REJECTED_STATUSES:
            return ChannelHandshakeError(
                f"Notification channel upgrade rejected with HTTP {status}"
            )
        return TransportError(f"Notification channel upgrade failed with HTTP {status}")
    if isinstance(err, InvalidURI):
        return ChannelHandshakeError(f"Invalid notification channel URL: {err}")
    return TransportError(f"WebSocket handshake failed: {err}")


async def connect_websocket(
    url: str,
    *,
    headers: dict[str, str] | None = None,
    ping_interval: float | None = 20,
    timeout: float = 15.0,
) -> ClientConnection:
    """Connect to the Catenis notification WebSocket endpoint.

    Args:
        url: ``ws://`` or ``wss://`` URL of the notification endpoint.
        headers: Extra upgrade request headers (signature headers).
        ping_interval: Interval for ping frames.
        timeout: Connection timeout.

    Raises:
        ChannelHandshakeError: The server refused our credentials.
        CatenisTimeout: The connection did not complete in time.
        TransportError: Any other network or handshake failure.
    """
    try:
        return await asyncio.wait_for(
            websockets.connect(
                url,
                additional_headers=headers,
                subprotocols=[NOTIFY_WS_PROTOCOL],
                ping_interval=ping_interval,
                close_timeout=5,
                max_size=None,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise CatenisTimeout("WebSocket connection timed out") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise _handshake_error(err) from err
    except (OSError, WebSocketException) as err:
        raise TransportError("WebSocket connection failed") from err


def connect_websocket_sync(
    url: str,
    *,
    headers: dict[str, str] | None = None,
    timeout: float = 15.0,
) -> SyncClientConnection:
    """Blocking counterpart of ``connect_websocket``."""
    try:
        return sync_connect(
            url,
            additional_headers=headers,
            subprotocols=[NOTIFY_WS_PROTOCOL],
            open_timeout=timeout,
            close_timeout=5,
            max_size=None,
        )
    except TimeoutError as err:
        raise CatenisTimeout("WebSocket connection timed out") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise _handshake_error(err) from err
    except (OSError, WebSocketException) as err:
        raise TransportError("WebSocket connection failed") from err
