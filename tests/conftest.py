"""Pytest configuration and fixtures for catenis_client tests."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from catenis_client.config import ClientOptions
from catenis_client.credentials import DeviceCredentials


@pytest.fixture
def credentials() -> DeviceCredentials:
    """Device credentials used throughout the tests."""
    return DeviceCredentials("d1", "k")


@pytest.fixture
def local_options() -> ClientOptions:
    """Options targeting a plain-HTTP local server without compression."""
    return ClientOptions(host="localhost:3000", secure=False, use_compression=False)


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession that does not decompress."""
    import aiohttp

    session = MagicMock(spec=aiohttp.ClientSession)
    session.auto_decompress = False
    session.closed = False
    return session


def create_mock_response(
    status: int = 200,
    read_data: bytes = b"",
    headers: dict[str, str] | None = None,
    reason: str = "OK",
) -> AsyncMock:
    """Create a configured mock aiohttp response.

    Args:
        status: HTTP status code
        read_data: Data to return from read() call
        headers: Response headers
        reason: HTTP reason phrase

    Returns:
        Configured AsyncMock response usable as an async context manager
    """
    response = AsyncMock()
    response.status = status
    response.reason = reason
    response.headers = headers or {}
    response.read.return_value = read_data

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response


class FakeAsyncWebSocket:
    """Scripted stand-in for a websockets asyncio ClientConnection.

    ``frames`` are returned by ``recv()``/iteration in order; once exhausted the
    connection behaves as closed by the peer (iteration ends), or raises
    ``ConnectionClosed`` with ``close_code`` when one is given.
    """

    def __init__(self, frames: list[Any], close_code: int | None = None) -> None:
        self._frames = list(frames)
        self._close_code = close_code
        self.sent: list[str] = []
        self.closed = False
        self._hold = asyncio.Event()
        self.hold_open = False

    async def send(self, message: str) -> None:
        self.sent.append(message)

    async def recv(self) -> Any:
        if self._frames:
            return self._frames.pop(0)
        if self.hold_open:
            await self._hold.wait()
        raise self._closed_error()

    def _closed_error(self) -> Exception:
        from websockets.exceptions import ConnectionClosedError
        from websockets.frames import Close

        rcvd = Close(self._close_code, "") if self._close_code is not None else None
        return ConnectionClosedError(rcvd, None)

    def __aiter__(self) -> FakeAsyncWebSocket:
        return self

    async def __anext__(self) -> Any:
        if self._frames:
            return self._frames.pop(0)
        if self.hold_open and not self.closed:
            await self._hold.wait()
        raise StopAsyncIteration

    async def close(self) -> None:
        self.closed = True
        self._hold.set()
