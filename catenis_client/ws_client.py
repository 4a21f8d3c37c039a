"""Asyncio notification channel for Catenis push notifications."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed

from .channel import (
    CHANNEL_OPEN_MESSAGE,
    ChannelState,
    ChannelTrigger,
    NotifyChannelBase,
    build_auth_message,
    close_error,
    handshake_headers,
)
from .errors import (
    CatenisClientError,
    CatenisTimeout,
    ChannelConnectionLost,
    ChannelError,
    ChannelHandshakeError,
    ChannelStateError,
    TransportError,
)
from .notification import NotificationEvent
from .protocol import PreparedRequest
from .ws import connect_websocket

_LOGGER = logging.getLogger(__name__)

_STOP = object()


class AsyncEventQueue:
    """Bounded ``asyncio.Queue`` that drops the oldest item when full.

    Once closed, queued items are still handed out, then every ``get()``
    raises ``EOFError``.
    """

    def __init__(self, maxsize: int) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.dropped = 0

    def put(self, item: Any) -> None:
        if self._closed:
            return
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            _LOGGER.warning(
                "Notification queue full, dropped oldest event (%d dropped)",
                self.dropped,
            )
        self._queue.put_nowait(item)

    async def get(self) -> Any:
        if self._closed and self._queue.empty():
            raise EOFError("Notification queue closed")
        item = await self._queue.get()
        if item is _STOP:
            # Wake the next waiter too
            self._queue.put_nowait(_STOP)
            raise EOFError("Notification queue closed")
        return item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if not self._queue.full():
            self._queue.put_nowait(_STOP)

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()


class AsyncWsNotifyChannel(NotifyChannelBase):
    """Persistent notification channel driven by the asyncio event loop.

    Events are consumed either by iterating the channel or through an
    ``on_notify`` callback (plain function or coroutine function), not both.

    Usage:
        channel = client.new_ws_notify_channel(NotificationEventName.NEW_MSG_RECEIVED)
        await channel.open()
        async for event in channel:
            ...
        await channel.close()
    """

    def __init__(
        self,
        device_id: str,
        event: Any,
        request_factory: Callable[[], PreparedRequest],
        *,
        ping_interval: float | None = 20,
        **kwargs: Any,
    ) -> None:
        super().__init__(device_id, event, **kwargs)
        self._request_factory = request_factory
        self._ping_interval = ping_interval
        self._ws: ClientConnection | None = None
        self._queue: AsyncEventQueue | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._dispatch_task: asyncio.Task[None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._terminal_error: ChannelError | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def open(self) -> None:
        """Connect, authenticate and start receiving notifications.

        Raises:
            ChannelStateError: If the channel is not CLOSED.
            ChannelHandshakeError: The server rejected the credentials (terminal).
            TransportError: The first connection attempt failed; the channel
                returns to CLOSED and may be opened again.
        """
        self._machine.transition(ChannelTrigger.OPEN_REQUESTED)
        self._loop = asyncio.get_running_loop()
        if self._queue is None:
            self._queue = AsyncEventQueue(self._buffer_size)

        try:
            self._ws = await self._connect()
        except ChannelHandshakeError as err:
            self._terminate(err)
            raise
        except (TransportError, ChannelError) as err:
            if not self._machine.is_terminated:
                self._machine.transition(ChannelTrigger.CONNECT_FAILED)
            _LOGGER.warning("[%s] Notification channel open failed: %s", self.device_id, err)
            raise

        if self._machine.is_terminated:
            # Closed while the handshake was in flight
            await self._ws.close()
            self._ws = None
            return

        self._machine.transition(ChannelTrigger.HANDSHAKE_OK)
        _LOGGER.info("[%s] Notification channel open: %s", self.device_id, self.event)

        self._reader_task = asyncio.create_task(self._read_loop())
        if self._on_notify is not None:
            self._dispatch_task = asyncio.create_task(self._dispatch_loop())

    async def close(self) -> None:
        """Close the channel. Idempotent; halts any pending reconnect."""
        if self._machine.is_terminated and self._ws is None and self._reader_task is None:
            return
        self._machine.transition(ChannelTrigger.CLOSE_REQUESTED)
        _LOGGER.info("[%s] Closing notification channel", self.device_id)

        current = asyncio.current_task()
        for task in (self._reader_task, self._dispatch_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._reader_task = None
        self._dispatch_task = None

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await asyncio.wait_for(ws.close(), timeout=2.0)
            except TimeoutError:
                _LOGGER.warning("[%s] WebSocket close timed out", self.device_id)

        if self._queue is not None:
            self._queue.close()

    def close_threadsafe(self) -> None:
        """Request ``close()`` from a thread other than the event loop's."""
        if self._loop is None:
            self._machine.transition(ChannelTrigger.CLOSE_REQUESTED)
            return
        asyncio.run_coroutine_threadsafe(self.close(), self._loop)

    def __aiter__(self) -> AsyncIterator[NotificationEvent]:
        if self._on_notify is not None:
            raise ChannelStateError("Channel delivers events to its on_notify callback")
        if self._queue is None:
            raise ChannelStateError("Notification channel is not open")
        return self._iter_events()

    async def __aenter__(self) -> AsyncWsNotifyChannel:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def dropped_events(self) -> int:
        return self._queue.dropped if self._queue is not None else 0

    # -------------------------------------------------------------------------
    # Internal: connection
    # -------------------------------------------------------------------------

    async def _connect(self) -> ClientConnection:
        """Open the WebSocket, send the auth frame and wait for the open acknowledgement."""
        request = self._request_factory()
        _LOGGER.debug("[%s] Connecting to %s", self.device_id, request.path)
        ws = await connect_websocket(
            request.url,
            headers=handshake_headers(request),
            ping_interval=self._ping_interval,
            timeout=self._handshake_timeout,
        )
        try:
            await ws.send(build_auth_message(request))
            await asyncio.wait_for(self._await_open(ws), self._handshake_timeout)
        except TimeoutError as err:
            await ws.close()
            raise CatenisTimeout(
                "Notification channel open acknowledgement timed out"
            ) from err
        except ConnectionClosed as err:
            code = err.rcvd.code if err.rcvd is not None else None
            reason = err.rcvd.reason if err.rcvd is not None else ""
            raise close_error(code, reason) from err
        except BaseException:
            await ws.close()
            raise
        return ws

    @staticmethod
    async def _await_open(ws: ClientConnection) -> None:
        while True:
            frame = await ws.recv()
            if frame == CHANNEL_OPEN_MESSAGE:
                return
            _LOGGER.debug("Ignoring frame received before channel open")

    # -------------------------------------------------------------------------
    # Internal: event delivery and reconnection
    # -------------------------------------------------------------------------

    async def _read_loop(self) -> None:
        try:
            while not self._machine.is_terminated:
                ws = self._ws
                if ws is None:
                    return
                await self._receive(ws)
                if self._machine.is_terminated:
                    return

                error = ChannelConnectionLost("Notification channel connection lost")
                _LOGGER.warning("[%s] %s", self.device_id, error)
                self._ws = None
                self._machine.transition(ChannelTrigger.CONNECTION_LOST)
                self._report_error(error)
                if not await self._reconnect():
                    return
        except asyncio.CancelledError:
            _LOGGER.debug("[%s] Notification reader cancelled", self.device_id)
            raise

    async def _receive(self, ws: ClientConnection) -> None:
        try:
            async for frame in ws:
                if self._machine.state is not ChannelState.OPEN:
                    return
                event = self._decode_frame(frame)
                if event is not None and self._queue is not None:
                    self._queue.put(event)
        except ConnectionClosed as err:
            _LOGGER.debug("[%s] WebSocket closed: %s", self.device_id, err)

    async def _reconnect(self) -> bool:
        """Retry the handshake with capped exponential backoff until it succeeds.

        Returns:
            False if the channel was terminated while reconnecting.
        """
        while not self._machine.is_terminated:
            delay = self._backoff.next_delay()
            _LOGGER.info(
                "[%s] Reconnecting notification channel in %.1fs (attempt %d)",
                self.device_id,
                delay,
                self._backoff.attempts,
            )
            await asyncio.sleep(delay)
            if self._machine.is_terminated:
                return False
            try:
                ws = await self._connect()
            except ChannelHandshakeError as err:
                self._terminate(err)
                return False
            except (CatenisClientError, OSError) as err:
                _LOGGER.warning("[%s] Reconnect failed: %s", self.device_id, err)
                self._machine.transition(ChannelTrigger.CONNECT_FAILED)
                continue

            if self._machine.is_terminated:
                await ws.close()
                return False
            self._ws = ws
            self._backoff.reset()
            self._machine.transition(ChannelTrigger.HANDSHAKE_OK)
            _LOGGER.info("[%s] Notification channel reopened", self.device_id)
            return True
        return False

    def _terminate(self, error: ChannelHandshakeError) -> None:
        _LOGGER.error("[%s] %s", self.device_id, error)
        self._terminal_error = error
        if not self._machine.is_terminated:
            self._machine.transition(ChannelTrigger.HANDSHAKE_REJECTED)
        self._report_error(error)
        if self._queue is not None:
            self._queue.close()

    async def _dispatch_loop(self) -> None:
        assert self._queue is not None
        while True:
            try:
                item = await self._queue.get()
            except EOFError:
                return
            try:
                result = self._on_notify(item)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                _LOGGER.exception("[%s] Notification callback failed", self.device_id)

    async def _iter_events(self) -> AsyncIterator[NotificationEvent]:
        assert self._queue is not None
        while True:
            try:
                item = await self._queue.get()
            except EOFError:
                if self._terminal_error is not None:
                    raise self._terminal_error from None
                return
            yield item
