"""Blocking notification channel for Catenis push notifications.

A background reader thread owns the WebSocket; callers either iterate the
channel (blocking on the event buffer) or pass an ``on_notify`` callback that
runs on a separate dispatcher thread.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from typing import Any

from websockets.exceptions import ConnectionClosed
from websockets.sync.client import ClientConnection

from .channel import (
    CHANNEL_OPEN_MESSAGE,
    ChannelState,
    ChannelTrigger,
    EventBuffer,
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
from .ws import connect_websocket_sync

_LOGGER = logging.getLogger(__name__)


class WsNotifyChannel(NotifyChannelBase):
    """Persistent notification channel using blocking I/O and threads.

    Usage:
        with client.new_ws_notify_channel("new-msg-received") as channel:
            for event in channel:
                ...
    """

    def __init__(
        self,
        device_id: str,
        event: Any,
        request_factory: Callable[[], PreparedRequest],
        **kwargs: Any,
    ) -> None:
        super().__init__(device_id, event, **kwargs)
        self._request_factory = request_factory
        self._ws: ClientConnection | None = None
        self._buffer = EventBuffer(self._buffer_size)
        self._stop = threading.Event()
        self._close_lock = threading.Lock()
        self._reader: threading.Thread | None = None
        self._dispatcher: threading.Thread | None = None
        self._terminal_error: ChannelError | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def open(self) -> None:
        """Connect, authenticate and start the reader thread.

        Raises:
            ChannelStateError: If the channel is not CLOSED.
            ChannelHandshakeError: The server rejected the credentials (terminal).
            TransportError: The first connection attempt failed; the channel
                returns to CLOSED and may be opened again.
        """
        self._machine.transition(ChannelTrigger.OPEN_REQUESTED)
        try:
            ws = self._connect()
        except ChannelHandshakeError as err:
            self._terminate(err)
            raise
        except (TransportError, ChannelError) as err:
            if not self._machine.is_terminated:
                self._machine.transition(ChannelTrigger.CONNECT_FAILED)
            _LOGGER.warning("[%s] Notification channel open failed: %s", self.device_id, err)
            raise

        if self._machine.is_terminated:
            ws.close()
            return

        self._ws = ws
        self._machine.transition(ChannelTrigger.HANDSHAKE_OK)
        _LOGGER.info("[%s] Notification channel open: %s", self.device_id, self.event)

        self._reader = threading.Thread(
            target=self._read_loop,
            name=f"catenis-notify-{self.event.value}",
            daemon=True,
        )
        self._reader.start()
        if self._on_notify is not None:
            self._dispatcher = threading.Thread(
                target=self._dispatch_loop,
                name=f"catenis-notify-{self.event.value}-dispatch",
                daemon=True,
            )
            self._dispatcher.start()

    def close(self, timeout: float | None = 5.0) -> None:
        """Close the channel and stop its threads. Idempotent, callable from any thread."""
        with self._close_lock:
            if self._stop.is_set():
                return
            self._stop.set()
        self._machine.transition(ChannelTrigger.CLOSE_REQUESTED)
        _LOGGER.info("[%s] Closing notification channel", self.device_id)

        ws, self._ws = self._ws, None
        if ws is not None:
            ws.close()
        self._buffer.close()

        current = threading.current_thread()
        for thread in (self._reader, self._dispatcher):
            if thread is not None and thread is not current:
                thread.join(timeout)

    def events(self, timeout: float | None = None) -> Iterator[NotificationEvent]:
        """Yield events as they arrive.

        Args:
            timeout: Stop iterating after this many seconds without an event.

        Raises:
            ChannelHandshakeError: If the channel was terminated by a rejected reconnect.
        """
        if self._on_notify is not None:
            raise ChannelStateError("Channel delivers events to its on_notify callback")
        while True:
            try:
                yield self._buffer.get(timeout)
            except (EOFError, TimeoutError):
                if self._terminal_error is not None:
                    raise self._terminal_error from None
                return

    def __iter__(self) -> Iterator[NotificationEvent]:
        return self.events()

    def __enter__(self) -> WsNotifyChannel:
        self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def dropped_events(self) -> int:
        return self._buffer.dropped

    # -------------------------------------------------------------------------
    # Internal: connection
    # -------------------------------------------------------------------------

    def _connect(self) -> ClientConnection:
        request = self._request_factory()
        _LOGGER.debug("[%s] Connecting to %s", self.device_id, request.path)
        ws = connect_websocket_sync(
            request.url,
            headers=handshake_headers(request),
            timeout=self._handshake_timeout,
        )
        try:
            ws.send(build_auth_message(request))
            self._await_open(ws)
        except ConnectionClosed as err:
            code = err.rcvd.code if err.rcvd is not None else None
            reason = err.rcvd.reason if err.rcvd is not None else ""
            raise close_error(code, reason) from err
        except BaseException:
            ws.close()
            raise
        return ws

    def _await_open(self, ws: ClientConnection) -> None:
        deadline = time.monotonic() + self._handshake_timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise CatenisTimeout("Notification channel open acknowledgement timed out")
            try:
                frame = ws.recv(timeout=remaining)
            except TimeoutError as err:
                raise CatenisTimeout(
                    "Notification channel open acknowledgement timed out"
                ) from err
            if frame == CHANNEL_OPEN_MESSAGE:
                return
            _LOGGER.debug("Ignoring frame received before channel open")

    # -------------------------------------------------------------------------
    # Internal: reader and dispatcher threads
    # -------------------------------------------------------------------------

    def _read_loop(self) -> None:
        while not self._stop.is_set():
            ws = self._ws
            if ws is None:
                return
            self._receive(ws)
            if self._stop.is_set() or self._machine.is_terminated:
                return

            error = ChannelConnectionLost("Notification channel connection lost")
            _LOGGER.warning("[%s] %s", self.device_id, error)
            self._ws = None
            try:
                self._machine.transition(ChannelTrigger.CONNECTION_LOST)
            except ChannelStateError:
                # Closed from another thread
                return
            self._report_error(error)
            if not self._reconnect():
                return

    def _receive(self, ws: ClientConnection) -> None:
        try:
            for frame in ws:
                if self._machine.state is not ChannelState.OPEN:
                    return
                event = self._decode_frame(frame)
                if event is not None:
                    self._buffer.put(event)
        except ConnectionClosed as err:
            _LOGGER.debug("[%s] WebSocket closed: %s", self.device_id, err)

    def _reconnect(self) -> bool:
        while not self._stop.is_set():
            delay = self._backoff.next_delay()
            _LOGGER.info(
                "[%s] Reconnecting notification channel in %.1fs (attempt %d)",
                self.device_id,
                delay,
                self._backoff.attempts,
            )
            if self._stop.wait(delay):
                return False
            try:
                ws = self._connect()
            except ChannelHandshakeError as err:
                self._terminate(err)
                return False
            except (CatenisClientError, OSError) as err:
                _LOGGER.warning("[%s] Reconnect failed: %s", self.device_id, err)
                try:
                    self._machine.transition(ChannelTrigger.CONNECT_FAILED)
                except ChannelStateError:
                    return False
                continue

            self._ws = ws
            try:
                self._machine.transition(ChannelTrigger.HANDSHAKE_OK)
            except ChannelStateError:
                # Closed from another thread during the handshake
                self._ws = None
                ws.close()
                return False
            self._backoff.reset()
            _LOGGER.info("[%s] Notification channel reopened", self.device_id)
            return True
        return False

    def _terminate(self, error: ChannelHandshakeError) -> None:
        _LOGGER.error("[%s] %s", self.device_id, error)
        self._terminal_error = error
        try:
            self._machine.transition(ChannelTrigger.HANDSHAKE_REJECTED)
        except ChannelStateError:
            _LOGGER.debug("[%s] Channel closed before rejection was recorded", self.device_id)
        self._report_error(error)
        self._buffer.close()

    def _dispatch_loop(self) -> None:
        while True:
            try:
                event = self._buffer.get()
            except EOFError:
                return
            try:
                self._on_notify(event)
            except Exception:
                _LOGGER.exception("[%s] Notification callback failed", self.device_id)
