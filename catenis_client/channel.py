"""Notification channel state machine and handshake helpers.

Everything here is synchronous and transport-free. The asyncio channel
(``ws_client``) and the blocking channel (``ws_sync``) both drive the same
``ChannelStateMachine`` and differ only in how they wait on the network.

Lifecycle::

    CLOSED -> CONNECTING -> OPEN <-> RECONNECTING
                  |                       |
                  +------> TERMINATED <---+   (any state on close)

Slow consumers never stall the reader: delivered events go through a bounded
buffer that drops the oldest event when full.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import deque
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, Any

from .errors import (
    ChannelConnectionLost,
    ChannelError,
    ChannelHandshakeError,
    ChannelStateError,
    DecodeError,
)
from .notification import NotificationEvent, NotificationEventName, decode_notification
from .signing import HEADER_AUTHORIZATION, HEADER_TIMESTAMP

if TYPE_CHECKING:
    from .protocol import PreparedRequest

_LOGGER = logging.getLogger(__name__)

NOTIFY_WS_PROTOCOL = "notify.catenis.io"
CHANNEL_OPEN_MESSAGE = "NOTIFICATION_CHANNEL_OPEN"

# Upgrade responses and close codes meaning the server rejected our credentials
AUTH_REJECTED_STATUSES = frozenset({401, 403})
CLOSE_POLICY_VIOLATION = 1008

DEFAULT_BACKOFF_INITIAL = 1.0
DEFAULT_BACKOFF_MAXIMUM = 60.0
DEFAULT_BACKOFF_FACTOR = 2.0
DEFAULT_BUFFER_SIZE = 1024
DEFAULT_HANDSHAKE_TIMEOUT = 15.0


class ChannelState(str, Enum):
    """Current state of a notification channel."""

    CLOSED = "closed"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    TERMINATED = "terminated"


class ChannelTrigger(str, Enum):
    """Inputs that move a notification channel between states."""

    OPEN_REQUESTED = "open_requested"
    HANDSHAKE_OK = "handshake_ok"
    HANDSHAKE_REJECTED = "handshake_rejected"
    CONNECT_FAILED = "connect_failed"
    CONNECTION_LOST = "connection_lost"
    CLOSE_REQUESTED = "close_requested"


_TRANSITIONS: dict[tuple[ChannelState, ChannelTrigger], ChannelState] = {
    (ChannelState.CLOSED, ChannelTrigger.OPEN_REQUESTED): ChannelState.CONNECTING,
    (ChannelState.CONNECTING, ChannelTrigger.HANDSHAKE_OK): ChannelState.OPEN,
    (ChannelState.CONNECTING, ChannelTrigger.HANDSHAKE_REJECTED): ChannelState.TERMINATED,
    # First connection failed at the network level: the caller decides whether to retry
    (ChannelState.CONNECTING, ChannelTrigger.CONNECT_FAILED): ChannelState.CLOSED,
    (ChannelState.OPEN, ChannelTrigger.CONNECTION_LOST): ChannelState.RECONNECTING,
    (ChannelState.RECONNECTING, ChannelTrigger.HANDSHAKE_OK): ChannelState.OPEN,
    (ChannelState.RECONNECTING, ChannelTrigger.CONNECT_FAILED): ChannelState.RECONNECTING,
    (ChannelState.RECONNECTING, ChannelTrigger.HANDSHAKE_REJECTED): ChannelState.TERMINATED,
}


def next_state(state: ChannelState, trigger: ChannelTrigger) -> ChannelState:
    """Pure transition function.

    Raises:
        ChannelStateError: If ``trigger`` is not valid in ``state``.
    """
    if trigger is ChannelTrigger.CLOSE_REQUESTED:
        return ChannelState.TERMINATED
    try:
        return _TRANSITIONS[(state, trigger)]
    except KeyError:
        raise ChannelStateError(
            f"Invalid channel transition: {trigger.value} in state {state.value}"
        ) from None


class ChannelStateMachine:
    """Holds the channel state and applies transitions atomically.

    Transitions may be requested from any thread (e.g. ``close()`` while
    another thread is delivering events), so they are serialized by a lock.
    """

    def __init__(
        self,
        name: str = "",
        on_change: Callable[[ChannelState], None] | None = None,
    ) -> None:
        self._name = name
        self._state = ChannelState.CLOSED
        self._lock = threading.Lock()
        self._on_change = on_change

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_terminated(self) -> bool:
        return self._state is ChannelState.TERMINATED

    def transition(self, trigger: ChannelTrigger) -> ChannelState:
        """Apply ``trigger`` and return the new state."""
        with self._lock:
            previous = self._state
            self._state = next_state(previous, trigger)
            current = self._state
        if current is not previous:
            _LOGGER.debug(
                "[%s] Channel state: %s → %s (%s)",
                self._name,
                previous.value,
                current.value,
                trigger.value,
            )
            if self._on_change is not None:
                self._on_change(current)
        return current


class Backoff:
    """Capped exponential backoff.

    Delays grow ``initial * factor**n`` until they reach ``maximum`` and then
    hold steady; ``reset()`` after a successful reconnect.
    """

    def __init__(
        self,
        initial: float = DEFAULT_BACKOFF_INITIAL,
        maximum: float = DEFAULT_BACKOFF_MAXIMUM,
        factor: float = DEFAULT_BACKOFF_FACTOR,
    ) -> None:
        if initial <= 0 or maximum < initial or factor < 1:
            raise ValueError("Backoff requires 0 < initial <= maximum and factor >= 1")
        self.initial = initial
        self.maximum = maximum
        self.factor = factor
        self.attempts = 0

    def next_delay(self) -> float:
        delay = min(self.initial * (self.factor**self.attempts), self.maximum)
        if delay < self.maximum:
            self.attempts += 1
        return delay

    def reset(self) -> None:
        self.attempts = 0


class EventBuffer:
    """Thread-safe bounded FIFO with a drop-oldest overflow policy."""

    def __init__(self, maxsize: int = DEFAULT_BUFFER_SIZE) -> None:
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")
        self._items: deque[Any] = deque()
        self._maxsize = maxsize
        self._cond = threading.Condition()
        self._closed = False
        self.dropped = 0

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    def put(self, item: Any) -> None:
        with self._cond:
            if len(self._items) >= self._maxsize:
                self._items.popleft()
                self.dropped += 1
                _LOGGER.warning(
                    "Notification buffer full, dropped oldest event (%d dropped)",
                    self.dropped,
                )
            self._items.append(item)
            self._cond.notify()

    def get(self, timeout: float | None = None) -> Any:
        """Pop the oldest item.

        Raises:
            TimeoutError: If nothing arrives within ``timeout``.
            EOFError: If the buffer is closed and drained.
        """
        with self._cond:
            if not self._cond.wait_for(lambda: self._items or self._closed, timeout):
                raise TimeoutError("No notification event available")
            if self._items:
                return self._items.popleft()
            raise EOFError("Notification buffer closed")

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()


def build_auth_message(request: PreparedRequest) -> str:
    """Authentication frame sent right after the WebSocket upgrade."""
    return json.dumps(
        {
            "x-bcot-timestamp": request.headers.get(HEADER_TIMESTAMP, ""),
            "authorization": request.headers.get(HEADER_AUTHORIZATION, ""),
        }
    )


def handshake_headers(request: PreparedRequest) -> dict[str, str]:
    """Signature headers to attach to the upgrade request."""
    return {
        name: request.headers[name]
        for name in (HEADER_TIMESTAMP, HEADER_AUTHORIZATION)
        if name in request.headers
    }


def is_auth_rejection(close_code: int | None) -> bool:
    """Whether a close frame received before the open acknowledgement means rejection."""
    if close_code is None:
        return False
    return close_code == CLOSE_POLICY_VIOLATION or 4000 <= close_code <= 4999


def close_error(close_code: int | None, reason: str = "") -> ChannelError:
    """Map a close received during the handshake to the matching channel error."""
    detail = f"code={close_code}" + (f", reason={reason}" if reason else "")
    if is_auth_rejection(close_code):
        return ChannelHandshakeError(f"Notification channel rejected ({detail})")
    return ChannelConnectionLost(f"Notification channel closed ({detail})")


class NotifyChannelBase:
    """State and frame handling shared by the blocking and asyncio channels."""

    def __init__(
        self,
        device_id: str,
        event: NotificationEventName | str,
        *,
        backoff: Backoff | None = None,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
        on_notify: Callable[[NotificationEvent], Any] | None = None,
        on_error: Callable[[ChannelError], Any] | None = None,
        on_state_change: Callable[[ChannelState], Any] | None = None,
    ) -> None:
        self.device_id = device_id
        self.event = NotificationEventName(event)
        self._backoff = backoff or Backoff()
        self._buffer_size = buffer_size
        self._handshake_timeout = handshake_timeout
        self._on_notify = on_notify
        self._on_error = on_error
        self._on_state_change = on_state_change
        self._machine = ChannelStateMachine(
            name=f"{device_id}/{self.event.value}",
            on_change=self._state_changed,
        )
        self.malformed_messages = 0

    @property
    def state(self) -> ChannelState:
        return self._machine.state

    @property
    def is_open(self) -> bool:
        return self._machine.state is ChannelState.OPEN

    def _state_changed(self, state: ChannelState) -> None:
        if self._on_state_change is not None:
            try:
                self._on_state_change(state)
            except Exception:
                _LOGGER.exception("[%s] State change callback failed", self.device_id)

    def _report_error(self, error: ChannelError) -> None:
        if self._on_error is not None:
            try:
                self._on_error(error)
            except Exception:
                _LOGGER.exception("[%s] Error callback failed", self.device_id)

    def _decode_frame(self, frame: str | bytes) -> NotificationEvent | None:
        """Decode an inbound frame received while OPEN.

        Malformed frames are logged and skipped; the channel stays open.
        """
        if isinstance(frame, bytes):
            self.malformed_messages += 1
            _LOGGER.warning(
                "[%s] Skipping unexpected binary notification frame (%d bytes)",
                self.device_id,
                len(frame),
            )
            return None
        if frame == CHANNEL_OPEN_MESSAGE:
            return None
        try:
            return decode_notification(frame, self.event)
        except DecodeError as err:
            self.malformed_messages += 1
            _LOGGER.warning(
                "[%s] Skipping malformed notification message: %s", self.device_id, err
            )
            return None
