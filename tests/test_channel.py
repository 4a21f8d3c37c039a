"""Tests for the notification channel state machine and helpers."""

from __future__ import annotations

import json
import threading

import pytest

from catenis_client.channel import (
    Backoff,
    ChannelState,
    ChannelStateMachine,
    ChannelTrigger,
    EventBuffer,
    NotifyChannelBase,
    build_auth_message,
    close_error,
    handshake_headers,
    is_auth_rejection,
    next_state,
)
from catenis_client.errors import (
    ChannelConnectionLost,
    ChannelHandshakeError,
    ChannelStateError,
)
from catenis_client.notification import NotificationEventName
from catenis_client.protocol import PreparedRequest
from catenis_client.signing import HEADER_AUTHORIZATION, HEADER_TIMESTAMP


class TestNextState:
    """Tests for the pure transition function."""

    @pytest.mark.parametrize(
        ("state", "trigger", "expected"),
        [
            (ChannelState.CLOSED, ChannelTrigger.OPEN_REQUESTED, ChannelState.CONNECTING),
            (ChannelState.CONNECTING, ChannelTrigger.HANDSHAKE_OK, ChannelState.OPEN),
            (
                ChannelState.CONNECTING,
                ChannelTrigger.HANDSHAKE_REJECTED,
                ChannelState.TERMINATED,
            ),
            (ChannelState.CONNECTING, ChannelTrigger.CONNECT_FAILED, ChannelState.CLOSED),
            (ChannelState.OPEN, ChannelTrigger.CONNECTION_LOST, ChannelState.RECONNECTING),
            (ChannelState.RECONNECTING, ChannelTrigger.HANDSHAKE_OK, ChannelState.OPEN),
            (
                ChannelState.RECONNECTING,
                ChannelTrigger.CONNECT_FAILED,
                ChannelState.RECONNECTING,
            ),
            (
                ChannelState.RECONNECTING,
                ChannelTrigger.HANDSHAKE_REJECTED,
                ChannelState.TERMINATED,
            ),
        ],
    )
    def test_valid_transitions(self, state, trigger, expected):
        """Test each allowed transition."""
        assert next_state(state, trigger) is expected

    @pytest.mark.parametrize("state", list(ChannelState))
    def test_close_from_any_state(self, state):
        """Test close always terminates."""
        assert next_state(state, ChannelTrigger.CLOSE_REQUESTED) is ChannelState.TERMINATED

    @pytest.mark.parametrize(
        ("state", "trigger"),
        [
            (ChannelState.CLOSED, ChannelTrigger.HANDSHAKE_OK),
            (ChannelState.OPEN, ChannelTrigger.OPEN_REQUESTED),
            (ChannelState.TERMINATED, ChannelTrigger.OPEN_REQUESTED),
            (ChannelState.TERMINATED, ChannelTrigger.HANDSHAKE_OK),
            (ChannelState.CLOSED, ChannelTrigger.CONNECTION_LOST),
        ],
    )
    def test_invalid_transitions(self, state, trigger):
        """Test disallowed transitions raise ChannelStateError."""
        with pytest.raises(ChannelStateError):
            next_state(state, trigger)


class TestChannelStateMachine:
    """Tests for ChannelStateMachine."""

    def test_reports_changes(self):
        """Test the change callback sees each new state once."""
        seen = []
        machine = ChannelStateMachine("t", on_change=seen.append)
        machine.transition(ChannelTrigger.OPEN_REQUESTED)
        machine.transition(ChannelTrigger.HANDSHAKE_OK)
        machine.transition(ChannelTrigger.CONNECTION_LOST)
        machine.transition(ChannelTrigger.CONNECT_FAILED)
        machine.transition(ChannelTrigger.CLOSE_REQUESTED)
        machine.transition(ChannelTrigger.CLOSE_REQUESTED)
        assert seen == [
            ChannelState.CONNECTING,
            ChannelState.OPEN,
            ChannelState.RECONNECTING,
            ChannelState.TERMINATED,
        ]
        assert machine.is_terminated

    def test_invalid_transition_keeps_state(self):
        """Test a rejected trigger leaves the state unchanged."""
        machine = ChannelStateMachine()
        with pytest.raises(ChannelStateError):
            machine.transition(ChannelTrigger.HANDSHAKE_OK)
        assert machine.state is ChannelState.CLOSED

    def test_terminated_cannot_reopen(self):
        """Test a terminated channel never reopens."""
        machine = ChannelStateMachine()
        machine.transition(ChannelTrigger.CLOSE_REQUESTED)
        with pytest.raises(ChannelStateError):
            machine.transition(ChannelTrigger.OPEN_REQUESTED)


class TestBackoff:
    """Tests for capped exponential backoff."""

    def test_monotonic_and_capped(self):
        """Test delays never decrease and never exceed the maximum."""
        backoff = Backoff(initial=1.0, maximum=10.0, factor=2.0)
        delays = [backoff.next_delay() for _ in range(8)]
        assert delays == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0, 10.0, 10.0]
        assert all(a <= b for a, b in zip(delays, delays[1:]))

    def test_reset(self):
        """Test reset restarts from the initial delay."""
        backoff = Backoff(initial=0.5, maximum=4.0)
        backoff.next_delay()
        backoff.next_delay()
        backoff.reset()
        assert backoff.next_delay() == 0.5

    def test_attempts_stop_growing_at_cap(self):
        """Test the attempt counter does not grow without bound."""
        backoff = Backoff(initial=1.0, maximum=2.0)
        for _ in range(100):
            backoff.next_delay()
        assert backoff.attempts == 1

    @pytest.mark.parametrize(
        ("initial", "maximum", "factor"),
        [(0, 1, 2), (2, 1, 2), (1, 2, 0.5)],
    )
    def test_invalid_parameters(self, initial, maximum, factor):
        """Test invalid parameters are rejected."""
        with pytest.raises(ValueError):
            Backoff(initial, maximum, factor)


class TestEventBuffer:
    """Tests for the drop-oldest event buffer."""

    def test_fifo(self):
        """Test items come out in arrival order."""
        buffer = EventBuffer(4)
        for item in range(3):
            buffer.put(item)
        assert [buffer.get(0) for _ in range(3)] == [0, 1, 2]

    def test_drop_oldest(self):
        """Test overflow drops the oldest item and counts it."""
        buffer = EventBuffer(2)
        for item in range(5):
            buffer.put(item)
        assert len(buffer) == 2
        assert buffer.dropped == 3
        assert [buffer.get(0), buffer.get(0)] == [3, 4]

    def test_get_timeout(self):
        """Test an empty buffer times out."""
        with pytest.raises(TimeoutError):
            EventBuffer(1).get(timeout=0.01)

    def test_close_drains_then_eof(self):
        """Test remaining items are delivered before EOF."""
        buffer = EventBuffer(2)
        buffer.put("last")
        buffer.close()
        assert buffer.get(0) == "last"
        with pytest.raises(EOFError):
            buffer.get(0)

    def test_close_wakes_waiter(self):
        """Test close wakes a blocked reader."""
        buffer = EventBuffer(1)
        errors = []

        def reader():
            try:
                buffer.get(timeout=5)
            except EOFError as err:
                errors.append(err)

        thread = threading.Thread(target=reader)
        thread.start()
        buffer.close()
        thread.join(timeout=5)
        assert len(errors) == 1

    def test_invalid_size(self):
        """Test a non-positive size is rejected."""
        with pytest.raises(ValueError):
            EventBuffer(0)


class TestHandshakeHelpers:
    """Tests for handshake helpers."""

    @pytest.fixture
    def request_ws(self) -> PreparedRequest:
        return PreparedRequest(
            method="GET",
            url="wss://catenis.io/api/0.12/notify/ws/new-msg-received",
            path="/api/0.12/notify/ws/new-msg-received",
            headers={
                "Host": "catenis.io",
                HEADER_TIMESTAMP: "20220101T000000Z",
                HEADER_AUTHORIZATION: "CTN1-HMAC-SHA256 Credential=d1/x,Signature=y",
            },
        )

    def test_auth_message(self, request_ws):
        """Test the auth frame carries the signature headers."""
        assert json.loads(build_auth_message(request_ws)) == {
            "x-bcot-timestamp": "20220101T000000Z",
            "authorization": "CTN1-HMAC-SHA256 Credential=d1/x,Signature=y",
        }

    def test_handshake_headers(self, request_ws):
        """Test only the signature headers are attached to the upgrade."""
        assert set(handshake_headers(request_ws)) == {HEADER_TIMESTAMP, HEADER_AUTHORIZATION}

    @pytest.mark.parametrize(
        ("code", "rejected"),
        [(1008, True), (4000, True), (4999, True), (1000, False), (1006, False), (None, False)],
    )
    def test_is_auth_rejection(self, code, rejected):
        """Test which close codes mean the credentials were rejected."""
        assert is_auth_rejection(code) is rejected

    def test_close_error(self):
        """Test close codes map to terminal or recoverable errors."""
        assert isinstance(close_error(4001, "bad sig"), ChannelHandshakeError)
        assert isinstance(close_error(1006), ChannelConnectionLost)
        assert "bad sig" in str(close_error(4001, "bad sig"))


class TestNotifyChannelBase:
    """Tests for frame handling shared by both channels."""

    @pytest.fixture
    def channel(self) -> NotifyChannelBase:
        return NotifyChannelBase("d1", NotificationEventName.SENT_MSG_READ)

    def test_initial_state(self, channel):
        """Test a new channel is closed."""
        assert channel.state is ChannelState.CLOSED
        assert not channel.is_open

    def test_decode_valid(self, channel):
        """Test a valid frame decodes into an event."""
        frame = json.dumps({"messageId": "m1", "to": {}, "readDate": "2022-01-01"})
        event = channel._decode_frame(frame)
        assert event.event_type is NotificationEventName.SENT_MSG_READ
        assert channel.malformed_messages == 0

    def test_open_ack_ignored(self, channel):
        """Test a repeated open acknowledgement is not an event or an error."""
        assert channel._decode_frame("NOTIFICATION_CHANNEL_OPEN") is None
        assert channel.malformed_messages == 0

    def test_malformed_skipped(self, channel):
        """Test malformed and binary frames are skipped and counted."""
        assert channel._decode_frame("garbage") is None
        assert channel._decode_frame(b"\x00\x01") is None
        assert channel.malformed_messages == 2

    def test_callback_errors_contained(self):
        """Test exceptions from user callbacks do not propagate."""

        def boom(_):
            raise RuntimeError("callback failure")

        channel = NotifyChannelBase(
            "d1", "sent-msg-read", on_error=boom, on_state_change=boom
        )
        channel._report_error(ChannelConnectionLost("lost"))
        channel._machine.transition(ChannelTrigger.OPEN_REQUESTED)
        assert channel.state is ChannelState.CONNECTING
