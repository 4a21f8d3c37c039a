"""Tests for notification event decoding."""

from __future__ import annotations

import json

import pytest

from catenis_client.errors import DecodeError
from catenis_client.notification import (
    REQUIRED_FIELDS,
    NotificationEvent,
    NotificationEventName,
    decode_notification,
    encode_notification,
    parse_event_name,
)


def _sample(event: NotificationEventName) -> dict:
    return {name: f"value-{name}" for name in REQUIRED_FIELDS[event]}


class TestEventNames:
    """Tests for NotificationEventName."""

    def test_every_event_has_required_fields(self):
        """Test every event declares its required payload fields."""
        assert set(REQUIRED_FIELDS) == set(NotificationEventName)

    def test_str_is_wire_name(self):
        """Test events render as their wire name."""
        assert str(NotificationEventName.NEW_MSG_RECEIVED) == "new-msg-received"

    def test_parse_unknown(self):
        """Test unknown event names raise DecodeError."""
        with pytest.raises(DecodeError, match="bogus"):
            parse_event_name("bogus")


class TestDecodeNotification:
    """Tests for decode_notification()."""

    @pytest.mark.parametrize("event", list(NotificationEventName))
    def test_every_event_type(self, event):
        """Test each event type decodes from its enveloped form and back."""
        sent = NotificationEvent(event_type=event, data=_sample(event))
        decoded = decode_notification(encode_notification(sent))
        assert decoded == sent

    def test_bare_payload_with_default_event(self):
        """Test a bare data object is attributed to the channel's event."""
        data = {"messageId": "m1", "from": {"deviceId": "d2"}, "receivedDate": "2022-01-01"}
        event = decode_notification(
            json.dumps(data), NotificationEventName.NEW_MSG_RECEIVED
        )
        assert event.event_type is NotificationEventName.NEW_MSG_RECEIVED
        assert event.data == data

    def test_bare_payload_without_default(self):
        """Test a bare data object needs a channel event to be attributed."""
        with pytest.raises(DecodeError, match="no event name"):
            decode_notification('{"messageId": "m1"}')

    def test_bytes_accepted(self):
        """Test UTF-8 bytes decode like text."""
        data = _sample(NotificationEventName.SENT_MSG_READ)
        text = json.dumps({"eventName": "sent-msg-read", "data": data})
        assert decode_notification(text.encode()).data == data

    @pytest.mark.parametrize(
        "text",
        [
            "not json",
            "[1, 2]",
            '{"eventName": "sent-msg-read", "data": []}',
            '{"eventName": "sent-msg-read", "data": {"messageId": "m1"}}',
            '{"eventName": "unknown-event", "data": {}}',
        ],
    )
    def test_malformed(self, text):
        """Test malformed frames raise DecodeError."""
        with pytest.raises(DecodeError):
            decode_notification(text, NotificationEventName.SENT_MSG_READ)

    def test_missing_fields_named(self):
        """Test the error names the missing fields."""
        with pytest.raises(DecodeError, match="readDate"):
            decode_notification(
                '{"messageId": "m1", "to": {}}', NotificationEventName.SENT_MSG_READ
            )
