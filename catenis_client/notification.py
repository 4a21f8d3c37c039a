"""Catenis notification events and their wire format."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import DecodeError


class NotificationEventName(str, Enum):
    """Notification events a device can subscribe to."""

    NEW_MSG_RECEIVED = "new-msg-received"
    SENT_MSG_READ = "sent-msg-read"
    ASSET_RECEIVED = "asset-received"
    ASSET_CONFIRMED = "asset-confirmed"
    FINAL_MSG_PROGRESS = "final-msg-progress"
    ASSET_EXPORT_OUTCOME = "asset-export-outcome"
    ASSET_MIGRATION_OUTCOME = "asset-migration-outcome"
    NF_ASSET_ISSUANCE_OUTCOME = "nf-asset-issuance-outcome"
    NF_TOKEN_RECEIVED = "nf-token-received"
    NF_TOKEN_CONFIRMED = "nf-token-confirmed"
    NF_TOKEN_RETRIEVAL_OUTCOME = "nf-token-retrieval-outcome"
    NF_TOKEN_TRANSFER_OUTCOME = "nf-token-transfer-outcome"

    def __str__(self) -> str:
        return self.value


# Fields every payload of a given event carries; used to reject garbage frames
REQUIRED_FIELDS: dict[NotificationEventName, tuple[str, ...]] = {
    NotificationEventName.NEW_MSG_RECEIVED: ("messageId", "from", "receivedDate"),
    NotificationEventName.SENT_MSG_READ: ("messageId", "to", "readDate"),
    NotificationEventName.ASSET_RECEIVED: (
        "assetId",
        "amount",
        "issuer",
        "from",
        "receivedDate",
    ),
    NotificationEventName.ASSET_CONFIRMED: (
        "assetId",
        "amount",
        "issuer",
        "from",
        "confirmedDate",
    ),
    NotificationEventName.FINAL_MSG_PROGRESS: (
        "ephemeralMessageId",
        "action",
        "progress",
    ),
    NotificationEventName.ASSET_EXPORT_OUTCOME: (
        "assetId",
        "foreignBlockchain",
        "foreignTransaction",
        "token",
        "status",
        "date",
    ),
    NotificationEventName.ASSET_MIGRATION_OUTCOME: (
        "migrationId",
        "assetId",
        "foreignBlockchain",
        "direction",
        "amount",
        "catenisService",
        "foreignTransaction",
        "status",
        "date",
    ),
    NotificationEventName.NF_ASSET_ISSUANCE_OUTCOME: ("assetIssuanceId", "progress"),
    NotificationEventName.NF_TOKEN_RECEIVED: (
        "nfTokenIds",
        "issuer",
        "from",
        "receivedDate",
    ),
    NotificationEventName.NF_TOKEN_CONFIRMED: (
        "nfTokenIds",
        "issuer",
        "from",
        "confirmedDate",
    ),
    NotificationEventName.NF_TOKEN_RETRIEVAL_OUTCOME: (
        "nfTokenId",
        "tokenRetrievalId",
        "progress",
    ),
    NotificationEventName.NF_TOKEN_TRANSFER_OUTCOME: (
        "nfTokenId",
        "tokenTransferId",
        "progress",
    ),
}


@dataclass(frozen=True)
class NotificationEvent:
    """A decoded server-pushed notification."""

    event_type: NotificationEventName
    data: dict[str, Any] = field(default_factory=dict)


def parse_event_name(value: str | NotificationEventName) -> NotificationEventName:
    """Map a wire event name onto ``NotificationEventName``.

    Raises:
        DecodeError: If the name is not a known notification event.
    """
    try:
        return NotificationEventName(value)
    except ValueError as err:
        raise DecodeError(f"Unknown notification event: {value!r}") from err


def decode_notification(
    text: str | bytes, default_event: NotificationEventName | None = None
) -> NotificationEvent:
    """Decode one inbound channel frame.

    Accepts ``{"eventName": ..., "data": {...}}`` or, for a channel bound to a
    single event, the bare data object.

    Raises:
        DecodeError: If the frame is not valid JSON or does not match the event shape.
    """
    try:
        payload = json.loads(text)
    except (TypeError, ValueError) as err:
        raise DecodeError("Notification message is not valid JSON") from err
    if not isinstance(payload, dict):
        raise DecodeError("Notification message is not a JSON object")

    if "eventName" in payload:
        event_type = parse_event_name(payload["eventName"])
        data = payload.get("data")
    elif default_event is not None:
        event_type = default_event
        data = payload
    else:
        raise DecodeError("Notification message has no event name")

    if not isinstance(data, dict):
        raise DecodeError(f"Notification data for {event_type} is not an object")

    missing = [name for name in REQUIRED_FIELDS[event_type] if name not in data]
    if missing:
        raise DecodeError(
            f"Notification data for {event_type} is missing: {', '.join(missing)}"
        )
    return NotificationEvent(event_type=event_type, data=data)


def encode_notification(event: NotificationEvent) -> str:
    """Serialize an event into its ``{"eventName", "data"}`` wire form."""
    return json.dumps({"eventName": event.event_type.value, "data": event.data})
