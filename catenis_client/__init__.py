"""Catenis API client package."""

from .api import DeviceId, ForeignBlockchain
from .async_client import AsyncCatenisClient
from .channel import Backoff, ChannelState
from .client import CatenisClient
from .config import ApiVersion, ClientOptions, Environment
from .credentials import DeviceCredentials
from .errors import (
    ApiError,
    CatenisClientError,
    CatenisTimeout,
    ChannelConnectionLost,
    ChannelError,
    ChannelHandshakeError,
    ChannelStateError,
    ConfigurationError,
    DecodeError,
    TransportError,
)
from .notification import NotificationEvent, NotificationEventName
from .signing import sign
from .ws_client import AsyncWsNotifyChannel
from .ws_sync import WsNotifyChannel

__version__ = "0.1.0"

__all__ = [
    "ApiError",
    "ApiVersion",
    "AsyncCatenisClient",
    "AsyncWsNotifyChannel",
    "Backoff",
    "CatenisClient",
    "CatenisClientError",
    "CatenisTimeout",
    "ChannelConnectionLost",
    "ChannelError",
    "ChannelHandshakeError",
    "ChannelState",
    "ChannelStateError",
    "ClientOptions",
    "ConfigurationError",
    "DecodeError",
    "DeviceCredentials",
    "DeviceId",
    "Environment",
    "ForeignBlockchain",
    "NotificationEvent",
    "NotificationEventName",
    "TransportError",
    "WsNotifyChannel",
    "sign",
    "__version__",
]
