"""Client error types for Catenis API interactions."""

from __future__ import annotations

from http import HTTPStatus


class CatenisClientError(Exception):
    """Base error for Catenis API client failures."""


class ConfigurationError(CatenisClientError):
    """Invalid credentials or client options."""


class TransportError(CatenisClientError):
    """Network failure while talking to the Catenis API server."""


class CatenisTimeout(TransportError):
    """Timeout while communicating with the Catenis API server."""


class DecodeError(CatenisClientError):
    """Response body could not be decoded into the expected shape."""


class ApiError(CatenisClientError):
    """Non-2xx HTTP response returned by the Catenis API server."""

    def __init__(
        self,
        status_code: int,
        message: str | None = None,
        *,
        body_message: str | None = None,
        catenis_message: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.body_message = body_message
        self.catenis_message = catenis_message
        self.message = message or catenis_message or body_message or self.status_message or ""
        super().__init__(f"Catenis API error: {self.error_message}")

    @property
    def status_message(self) -> str | None:
        """Canonical reason phrase of the HTTP status code."""
        try:
            return HTTPStatus(self.status_code).phrase
        except ValueError:
            return None

    @property
    def error_message(self) -> str:
        return f"[{self.status_code}] - {self.message}"


class ChannelError(CatenisClientError):
    """Notification channel failure."""


class ChannelHandshakeError(ChannelError):
    """Notification channel handshake rejected by the server.

    Terminal: the channel is not reopened after this error.
    """


class ChannelConnectionLost(ChannelError):
    """Notification channel connection dropped unexpectedly.

    Recoverable: the channel reconnects after a backoff delay.
    """


class ChannelStateError(ChannelError):
    """Operation not allowed in the current channel state."""
