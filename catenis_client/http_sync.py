"""Blocking HTTP transport for the Catenis API, built on requests."""

from __future__ import annotations

import logging

import requests
import urllib3

from .config import ClientOptions
from .errors import CatenisTimeout, TransportError
from .protocol import PreparedRequest, RawResponse

_LOGGER = logging.getLogger(__name__)


class HttpTransport:
    """Send prepared requests over a ``requests.Session``.

    Mirrors ``AsyncHttpTransport``: one call is one blocking round trip,
    failures map to ``TransportError``/``CatenisTimeout`` and nothing is retried.
    """

    def __init__(
        self,
        options: ClientOptions,
        session: requests.Session | None = None,
    ) -> None:
        self._options = options
        self._owns_session = session is None
        self._session = session if session is not None else requests.Session()

    def send(self, request: PreparedRequest) -> RawResponse:
        """Send a request and return the raw, still-encoded response."""
        try:
            resp = self._session.request(
                request.method,
                request.url,
                headers=request.headers,
                data=request.body or None,
                timeout=(self._options.connect_timeout, self._options.read_timeout),
                stream=True,
            )
            try:
                body = resp.raw.read(decode_content=False)
            finally:
                resp.close()
        except (requests.Timeout, urllib3.exceptions.TimeoutError) as err:
            raise CatenisTimeout(
                f"{request.method} {request.path} request timed out"
            ) from err
        except (requests.RequestException, urllib3.exceptions.HTTPError) as err:
            _LOGGER.debug("%s %s failed: %s", request.method, request.path, err)
            raise TransportError(
                f"{request.method} {request.path} request failed: {err}"
            ) from err

        return RawResponse(
            status=resp.status_code,
            reason=resp.reason,
            headers=dict(resp.headers),
            body=body,
        )

    def close(self) -> None:
        """Close the underlying session if this transport created it."""
        if self._owns_session:
            self._session.close()
