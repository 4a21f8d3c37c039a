"""Tests for the aiohttp and requests transports."""

from __future__ import annotations

import io
from unittest.mock import MagicMock, patch

import aiohttp
import pytest
import requests
import urllib3
from yarl import URL

from catenis_client.config import DEFAULT_API_VERSION, BaseOrigin, ClientOptions
from catenis_client.errors import CatenisTimeout, TransportError
from catenis_client.http import AsyncHttpTransport
from catenis_client.http_sync import HttpTransport
from catenis_client.protocol import PreparedRequest, RawResponse, prepare_request

from .conftest import create_mock_response


@pytest.fixture
def request_get() -> PreparedRequest:
    return PreparedRequest(
        method="GET",
        url="http://localhost:3000/api/0.12/messages?limit=10",
        path="/api/0.12/messages",
        query="limit=10",
        headers={"Host": "localhost:3000"},
    )


@pytest.fixture
def request_post() -> PreparedRequest:
    return PreparedRequest(
        method="POST",
        url="http://localhost:3000/api/0.12/messages/log",
        path="/api/0.12/messages/log",
        headers={"Host": "localhost:3000", "Content-Type": "application/json"},
        body=b'{"message":"hi"}',
    )


class TestAsyncHttpTransport:
    """Tests for AsyncHttpTransport."""

    @pytest.mark.asyncio
    async def test_send_returns_raw_response(self, mock_session, request_get):
        """Test a response is returned undecoded with its headers."""
        mock_session.request.return_value = create_mock_response(
            read_data=b"gz", headers={"Content-Encoding": "gzip"}
        )
        transport = AsyncHttpTransport(ClientOptions(), mock_session)

        response = await transport.send(request_get)

        assert response == RawResponse(
            status=200, reason="OK", headers={"Content-Encoding": "gzip"}, body=b"gz"
        )
        args, kwargs = mock_session.request.call_args
        assert args[0] == "GET"
        assert args[1] == URL(request_get.url, encoded=True)
        assert kwargs["data"] is None
        assert kwargs["headers"] == request_get.headers
        assert kwargs["timeout"].sock_connect == ClientOptions().connect_timeout

    @pytest.mark.asyncio
    async def test_send_body(self, mock_session, request_post):
        """Test the request body is sent as prepared."""
        mock_session.request.return_value = create_mock_response(read_data=b"{}")
        transport = AsyncHttpTransport(ClientOptions(), mock_session)

        await transport.send(request_post)

        assert mock_session.request.call_args.kwargs["data"] == request_post.body

    @pytest.mark.asyncio
    async def test_auto_decompressing_session_drops_encoding(self, mock_session, request_get):
        """Test Content-Encoding is dropped when the session already decoded the body."""
        mock_session.auto_decompress = True
        mock_session.request.return_value = create_mock_response(
            read_data=b"{}", headers={"Content-Encoding": "gzip", "X-Other": "1"}
        )
        transport = AsyncHttpTransport(ClientOptions(), mock_session)

        response = await transport.send(request_get)

        assert response.headers == {"X-Other": "1"}

    @pytest.mark.asyncio
    async def test_timeout(self, mock_session, request_get):
        """Test timeouts map to CatenisTimeout."""
        mock_session.request.side_effect = TimeoutError()
        transport = AsyncHttpTransport(ClientOptions(), mock_session)

        with pytest.raises(CatenisTimeout, match="timed out"):
            await transport.send(request_get)

    @pytest.mark.asyncio
    async def test_client_error(self, mock_session, request_get):
        """Test aiohttp errors map to TransportError."""
        mock_session.request.side_effect = aiohttp.ClientConnectionError("refused")
        transport = AsyncHttpTransport(ClientOptions(), mock_session)

        with pytest.raises(TransportError, match="request failed"):
            await transport.send(request_get)

    @pytest.mark.asyncio
    async def test_close_leaves_external_session(self, mock_session):
        """Test a caller-provided session is not closed."""
        transport = AsyncHttpTransport(ClientOptions(), mock_session)
        await transport.close()
        mock_session.close.assert_not_called()

    @pytest.mark.asyncio
    async def test_owned_session_created_and_closed(self):
        """Test the transport creates and closes its own session."""
        transport = AsyncHttpTransport(ClientOptions())
        session = transport._get_session()
        assert not session.closed
        await transport.close()
        assert session.closed


class TestHttpTransport:
    """Tests for the blocking HttpTransport."""

    def _session(self, status=200, body=b"", headers=None, reason="OK") -> MagicMock:
        resp = MagicMock()
        resp.status_code = status
        resp.reason = reason
        resp.headers = headers or {}
        resp.raw.read.return_value = body
        session = MagicMock(spec=requests.Session)
        session.request.return_value = resp
        return session

    def test_send_returns_raw_response(self, request_post):
        """Test the raw body is read without content decoding."""
        session = self._session(body=b"raw", headers={"Content-Encoding": "deflate"})
        transport = HttpTransport(ClientOptions(connect_timeout=3, read_timeout=7), session)

        response = transport.send(request_post)

        assert response.body == b"raw"
        assert response.headers == {"Content-Encoding": "deflate"}
        resp = session.request.return_value
        resp.raw.read.assert_called_once_with(decode_content=False)
        resp.close.assert_called_once()
        session.request.assert_called_once_with(
            "POST",
            request_post.url,
            headers=request_post.headers,
            data=request_post.body,
            timeout=(3, 7),
            stream=True,
        )

    def test_error_status_is_not_raised(self, request_get):
        """Test non-2xx statuses are returned for the protocol layer to judge."""
        session = self._session(status=401, body=b"{}", reason="Unauthorized")
        response = HttpTransport(ClientOptions(), session).send(request_get)
        assert response.status == 401
        assert response.reason == "Unauthorized"

    def test_timeout(self, request_get):
        """Test request timeouts map to CatenisTimeout."""
        session = self._session()
        session.request.side_effect = requests.ReadTimeout("slow")
        with pytest.raises(CatenisTimeout):
            HttpTransport(ClientOptions(), session).send(request_get)

    def test_connection_error(self, request_get):
        """Test connection errors map to TransportError."""
        session = self._session()
        session.request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(TransportError) as exc_info:
            HttpTransport(ClientOptions(), session).send(request_get)
        assert not isinstance(exc_info.value, CatenisTimeout)

    def test_close(self):
        """Test only an owned session is closed."""
        external = self._session()
        HttpTransport(ClientOptions(), external).close()
        external.close.assert_not_called()

        transport = HttpTransport(ClientOptions())
        owned = MagicMock(spec=requests.Session)
        transport._session = owned
        transport.close()
        owned.close.assert_called_once()

    def test_identity_encoding_reaches_adapter(self):
        """Test the session default Accept-Encoding is replaced when compression is off."""
        sent = []

        def fake_send(adapter, prepared, **kwargs):
            sent.append(prepared)
            resp = requests.Response()
            resp.status_code = 200
            resp.reason = "OK"
            resp.url = prepared.url
            resp.request = prepared
            resp.raw = urllib3.HTTPResponse(
                body=io.BytesIO(b"plain"), status=200, preload_content=False
            )
            return resp

        request = prepare_request(
            "GET",
            "messages",
            origin=BaseOrigin(secure=False, host="localhost", port=3000),
            version=DEFAULT_API_VERSION,
            use_compression=False,
        )
        transport = HttpTransport(ClientOptions())
        with patch.object(
            requests.adapters.HTTPAdapter, "send", autospec=True, side_effect=fake_send
        ):
            response = transport.send(request)
        transport.close()

        assert sent[0].headers["Accept-Encoding"] == "identity"
        assert response.body == b"plain"
