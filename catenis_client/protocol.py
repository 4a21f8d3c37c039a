"""Transport-independent request building and response decoding.

Shared verbatim by the blocking and asyncio clients; only the transport
that actually moves the bytes differs between them.
"""

from __future__ import annotations

import json
import zlib
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

from .config import ApiVersion, BaseOrigin, api_path
from .credentials import DeviceCredentials
from .errors import ApiError, DecodeError
from .signing import QueryParams, canonical_query, sign

CONTENT_TYPE_JSON = "application/json"
ACCEPT_ENCODING = "gzip, deflate"
NO_ENCODING = "identity"
SUCCESS_STATUS = "success"


@dataclass(frozen=True)
class PreparedRequest:
    """A fully built (and possibly signed) HTTP request.

    Constructed fresh for every call; never reused.
    """

    method: str
    url: str
    path: str
    query: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""


@dataclass(frozen=True)
class RawResponse:
    """Transport-neutral view of an HTTP response."""

    status: int
    reason: str | None
    headers: Mapping[str, str]
    body: bytes


def merge_url_params(path_template: str, url_params: Mapping[str, str] | None) -> str:
    """Replace ``:name`` placeholders in an endpoint path.

    Example:
        ``merge_url_params("messages/:message_id", {"message_id": "m1"})``
        returns ``"messages/m1"``.
    """
    path = path_template
    if url_params:
        # Longest names first so ":asset_id" never clobbers ":asset_id_x"
        for name in sorted(url_params, key=len, reverse=True):
            path = path.replace(f":{name}", quote(str(url_params[name]), safe=""))
    return path


def encode_json_body(body: Any) -> bytes:
    if body is None:
        return b""
    return json.dumps(body, separators=(",", ":")).encode("utf-8")


def compress_body(body: bytes) -> bytes:
    """Deflate-compress a request body (raw deflate stream)."""
    compressor = zlib.compressobj(wbits=-zlib.MAX_WBITS)
    return compressor.compress(body) + compressor.flush()


def decompress_body(body: bytes, content_encoding: str | None) -> bytes:
    """Decode a ``gzip`` or ``deflate`` response body.

    ``deflate`` is accepted both zlib-wrapped and raw.

    Raises:
        DecodeError: If the body cannot be decompressed.
    """
    encoding = (content_encoding or "").strip().lower()
    if not body or encoding in ("", "identity"):
        return body
    try:
        if encoding == "gzip":
            return zlib.decompress(body, wbits=16 + zlib.MAX_WBITS)
        if encoding == "deflate":
            try:
                return zlib.decompress(body)
            except zlib.error:
                return zlib.decompress(body, wbits=-zlib.MAX_WBITS)
    except zlib.error as err:
        raise DecodeError(f"Failed to decompress {encoding} response body") from err
    raise DecodeError(f"Unsupported response content encoding: {encoding}")


def prepare_request(
    method: str,
    endpoint: str,
    *,
    origin: BaseOrigin,
    version: ApiVersion,
    credentials: DeviceCredentials | None = None,
    query: QueryParams | None = None,
    body: Any = None,
    use_compression: bool = False,
    compress_threshold: int = 0,
    timestamp: str | None = None,
    ws: bool = False,
) -> PreparedRequest:
    """Build a request for a Catenis API endpoint, signing it when credentials are given.

    Args:
        method: HTTP method.
        endpoint: Endpoint path relative to the versioned API root, placeholders merged.
        origin: Resolved server origin.
        version: API version.
        credentials: Device credentials; the request is sent unsigned when ``None``.
        query: Query parameters; serialized in canonical (sorted) order.
        body: JSON-serializable payload.
        use_compression: Compress large bodies and accept compressed responses.
        compress_threshold: Minimum body size, in bytes, for compression.
        timestamp: Fixed signing timestamp; current time when omitted.
        ws: Build a WebSocket URL (``ws``/``wss`` scheme) instead of HTTP.
    """
    method = method.upper()
    path = api_path(version, endpoint)
    if query is not None and not isinstance(query, Mapping):
        query = list(query)
    query_string = canonical_query(query)
    payload = encode_json_body(body)

    headers: dict[str, str] = {"Host": origin.host_header}
    # Always explicit; "identity" turns response compression off
    headers["Accept-Encoding"] = ACCEPT_ENCODING if use_compression else NO_ENCODING
    if payload:
        headers["Content-Type"] = CONTENT_TYPE_JSON
        if use_compression and len(payload) >= compress_threshold:
            payload = compress_body(payload)
            headers["Content-Encoding"] = "deflate"

    if credentials is not None:
        signature = sign(
            credentials,
            method,
            path,
            query,
            payload,
            origin.host_header,
            timestamp,
        )
        headers.update(signature.as_dict())

    base = origin.ws_url if ws else origin.http_url
    url = base + path
    if query_string:
        url = f"{url}?{query_string}"

    return PreparedRequest(
        method=method,
        url=url,
        path=path,
        query=query_string,
        headers=headers,
        body=payload,
    )


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                return candidate
    return value


def build_api_error(status: int, reason: str | None, text: str) -> ApiError:
    """Build an ``ApiError`` from a failure response body.

    Uses the ``{"status": "failure", "message": ...}`` body when present,
    then the raw body text, then the HTTP status line.
    """
    catenis_message = None
    try:
        parsed = json.loads(text) if text else None
    except ValueError:
        parsed = None
    if isinstance(parsed, dict) and isinstance(parsed.get("message"), str):
        catenis_message = parsed["message"]

    body_message = None if catenis_message is not None else (text.strip() or None)
    message = catenis_message or body_message or reason
    return ApiError(
        status,
        message,
        body_message=body_message,
        catenis_message=catenis_message,
    )


def parse_response(response: RawResponse) -> Any:
    """Decode a raw response into the ``data`` member of the success envelope.

    Raises:
        ApiError: For non-2xx responses.
        DecodeError: If a 2xx body is not the expected JSON envelope.
    """
    encoding = _header(response.headers, "Content-Encoding")
    if not 200 <= response.status < 300:
        try:
            body = decompress_body(response.body, encoding)
        except DecodeError:
            # An unreadable error body still leaves the status to report
            body = b""
        text = body.decode("utf-8", errors="replace")
        raise build_api_error(response.status, response.reason, text)

    body = decompress_body(response.body, encoding)
    text = body.decode("utf-8", errors="replace")

    try:
        envelope = json.loads(text)
    except ValueError as err:
        raise DecodeError("Inconsistent Catenis API response: invalid JSON") from err

    if not isinstance(envelope, dict) or "data" not in envelope:
        raise DecodeError("Inconsistent Catenis API response: missing data")
    if envelope.get("status", SUCCESS_STATUS) != SUCCESS_STATUS:
        raise DecodeError(
            f"Inconsistent Catenis API response: status {envelope.get('status')!r}"
        )
    return envelope["data"]
