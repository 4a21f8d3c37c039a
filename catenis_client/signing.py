"""CTN1-HMAC-SHA256 request signing.

The signature binds the HTTP method, URL path, canonical (sorted) query,
the ``host`` and ``x-bcot-timestamp`` headers, and the SHA-256 hash of the
request body. The signing key is derived in two HMAC rounds from the API
access secret and the sign date, so a derived key is only valid for one day.

Every function here is pure: identical inputs always yield identical output.
"""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import lru_cache
from urllib.parse import quote

from .credentials import DeviceCredentials

SIGNATURE_SCHEME = "CTN1-HMAC-SHA256"
KEY_PREFIX = "CTN1"
SCOPE_SUFFIX = "ctn1_request"

HEADER_TIMESTAMP = "X-BCoT-Timestamp"
HEADER_AUTHORIZATION = "Authorization"

TIMESTAMP_FORMAT = "%Y%m%dT%H%M%SZ"
DATE_FORMAT = "%Y%m%d"

# SHA-256 of the empty string
EMPTY_BODY_HASH = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

QueryParams = Mapping[str, str] | Iterable[tuple[str, str]]


@dataclass(frozen=True)
class SignatureHeaders:
    """The two headers that authenticate a request."""

    authorization: str
    timestamp: str

    def as_dict(self) -> dict[str, str]:
        return {
            HEADER_TIMESTAMP: self.timestamp,
            HEADER_AUTHORIZATION: self.authorization,
        }


def format_timestamp(moment: datetime | None = None) -> str:
    """Format a moment (default: now) as a UTC ``YYYYMMDDTHHMMSSZ`` timestamp."""
    if moment is None:
        moment = datetime.now(UTC)
    elif moment.tzinfo is not None:
        moment = moment.astimezone(UTC)
    return moment.strftime(TIMESTAMP_FORMAT)


def hash_body(body: bytes | None) -> str:
    if not body:
        return EMPTY_BODY_HASH
    return hashlib.sha256(body).hexdigest()


def _quote(value: str) -> str:
    return quote(str(value), safe="-_.~")


def canonical_query(query: QueryParams | None) -> str:
    """Percent-encode and sort query parameters by key, then value.

    The result is used both as the wire query string and as the query part of
    the conformed request, so insertion order never affects the signature.
    """
    if not query:
        return ""
    items = query.items() if isinstance(query, Mapping) else query
    pairs = sorted((_quote(key), _quote(value)) for key, value in items)
    return "&".join(f"{key}={value}" for key, value in pairs)


@lru_cache(maxsize=32)
def derive_signing_key(api_access_secret: str, sign_date: str) -> bytes:
    """Derive the per-date signing key.

    Args:
        api_access_secret: Device's API access secret.
        sign_date: Date portion of the timestamp (``YYYYMMDD``).
    """
    date_key = hmac.new(
        (KEY_PREFIX + api_access_secret).encode("utf-8"),
        sign_date.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return hmac.new(date_key, SCOPE_SUFFIX.encode("utf-8"), hashlib.sha256).digest()


def conformed_request(
    method: str,
    path: str,
    query: QueryParams | None,
    host: str,
    timestamp: str,
    body: bytes | None,
) -> str:
    """Build the canonical request string."""
    target = path
    query_string = canonical_query(query)
    if query_string:
        target = f"{path}?{query_string}"

    headers = (
        ("host", host.strip()),
        ("x-bcot-timestamp", timestamp.strip()),
    )
    essential_headers = "".join(f"{name}:{value}\n" for name, value in headers)

    return f"{method.upper()}\n{target}\n{essential_headers}\n{hash_body(body)}\n"


def sign(
    credentials: DeviceCredentials,
    method: str,
    path: str,
    query: QueryParams | None,
    body: bytes | None,
    host: str,
    timestamp: str | None = None,
) -> SignatureHeaders:
    """Compute the signature headers for a request.

    Args:
        credentials: Device credentials.
        method: HTTP method (case-insensitive).
        path: URL path, without query string.
        query: Query parameters, in any order.
        body: Exact request body bytes as sent on the wire.
        host: Value of the ``Host`` header.
        timestamp: ``YYYYMMDDTHHMMSSZ`` timestamp; current time when omitted.

    Returns:
        The ``Authorization`` and ``X-BCoT-Timestamp`` header values.
    """
    if timestamp is None:
        timestamp = format_timestamp()
    timestamp = timestamp.strip()
    sign_date = timestamp[:8]
    scope = f"{sign_date}/{SCOPE_SUFFIX}"

    request_hash = hashlib.sha256(
        conformed_request(method, path, query, host, timestamp, body).encode("utf-8")
    ).hexdigest()
    string_to_sign = f"{SIGNATURE_SCHEME}\n{timestamp}\n{scope}\n{request_hash}\n"

    signing_key = derive_signing_key(credentials.api_access_secret, sign_date)
    signature = hmac.new(
        signing_key, string_to_sign.encode("utf-8"), hashlib.sha256
    ).hexdigest()

    authorization = (
        f"{SIGNATURE_SCHEME} Credential={credentials.device_id}/{scope},"
        f"Signature={signature}"
    )
    return SignatureHeaders(authorization=authorization, timestamp=timestamp)


def verify(
    credentials: DeviceCredentials,
    method: str,
    path: str,
    query: QueryParams | None,
    body: bytes | None,
    host: str,
    headers: SignatureHeaders,
) -> bool:
    """Check signature headers against a request using constant-time comparison."""
    expected = sign(credentials, method, path, query, body, host, headers.timestamp)
    return hmac.compare_digest(expected.authorization, headers.authorization)
