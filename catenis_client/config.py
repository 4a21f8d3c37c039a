"""Client options and Catenis API host resolution."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlsplit

from .errors import ConfigurationError

DEFAULT_HOST = "catenis.io"
SANDBOX_SUBDOMAIN = "sandbox"
API_BASE_PATH = "/api/{version}/"

DEFAULT_COMPRESS_THRESHOLD = 1024
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_READ_TIMEOUT = 30.0


class Environment(Enum):
    """Catenis API server environments."""

    PRODUCTION = "production"
    SANDBOX = "sandbox"

    @property
    def default_host(self) -> str:
        if self is Environment.SANDBOX:
            return f"{SANDBOX_SUBDOMAIN}.{DEFAULT_HOST}"
        return DEFAULT_HOST


@dataclass(frozen=True)
class ApiVersion:
    """Version of the Catenis API, e.g. ``ApiVersion(0, 12)`` -> ``"0.12"``."""

    major: int
    minor: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


DEFAULT_API_VERSION = ApiVersion(0, 12)


def split_host_port(value: str) -> tuple[str, int | None]:
    """Split ``"host[:port]"`` into its parts.

    Raises:
        ConfigurationError: If the host is empty or the port is not a valid number.
    """
    try:
        parsed = urlsplit(f"http://{value.strip()}")
        port = parsed.port
    except ValueError as err:
        raise ConfigurationError(f"Invalid host: {value!r}") from err
    if not parsed.hostname or parsed.path or parsed.query or parsed.username:
        raise ConfigurationError(f"Invalid host: {value!r}")
    return parsed.hostname, port


@dataclass(frozen=True)
class ClientOptions:
    """Option settings for a Catenis API client.

    Attributes:
        environment: Target server environment (ignored when ``host`` is set).
        host: Host name, with optional ``:port``, overriding the environment host.
        port: Port override; wins over a port embedded in ``host``.
        secure: Use TLS (HTTPS/WSS).
        version: Catenis API version to target.
        use_compression: Compress large request bodies and accept compressed responses.
        compress_threshold: Minimum request body size, in bytes, to compress.
        connect_timeout: Seconds to wait for a connection to be established.
        read_timeout: Seconds to wait for the server response.
    """

    environment: Environment = Environment.PRODUCTION
    host: str | None = None
    port: int | None = None
    secure: bool = True
    version: ApiVersion = DEFAULT_API_VERSION
    use_compression: bool = True
    compress_threshold: int = DEFAULT_COMPRESS_THRESHOLD
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    read_timeout: float = DEFAULT_READ_TIMEOUT

    def __post_init__(self) -> None:
        if not isinstance(self.environment, Environment):
            raise ConfigurationError(f"Invalid environment: {self.environment!r}")
        if self.port is not None and not (
            isinstance(self.port, int) and 0 < self.port < 65536
        ):
            raise ConfigurationError(f"Invalid port number: {self.port!r}")
        if self.host is not None:
            split_host_port(self.host)
        if self.compress_threshold < 0:
            raise ConfigurationError("compress_threshold cannot be negative")
        if self.connect_timeout <= 0 or self.read_timeout <= 0:
            raise ConfigurationError("Timeouts must be positive")


@dataclass(frozen=True)
class BaseOrigin:
    """Scheme, host and port of the Catenis API server."""

    secure: bool
    host: str
    port: int | None = None

    @property
    def scheme(self) -> str:
        return "https" if self.secure else "http"

    @property
    def ws_scheme(self) -> str:
        return "wss" if self.secure else "ws"

    @property
    def host_header(self) -> str:
        """Value of the ``Host`` header; the port is omitted when it is the default."""
        default_port = 443 if self.secure else 80
        if self.port is None or self.port == default_port:
            return self.host
        return f"{self.host}:{self.port}"

    @property
    def http_url(self) -> str:
        return f"{self.scheme}://{self.host_header}"

    @property
    def ws_url(self) -> str:
        return f"{self.ws_scheme}://{self.host_header}"


def api_path(version: ApiVersion, endpoint: str) -> str:
    """Full URL path of an API endpoint, e.g. ``/api/0.12/messages/log``."""
    return API_BASE_PATH.format(version=version) + endpoint.lstrip("/")


def resolve_origin(options: ClientOptions) -> BaseOrigin:
    """Resolve the server origin from client options. Pure, no I/O."""
    if options.host is not None:
        host, port = split_host_port(options.host)
    else:
        host, port = options.environment.default_host, None

    if options.port is not None:
        port = options.port

    return BaseOrigin(secure=options.secure, host=host, port=port)
