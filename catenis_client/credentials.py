"""Device credentials used to sign Catenis API requests."""

from __future__ import annotations

from dataclasses import dataclass, field

from .errors import ConfigurationError


def _check_text(name: str, value: object) -> str:
    if isinstance(value, bytes):
        try:
            value = value.decode("utf-8")
        except UnicodeDecodeError as err:
            raise ConfigurationError(f"{name} is not valid UTF-8") from err
    if not isinstance(value, str):
        raise ConfigurationError(f"{name} must be a string")
    value = value.strip()
    if not value:
        raise ConfigurationError(f"{name} cannot be empty")
    return value


@dataclass(frozen=True)
class DeviceCredentials:
    """Virtual device credentials: device ID and API access secret.

    The secret is kept out of ``repr`` so credentials can be logged safely.
    """

    device_id: str
    api_access_secret: str = field(repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "device_id", _check_text("device_id", self.device_id))
        object.__setattr__(
            self,
            "api_access_secret",
            _check_text("api_access_secret", self.api_access_secret),
        )

    @classmethod
    def from_pair(cls, pair: tuple[str, str]) -> DeviceCredentials:
        """Build credentials from a ``(device_id, api_access_secret)`` tuple."""
        try:
            device_id, secret = pair
        except (TypeError, ValueError) as err:
            raise ConfigurationError(
                "Credentials must be a (device_id, api_access_secret) pair"
            ) from err
        return cls(device_id, secret)

    @property
    def secret_bytes(self) -> bytes:
        return self.api_access_secret.encode("utf-8")
