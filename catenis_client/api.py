"""Catenis API endpoint table and per-endpoint call wrappers.

Every wrapper only shapes its arguments into ``(url_params, query, body)``
and hands them to ``_invoke``. The blocking client implements ``_invoke``
as a plain method and the asyncio client as a coroutine, so the same
wrappers return a value in one and an awaitable in the other.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

DATE_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


@dataclass(frozen=True)
class ApiMethod:
    """A Catenis API endpoint.

    Attributes:
        name: Python-side name of the call.
        http_method: HTTP verb.
        path: Endpoint path template relative to ``/api/<version>/``; ``:name``
            placeholders are filled from the call's URL parameters.
        signed: Whether the request must carry the device signature.
    """

    name: str
    http_method: str
    path: str
    signed: bool = True


LOG_MESSAGE = ApiMethod("log_message", "POST", "messages/log")
SEND_MESSAGE = ApiMethod("send_message", "POST", "messages/send")
READ_MESSAGE = ApiMethod("read_message", "GET", "messages/:message_id")
RETRIEVE_MESSAGE_CONTAINER = ApiMethod(
    "retrieve_message_container", "GET", "messages/:message_id/container"
)
RETRIEVE_MESSAGE_ORIGIN = ApiMethod(
    "retrieve_message_origin", "GET", "messages/:message_id/origin", signed=False
)
RETRIEVE_MESSAGE_PROGRESS = ApiMethod(
    "retrieve_message_progress", "GET", "messages/:message_id/progress"
)
LIST_MESSAGES = ApiMethod("list_messages", "GET", "messages")
ISSUE_ASSET = ApiMethod("issue_asset", "POST", "assets/issue")
REISSUE_ASSET = ApiMethod("reissue_asset", "POST", "assets/:asset_id/issue")
TRANSFER_ASSET = ApiMethod("transfer_asset", "POST", "assets/:asset_id/transfer")
RETRIEVE_ASSET_INFO = ApiMethod("retrieve_asset_info", "GET", "assets/:asset_id")
GET_ASSET_BALANCE = ApiMethod("get_asset_balance", "GET", "assets/:asset_id/balance")
LIST_OWNED_ASSETS = ApiMethod("list_owned_assets", "GET", "assets/owned")
LIST_ISSUED_ASSETS = ApiMethod("list_issued_assets", "GET", "assets/issued")
RETRIEVE_ASSET_ISSUANCE_HISTORY = ApiMethod(
    "retrieve_asset_issuance_history", "GET", "assets/:asset_id/issuance"
)
LIST_ASSET_HOLDERS = ApiMethod("list_asset_holders", "GET", "assets/:asset_id/holders")
EXPORT_ASSET = ApiMethod(
    "export_asset", "POST", "assets/:asset_id/export/:foreign_blockchain"
)
ASSET_EXPORT_OUTCOME = ApiMethod(
    "asset_export_outcome", "GET", "assets/:asset_id/export/:foreign_blockchain"
)
LIST_EXPORTED_ASSETS = ApiMethod("list_exported_assets", "GET", "assets/exported")
MIGRATE_ASSET = ApiMethod(
    "migrate_asset", "POST", "assets/:asset_id/migrate/:foreign_blockchain"
)
ASSET_MIGRATION_OUTCOME = ApiMethod(
    "asset_migration_outcome", "GET", "assets/migrations/:migration_id"
)
LIST_ASSET_MIGRATIONS = ApiMethod("list_asset_migrations", "GET", "assets/migrations")
ISSUE_NON_FUNGIBLE_ASSET = ApiMethod(
    "issue_non_fungible_asset", "POST", "assets/non-fungible/issue"
)
REISSUE_NON_FUNGIBLE_ASSET = ApiMethod(
    "reissue_non_fungible_asset", "POST", "assets/non-fungible/:asset_id/issue"
)
RETRIEVE_NON_FUNGIBLE_ASSET_ISSUANCE_PROGRESS = ApiMethod(
    "retrieve_non_fungible_asset_issuance_progress",
    "GET",
    "assets/non-fungible/issuance/:issuance_id",
)
RETRIEVE_NON_FUNGIBLE_TOKEN = ApiMethod(
    "retrieve_non_fungible_token", "GET", "assets/non-fungible/tokens/:token_id"
)
RETRIEVE_NON_FUNGIBLE_TOKEN_RETRIEVAL_PROGRESS = ApiMethod(
    "retrieve_non_fungible_token_retrieval_progress",
    "GET",
    "assets/non-fungible/tokens/:token_id/retrieval/:retrieval_id",
)
TRANSFER_NON_FUNGIBLE_TOKEN = ApiMethod(
    "transfer_non_fungible_token",
    "POST",
    "assets/non-fungible/tokens/:token_id/transfer",
)
RETRIEVE_NON_FUNGIBLE_TOKEN_TRANSFER_PROGRESS = ApiMethod(
    "retrieve_non_fungible_token_transfer_progress",
    "GET",
    "assets/non-fungible/tokens/:token_id/transfer/:transfer_id",
)
LIST_PERMISSION_EVENTS = ApiMethod("list_permission_events", "GET", "permission/events")
RETRIEVE_PERMISSION_RIGHTS = ApiMethod(
    "retrieve_permission_rights", "GET", "permission/events/:event_name/rights"
)
SET_PERMISSION_RIGHTS = ApiMethod(
    "set_permission_rights", "POST", "permission/events/:event_name/rights"
)
CHECK_EFFECTIVE_PERMISSION_RIGHT = ApiMethod(
    "check_effective_permission_right",
    "GET",
    "permission/events/:event_name/rights/:device_id",
)
RETRIEVE_DEVICE_IDENTIFICATION_INFO = ApiMethod(
    "retrieve_device_identification_info", "GET", "devices/:device_id"
)
LIST_NOTIFICATION_EVENTS = ApiMethod(
    "list_notification_events", "GET", "notification/events"
)
NOTIFY_WS = ApiMethod("notify_ws", "GET", "notify/ws/:event_name")

API_METHODS: dict[str, ApiMethod] = {
    method.name: method
    for method in (
        LOG_MESSAGE,
        SEND_MESSAGE,
        READ_MESSAGE,
        RETRIEVE_MESSAGE_CONTAINER,
        RETRIEVE_MESSAGE_ORIGIN,
        RETRIEVE_MESSAGE_PROGRESS,
        LIST_MESSAGES,
        ISSUE_ASSET,
        REISSUE_ASSET,
        TRANSFER_ASSET,
        RETRIEVE_ASSET_INFO,
        GET_ASSET_BALANCE,
        LIST_OWNED_ASSETS,
        LIST_ISSUED_ASSETS,
        RETRIEVE_ASSET_ISSUANCE_HISTORY,
        LIST_ASSET_HOLDERS,
        EXPORT_ASSET,
        ASSET_EXPORT_OUTCOME,
        LIST_EXPORTED_ASSETS,
        MIGRATE_ASSET,
        ASSET_MIGRATION_OUTCOME,
        LIST_ASSET_MIGRATIONS,
        ISSUE_NON_FUNGIBLE_ASSET,
        REISSUE_NON_FUNGIBLE_ASSET,
        RETRIEVE_NON_FUNGIBLE_ASSET_ISSUANCE_PROGRESS,
        RETRIEVE_NON_FUNGIBLE_TOKEN,
        RETRIEVE_NON_FUNGIBLE_TOKEN_RETRIEVAL_PROGRESS,
        TRANSFER_NON_FUNGIBLE_TOKEN,
        RETRIEVE_NON_FUNGIBLE_TOKEN_TRANSFER_PROGRESS,
        LIST_PERMISSION_EVENTS,
        RETRIEVE_PERMISSION_RIGHTS,
        SET_PERMISSION_RIGHTS,
        CHECK_EFFECTIVE_PERMISSION_RIGHT,
        RETRIEVE_DEVICE_IDENTIFICATION_INFO,
        LIST_NOTIFICATION_EVENTS,
    )
}


@dataclass(frozen=True)
class DeviceId:
    """Reference to a virtual device, by Catenis device ID or product unique ID."""

    id: str
    is_prod_unique_id: bool | None = None

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id}
        if self.is_prod_unique_id is not None:
            data["isProdUniqueId"] = self.is_prod_unique_id
        return data


class ForeignBlockchain(str, Enum):
    """Foreign blockchains that Catenis assets can be exported or migrated to."""

    ETHEREUM = "ethereum"
    BINANCE = "binance"
    POLYGON = "polygon"


# Names whose JSON spelling does not follow plain camelCase
_JSON_NAMES = {"encrypt_nft_contents": "encryptNFTContents"}


def camel_case(name: str) -> str:
    """``continuation_token`` -> ``continuationToken``; camelCase input is kept."""
    if name in _JSON_NAMES:
        return _JSON_NAMES[name]
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def to_json_value(value: Any) -> Any:
    """Convert option values to their JSON form (camelCase keys, ``DeviceId`` dicts)."""
    if isinstance(value, DeviceId):
        return value.to_json()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return format_date_time(value)
    if isinstance(value, Mapping):
        return {
            camel_case(str(key)): to_json_value(item)
            for key, item in value.items()
            if item is not None
        }
    if isinstance(value, (list, tuple)):
        return [to_json_value(item) for item in value]
    return value


def format_date_time(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(UTC)
    return value.strftime(DATE_TIME_FORMAT)


def query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return format_date_time(value)
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (list, tuple)):
        return ",".join(query_value(item) for item in value)
    return str(value)


def build_query(**params: Any) -> list[tuple[str, str]]:
    """Build query parameters, dropping ``None`` values and camel-casing names."""
    return [
        (camel_case(name), query_value(value))
        for name, value in params.items()
        if value is not None
    ]


def split_device_ids(
    devices: Iterable[DeviceId | str] | None,
) -> tuple[str | None, str | None]:
    """Split device references into comma-joined device IDs and product unique IDs."""
    ids: list[str] = []
    prod_unique_ids: list[str] = []
    for device in devices or ():
        if isinstance(device, str):
            device = DeviceId(device)
        if device.is_prod_unique_id:
            prod_unique_ids.append(device.id)
        else:
            ids.append(device.id)
    return ",".join(ids) or None, ",".join(prod_unique_ids) or None


def _device(device: DeviceId | str | None) -> DeviceId | None:
    if isinstance(device, str):
        return DeviceId(device)
    return device


def _options(options: Mapping[str, Any] | None) -> dict[str, Any]:
    return dict(options or {})


def _blockchain_params(
    asset_id: str, foreign_blockchain: ForeignBlockchain | str
) -> dict[str, str]:
    return {"asset_id": asset_id, "foreign_blockchain": query_value(foreign_blockchain)}


def _nf_issuance_body(
    issuance: Mapping[str, Any] | str,
    non_fungible_tokens: Iterable[Mapping[str, Any]] | None,
    is_final: bool | None,
) -> dict[str, Any]:
    """Body of a (re)issue call: issuance info first, continuation token afterwards."""
    if isinstance(issuance, str):
        body: dict[str, Any] = {"continuation_token": issuance}
    else:
        body = _options(issuance)
        holding_devices = body.get("holding_devices")
        if isinstance(holding_devices, (str, DeviceId)):
            body["holding_devices"] = _device(holding_devices)
        elif holding_devices is not None:
            body["holding_devices"] = [_device(device) for device in holding_devices]
    if non_fungible_tokens is not None:
        body["non_fungible_tokens"] = list(non_fungible_tokens)
    body["is_final"] = is_final
    return to_json_value(body)


class CatenisApi:
    """Per-endpoint wrappers over a generic ``_invoke``."""

    def _invoke(
        self,
        api_method: ApiMethod,
        *,
        url_params: Mapping[str, str] | None = None,
        query: list[tuple[str, str]] | None = None,
        body: Any = None,
    ) -> Any:
        raise NotImplementedError

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    def log_message(
        self, message: str | Mapping[str, Any], options: Mapping[str, Any] | None = None
    ) -> Any:
        """Record a message on the blockchain."""
        body = to_json_value({"message": message, "options": options})
        return self._invoke(LOG_MESSAGE, body=body)

    def send_message(
        self,
        message: str | Mapping[str, Any],
        target_device: DeviceId | str,
        options: Mapping[str, Any] | None = None,
    ) -> Any:
        """Send a message to another device."""
        body = to_json_value(
            {
                "message": message,
                "target_device": _device(target_device),
                "options": options,
            }
        )
        return self._invoke(SEND_MESSAGE, body=body)

    def read_message(
        self, message_id: str, options: Mapping[str, Any] | None = None
    ) -> Any:
        """Read a message.

        Options: ``encoding``, ``continuation_token``, ``data_chunk_size``, ``async``.
        """
        return self._invoke(
            READ_MESSAGE,
            url_params={"message_id": message_id},
            query=build_query(**_options(options)),
        )

    def retrieve_message_container(self, message_id: str) -> Any:
        return self._invoke(
            RETRIEVE_MESSAGE_CONTAINER, url_params={"message_id": message_id}
        )

    def retrieve_message_origin(
        self, message_id: str, msg_to_sign: str | None = None
    ) -> Any:
        """Retrieve message origin proof. Public: sent without a signature."""
        return self._invoke(
            RETRIEVE_MESSAGE_ORIGIN,
            url_params={"message_id": message_id},
            query=build_query(msg_to_sign=msg_to_sign),
        )

    def retrieve_message_progress(self, message_id: str) -> Any:
        return self._invoke(
            RETRIEVE_MESSAGE_PROGRESS, url_params={"message_id": message_id}
        )

    def list_messages(self, options: Mapping[str, Any] | None = None) -> Any:
        """List messages matching the given filters.

        ``from_devices``/``to_devices`` take ``DeviceId`` lists and are split into
        the device ID and product unique ID query parameters.
        """
        params = _options(options)
        from_ids, from_prod_ids = split_device_ids(params.pop("from_devices", None))
        to_ids, to_prod_ids = split_device_ids(params.pop("to_devices", None))
        query = build_query(
            from_device_ids=from_ids,
            from_device_prod_unique_ids=from_prod_ids,
            to_device_ids=to_ids,
            to_device_prod_unique_ids=to_prod_ids,
            **params,
        )
        return self._invoke(LIST_MESSAGES, query=query)

    # -------------------------------------------------------------------------
    # Assets
    # -------------------------------------------------------------------------

    def issue_asset(
        self,
        asset_info: Mapping[str, Any],
        amount: float,
        holding_device: DeviceId | str | None = None,
    ) -> Any:
        body = to_json_value(
            {
                "asset_info": asset_info,
                "amount": amount,
                "holding_device": _device(holding_device),
            }
        )
        return self._invoke(ISSUE_ASSET, body=body)

    def reissue_asset(
        self,
        asset_id: str,
        amount: float,
        holding_device: DeviceId | str | None = None,
    ) -> Any:
        body = to_json_value({"amount": amount, "holding_device": _device(holding_device)})
        return self._invoke(REISSUE_ASSET, url_params={"asset_id": asset_id}, body=body)

    def transfer_asset(
        self, asset_id: str, amount: float, receiving_device: DeviceId | str
    ) -> Any:
        body = to_json_value(
            {"amount": amount, "receiving_device": _device(receiving_device)}
        )
        return self._invoke(TRANSFER_ASSET, url_params={"asset_id": asset_id}, body=body)

    def retrieve_asset_info(self, asset_id: str) -> Any:
        return self._invoke(RETRIEVE_ASSET_INFO, url_params={"asset_id": asset_id})

    def get_asset_balance(self, asset_id: str) -> Any:
        return self._invoke(GET_ASSET_BALANCE, url_params={"asset_id": asset_id})

    def list_owned_assets(self, limit: int | None = None, skip: int | None = None) -> Any:
        return self._invoke(LIST_OWNED_ASSETS, query=build_query(limit=limit, skip=skip))

    def list_issued_assets(
        self, limit: int | None = None, skip: int | None = None
    ) -> Any:
        return self._invoke(LIST_ISSUED_ASSETS, query=build_query(limit=limit, skip=skip))

    def retrieve_asset_issuance_history(
        self,
        asset_id: str,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        limit: int | None = None,
        skip: int | None = None,
    ) -> Any:
        return self._invoke(
            RETRIEVE_ASSET_ISSUANCE_HISTORY,
            url_params={"asset_id": asset_id},
            query=build_query(
                start_date=start_date, end_date=end_date, limit=limit, skip=skip
            ),
        )

    def list_asset_holders(
        self, asset_id: str, limit: int | None = None, skip: int | None = None
    ) -> Any:
        return self._invoke(
            LIST_ASSET_HOLDERS,
            url_params={"asset_id": asset_id},
            query=build_query(limit=limit, skip=skip),
        )

    # -------------------------------------------------------------------------
    # Asset export and migration
    # -------------------------------------------------------------------------

    def export_asset(
        self,
        asset_id: str,
        foreign_blockchain: ForeignBlockchain | str,
        token: Mapping[str, Any],
        options: Mapping[str, Any] | None = None,
    ) -> Any:
        """Export an asset to a foreign blockchain as a new token.

        Args:
            asset_id: Catenis asset to export.
            foreign_blockchain: Target blockchain.
            token: Token ``name`` and ``symbol``.
            options: ``consumption_profile``, ``estimate_only``.
        """
        body = to_json_value({"token": token, "options": options})
        return self._invoke(
            EXPORT_ASSET,
            url_params=_blockchain_params(asset_id, foreign_blockchain),
            body=body,
        )

    def asset_export_outcome(
        self, asset_id: str, foreign_blockchain: ForeignBlockchain | str
    ) -> Any:
        return self._invoke(
            ASSET_EXPORT_OUTCOME,
            url_params=_blockchain_params(asset_id, foreign_blockchain),
        )

    def list_exported_assets(self, options: Mapping[str, Any] | None = None) -> Any:
        """List exported assets.

        Options: ``asset_id``, ``foreign_blockchain``, ``token_symbol``, ``status``
        (a list), ``negate_status``, ``start_date``, ``end_date``, ``limit``, ``skip``.
        """
        return self._invoke(LIST_EXPORTED_ASSETS, query=build_query(**_options(options)))

    def migrate_asset(
        self,
        asset_id: str,
        foreign_blockchain: ForeignBlockchain | str,
        migration: Mapping[str, Any] | str,
        options: Mapping[str, Any] | None = None,
    ) -> Any:
        """Migrate an amount of an exported asset to or from its foreign token.

        ``migration`` is either the migration info (``direction``, ``amount``,
        ``dest_address``) or the ID of an earlier migration to reprocess.
        """
        body = to_json_value({"migration": migration, "options": options})
        return self._invoke(
            MIGRATE_ASSET,
            url_params=_blockchain_params(asset_id, foreign_blockchain),
            body=body,
        )

    def asset_migration_outcome(self, migration_id: str) -> Any:
        return self._invoke(
            ASSET_MIGRATION_OUTCOME, url_params={"migration_id": migration_id}
        )

    def list_asset_migrations(self, options: Mapping[str, Any] | None = None) -> Any:
        """List asset migrations.

        Options: ``asset_id``, ``foreign_blockchain``, ``direction``, ``status``
        (a list), ``negate_status``, ``start_date``, ``end_date``, ``limit``, ``skip``.
        """
        return self._invoke(LIST_ASSET_MIGRATIONS, query=build_query(**_options(options)))

    # -------------------------------------------------------------------------
    # Non-fungible assets
    # -------------------------------------------------------------------------

    def issue_non_fungible_asset(
        self,
        issuance: Mapping[str, Any] | str,
        non_fungible_tokens: Iterable[Mapping[str, Any]] | None = None,
        is_final: bool | None = None,
    ) -> Any:
        """Issue a new non-fungible asset with its first tokens.

        Args:
            issuance: Issuance info (``asset_info``, ``encrypt_nft_contents``,
                ``holding_devices``, ``async``), or the continuation token
                returned by a previous, non-final call.
            non_fungible_tokens: Tokens to issue (``metadata``, ``contents``).
            is_final: Whether this is the last call of a multi-part issuance.
        """
        body = _nf_issuance_body(issuance, non_fungible_tokens, is_final)
        return self._invoke(ISSUE_NON_FUNGIBLE_ASSET, body=body)

    def reissue_non_fungible_asset(
        self,
        asset_id: str,
        issuance: Mapping[str, Any] | str,
        non_fungible_tokens: Iterable[Mapping[str, Any]] | None = None,
        is_final: bool | None = None,
    ) -> Any:
        """Issue more tokens of an existing non-fungible asset."""
        body = _nf_issuance_body(issuance, non_fungible_tokens, is_final)
        return self._invoke(
            REISSUE_NON_FUNGIBLE_ASSET, url_params={"asset_id": asset_id}, body=body
        )

    def retrieve_non_fungible_asset_issuance_progress(self, issuance_id: str) -> Any:
        return self._invoke(
            RETRIEVE_NON_FUNGIBLE_ASSET_ISSUANCE_PROGRESS,
            url_params={"issuance_id": issuance_id},
        )

    def retrieve_non_fungible_token(
        self, token_id: str, options: Mapping[str, Any] | None = None
    ) -> Any:
        """Retrieve a non-fungible token.

        Options: ``retrieve_contents``, ``contents_only``, ``contents_encoding``,
        ``data_chunk_size``, ``async``, ``continuation_token``.
        """
        return self._invoke(
            RETRIEVE_NON_FUNGIBLE_TOKEN,
            url_params={"token_id": token_id},
            query=build_query(**_options(options)),
        )

    def retrieve_non_fungible_token_retrieval_progress(
        self, token_id: str, retrieval_id: str
    ) -> Any:
        return self._invoke(
            RETRIEVE_NON_FUNGIBLE_TOKEN_RETRIEVAL_PROGRESS,
            url_params={"token_id": token_id, "retrieval_id": retrieval_id},
        )

    def transfer_non_fungible_token(
        self,
        token_id: str,
        receiving_device: DeviceId | str,
        async_: bool | None = None,
    ) -> Any:
        body = to_json_value(
            {"receiving_device": _device(receiving_device), "async": async_}
        )
        return self._invoke(
            TRANSFER_NON_FUNGIBLE_TOKEN, url_params={"token_id": token_id}, body=body
        )

    def retrieve_non_fungible_token_transfer_progress(
        self, token_id: str, transfer_id: str
    ) -> Any:
        return self._invoke(
            RETRIEVE_NON_FUNGIBLE_TOKEN_TRANSFER_PROGRESS,
            url_params={"token_id": token_id, "transfer_id": transfer_id},
        )

    # -------------------------------------------------------------------------
    # Permissions, devices and notification events
    # -------------------------------------------------------------------------

    def list_permission_events(self) -> Any:
        return self._invoke(LIST_PERMISSION_EVENTS)

    def retrieve_permission_rights(self, event: str) -> Any:
        return self._invoke(RETRIEVE_PERMISSION_RIGHTS, url_params={"event_name": event})

    def set_permission_rights(self, event: str, rights: Mapping[str, Any]) -> Any:
        return self._invoke(
            SET_PERMISSION_RIGHTS,
            url_params={"event_name": event},
            body=to_json_value(rights),
        )

    def check_effective_permission_right(
        self, event: str, device: DeviceId | str
    ) -> Any:
        device = _device(device)
        return self._invoke(
            CHECK_EFFECTIVE_PERMISSION_RIGHT,
            url_params={"event_name": event, "device_id": device.id},
            query=build_query(is_prod_unique_id=device.is_prod_unique_id),
        )

    def retrieve_device_identification_info(self, device: DeviceId | str) -> Any:
        device = _device(device)
        return self._invoke(
            RETRIEVE_DEVICE_IDENTIFICATION_INFO,
            url_params={"device_id": device.id},
            query=build_query(is_prod_unique_id=device.is_prod_unique_id),
        )

    def list_notification_events(self) -> Any:
        return self._invoke(LIST_NOTIFICATION_EVENTS)
