"""DynamoDB storage client.

Wraps the low-level aiobotocore DynamoDB client and speaks entities, not
attribute maps. Handles:
- attribute map (de)serialization
- conditional create for API keys
- bounded pages in either direction with continuation tokens
- sort key range conditions for time-series partitions
- retry with bounded exponential backoff on throttling/transient errors
"""

from __future__ import annotations

import asyncio
import json
from contextlib import AsyncExitStack
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

import structlog
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import to_jsonable_python

from homeapi.config import DynamoDBConfig
from homeapi.errors import (
    CorruptRecordError,
    DuplicateKeyError,
    InvalidCursorError,
    MalformedKeyError,
    NotFoundError,
    StorageError,
)
from homeapi.models.entities import MODEL_BY_KIND, Entity, EntityKind
from homeapi.storage import keys

logger = structlog.get_logger()

_RETRYABLE_ERROR_CODES = frozenset(
    {
        "ProvisionedThroughputExceededException",
        "ThrottlingException",
        "RequestLimitExceeded",
        "InternalServerError",
        "ServiceUnavailable",
    }
)
_TRANSIENT_EXCEPTIONS = (
    EndpointConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
    ConnectionClosedError,
)
_TABLE_KEY_ATTRIBUTES = ("pk", "sk")


@dataclass(frozen=True)
class PageEntry:
    """An entity plus the position token of its item.

    Passed back as a start token, it resumes right after the item in the
    direction of the query.
    """

    entity: Entity
    token: bytes


@dataclass(frozen=True)
class Page:
    """A bounded slice of a collection, in ascending key order.

    ``next_token`` continues the query in its own direction: after the last
    entry going forward, before the first entry going backward.
    """

    entries: list[PageEntry]
    next_token: bytes | None = None

    @property
    def items(self) -> list[Entity]:
        return [entry.entity for entry in self.entries]


# ---- Attribute maps ----


def _serialize(value: Any) -> dict[str, Any]:
    """Convert a Python value to a DynamoDB attribute value."""
    if value is None:
        return {"NULL": True}
    if isinstance(value, bool):
        return {"BOOL": value}
    if isinstance(value, (int, float, Decimal)):
        return {"N": str(value)}
    if isinstance(value, str):
        return {"S": value}
    if isinstance(value, datetime):
        return {"S": to_jsonable_python(value)}
    if isinstance(value, list):
        return {"L": [_serialize(v) for v in value]}
    if isinstance(value, dict):
        return {"M": {k: _serialize(v) for k, v in value.items()}}
    raise TypeError(f"Unsupported attribute type: {type(value).__name__}")


def _deserialize(attr: dict[str, Any]) -> Any:
    """Convert a DynamoDB attribute value to a Python value."""
    if "S" in attr:
        return attr["S"]
    if "N" in attr:
        try:
            return int(attr["N"])
        except ValueError:
            return Decimal(attr["N"])
    if "BOOL" in attr:
        return attr["BOOL"]
    if "NULL" in attr:
        return None
    if "L" in attr:
        return [_deserialize(v) for v in attr["L"]]
    if "M" in attr:
        return {k: _deserialize(v) for k, v in attr["M"].items()}
    raise ValueError(f"Unsupported attribute value: {sorted(attr)}")


def _key(pk: str, sk: str) -> dict[str, Any]:
    return {"pk": {"S": pk}, "sk": {"S": sk}}


def entity_to_item(entity: Entity) -> dict[str, Any]:
    """Attribute map for an entity, including its pk/sk."""
    pk, sk = keys.key_of(entity)
    data = entity.model_dump(exclude=set(entity.key_fields))
    item = _key(pk, sk)
    item.update({name: _serialize(value) for name, value in data.items()})
    return item


def item_to_entity(item: dict[str, Any], expected: EntityKind | None = None) -> Entity:
    """Parse an attribute map into its entity.

    Raises:
        CorruptRecordError: If the item has an unknown key shape, the wrong
            kind, or attributes that fail validation
    """
    try:
        plain = {name: _deserialize(value) for name, value in item.items()}
        pk = plain.pop("pk")
        sk = plain.pop("sk")
        kind, identifier = keys.decode(pk, sk)
    except (KeyError, TypeError, ValueError, MalformedKeyError) as exc:
        raise CorruptRecordError(details={"reason": str(exc)}) from exc

    if expected is not None and kind is not expected:
        raise CorruptRecordError(
            details={"reason": f"expected {expected.value}, found {kind.value}", "pk": pk}
        )

    model = MODEL_BY_KIND[kind]
    try:
        plain.update(model.key_values(identifier))
        return model.model_validate(plain)
    except (PydanticValidationError, ValueError) as exc:
        raise CorruptRecordError(
            details={"reason": str(exc), "pk": pk, "sk": sk}
        ) from exc


def _encode_token(key: dict[str, Any]) -> bytes:
    return json.dumps(key, sort_keys=True, separators=(",", ":")).encode()


def _decode_token(token: bytes) -> dict[str, Any]:
    try:
        key = json.loads(token)
    except (UnicodeDecodeError, ValueError):
        raise InvalidCursorError() from None
    if not isinstance(key, dict) or not key:
        raise InvalidCursorError()
    for name, value in key.items():
        if not isinstance(value, dict) or len(value) != 1:
            raise InvalidCursorError()
        if not set(value) <= {"S", "N", "B"}:
            raise InvalidCursorError()
    return key


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


class StorageClient:
    """Entity-level access to the homeapi DynamoDB table."""

    def __init__(self, config: DynamoDBConfig, client: Any | None = None) -> None:
        """Initialize storage client.

        Args:
            config: DynamoDB configuration
            client: Pre-built low-level DynamoDB client (skips startup)
        """
        self._config = config
        self._table = config.table
        self._client = client
        self._exit_stack: AsyncExitStack | None = None
        self._indexes = {config.owner_index: keys.OWNER_INDEX_ATTRIBUTE}
        self._log = logger.bind(component="storage", table=config.table)

    @property
    def owner_index(self) -> str:
        return self._config.owner_index

    @property
    def client(self) -> Any:
        if self._client is None:
            raise RuntimeError("StorageClient not started. Call startup() first.")
        return self._client

    async def startup(self) -> None:
        """Create the aiobotocore client.

        SDK-level retries are disabled; ``_call`` is the only retry loop.
        """
        if self._client is not None:
            return

        import aiobotocore.session
        from aiobotocore.config import AioConfig

        session = aiobotocore.session.get_session()
        kwargs: dict[str, Any] = {
            "config": AioConfig(retries={"mode": "standard", "total_max_attempts": 1}),
        }
        if self._config.region:
            kwargs["region_name"] = self._config.region
        if self._config.endpoint_url:
            kwargs["endpoint_url"] = self._config.endpoint_url

        self._exit_stack = AsyncExitStack()
        self._client = await self._exit_stack.enter_async_context(
            session.create_client("dynamodb", **kwargs)
        )
        self._log.info("storage.started", endpoint_url=self._config.endpoint_url)

    async def shutdown(self) -> None:
        """Close the aiobotocore client if this instance created it."""
        if self._exit_stack is None:
            return
        await self._exit_stack.aclose()
        self._exit_stack = None
        self._client = None
        self._log.info("storage.shutdown")

    # ---- Retry ----

    def _retry_delay_seconds(self, attempt: int) -> float:
        # attempt is zero-based retry attempt index
        return min(
            self._config.retry_base_delay * (2**attempt),
            self._config.retry_max_delay,
        )

    async def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        """Invoke a client operation with bounded retries.

        Non-retryable ``ClientError`` is re-raised for the caller to map.

        Raises:
            StorageError: When retries are exhausted or the SDK fails
            ClientError: For non-retryable service errors
        """
        method = getattr(self.client, operation)
        max_attempts = max(1, self._config.max_attempts)
        last_error: Exception | None = None

        for attempt in range(max_attempts):
            try:
                return await method(**kwargs)
            except ClientError as exc:
                if _error_code(exc) not in _RETRYABLE_ERROR_CODES:
                    raise
                last_error = exc
            except _TRANSIENT_EXCEPTIONS as exc:
                last_error = exc
            except BotoCoreError as exc:
                raise StorageError(
                    details={"operation": operation, "error": str(exc)}
                ) from exc

            if attempt < max_attempts - 1:
                delay = self._retry_delay_seconds(attempt)
                self._log.warning(
                    "storage.retry",
                    operation=operation,
                    attempt=attempt + 1,
                    delay=delay,
                    error=str(last_error),
                )
                await asyncio.sleep(delay)

        self._log.error(
            "storage.retries_exhausted",
            operation=operation,
            attempts=max_attempts,
            error=str(last_error),
        )
        raise StorageError(
            details={"operation": operation, "attempts": max_attempts, "error": str(last_error)}
        ) from last_error

    @staticmethod
    def _storage_error(operation: str, exc: ClientError) -> StorageError:
        return StorageError(
            details={"operation": operation, "code": _error_code(exc), "error": str(exc)}
        )

    # ---- Point operations ----

    async def get_item(self, kind: EntityKind, identifier: str) -> Entity | None:
        """Point lookup by primary key. Returns None if the item is missing."""
        pk, sk = keys.encode(kind, identifier)
        try:
            resp = await self._call("get_item", TableName=self._table, Key=_key(pk, sk))
        except ClientError as exc:
            raise self._storage_error("get_item", exc) from exc

        item = resp.get("Item")
        if not item:
            return None
        return self._parse(item, expected=kind)

    async def put_item(self, entity: Entity) -> None:
        """Write an entity.

        Devices, places and users are upserted. API keys are created only if
        no item with the same hash exists.

        Raises:
            DuplicateKeyError: If an API key with the same hash exists
        """
        kwargs: dict[str, Any] = {
            "TableName": self._table,
            "Item": entity_to_item(entity),
        }
        if entity.kind is EntityKind.API_KEY:
            kwargs["ConditionExpression"] = "attribute_not_exists(pk)"

        try:
            await self._call("put_item", **kwargs)
        except ClientError as exc:
            if _error_code(exc) == "ConditionalCheckFailedException":
                raise DuplicateKeyError(
                    details={"kind": entity.kind.value}
                ) from None
            raise self._storage_error("put_item", exc) from exc

        self._log.debug("storage.put", kind=entity.kind.value)

    async def update_item(self, entity: Entity) -> Entity:
        """Overwrite the attributes of an existing item.

        Raises:
            NotFoundError: If the item does not exist
        """
        pk, sk = keys.key_of(entity)
        values = entity.model_dump(exclude=set(entity.key_fields))
        attributes = await self._update(pk, sk, values)
        return self._parse(attributes, expected=entity.kind)

    async def update_attributes(
        self, kind: EntityKind, identifier: str, values: dict[str, Any]
    ) -> Entity:
        """Set some attributes of an existing item, leaving the others as stored.

        Raises:
            NotFoundError: If the item does not exist
        """
        if not values:
            raise ValueError("values must not be empty")
        pk, sk = keys.encode(kind, identifier)
        attributes = await self._update(pk, sk, values)
        return self._parse(attributes, expected=kind)

    async def touch_api_key(self, key_hash: str, when: datetime) -> None:
        """Set ``last_used_at`` on an existing API key.

        Raises:
            NotFoundError: If the key has been deleted meanwhile
        """
        pk, sk = keys.encode(EntityKind.API_KEY, key_hash)
        await self._update(pk, sk, {"last_used_at": when})

    async def _update(self, pk: str, sk: str, values: dict[str, Any]) -> dict[str, Any]:
        names: dict[str, str] = {}
        attr_values: dict[str, Any] = {}
        assignments: list[str] = []
        for i, (name, value) in enumerate(values.items()):
            names[f"#a{i}"] = name
            attr_values[f":v{i}"] = _serialize(value)
            assignments.append(f"#a{i} = :v{i}")

        try:
            resp = await self._call(
                "update_item",
                TableName=self._table,
                Key=_key(pk, sk),
                UpdateExpression="SET " + ", ".join(assignments),
                ConditionExpression="attribute_exists(pk)",
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=attr_values,
                ReturnValues="ALL_NEW",
            )
        except ClientError as exc:
            if _error_code(exc) == "ConditionalCheckFailedException":
                raise NotFoundError() from None
            raise self._storage_error("update_item", exc) from exc

        return resp.get("Attributes", {})

    async def delete_item(self, kind: EntityKind, identifier: str) -> None:
        """Delete by primary key. Deleting a missing item is not an error."""
        pk, sk = keys.encode(kind, identifier)
        try:
            await self._call("delete_item", TableName=self._table, Key=_key(pk, sk))
        except ClientError as exc:
            raise self._storage_error("delete_item", exc) from exc

        self._log.debug("storage.delete", kind=kind.value)

    # ---- Queries ----

    async def query_by_partition(
        self,
        partition_key: str,
        token: bytes | None = None,
        page_size: int = 20,
        *,
        forward: bool = True,
        sort_key_between: tuple[str, str] | None = None,
    ) -> Page:
        """Items of one partition, optionally limited to a sort key range.

        Args:
            partition_key: Partition to read
            token: Position token to resume after (before, going backward)
            page_size: Maximum number of entries
            forward: Read in ascending sort key order; False reads the
                highest keys first
            sort_key_between: Inclusive (low, high) sort key bounds
        """
        condition = "pk = :pk"
        values: dict[str, Any] = {":pk": {"S": partition_key}}
        if sort_key_between is not None:
            low, high = sort_key_between
            if low > high:
                raise ValueError("sort_key_between bounds are reversed")
            condition += " AND sk BETWEEN :low AND :high"
            values[":low"] = {"S": low}
            values[":high"] = {"S": high}

        return await self._query(
            {
                "TableName": self._table,
                "KeyConditionExpression": condition,
                "ExpressionAttributeValues": values,
                "ScanIndexForward": forward,
            },
            key_attributes=_TABLE_KEY_ATTRIBUTES,
            token=token,
            page_size=page_size,
            forward=forward,
        )

    async def query_by_index(
        self,
        index_name: str,
        value: str,
        token: bytes | None = None,
        page_size: int = 20,
        *,
        forward: bool = True,
    ) -> Page:
        """Items whose index partition attribute equals ``value``."""
        attribute = self._indexes.get(index_name)
        if attribute is None:
            raise ValueError(f"Unknown index: {index_name}")

        return await self._query(
            {
                "TableName": self._table,
                "IndexName": index_name,
                "KeyConditionExpression": "#ipk = :ipk",
                "ExpressionAttributeNames": {"#ipk": attribute},
                "ExpressionAttributeValues": {":ipk": {"S": value}},
                "ScanIndexForward": forward,
            },
            key_attributes=(*_TABLE_KEY_ATTRIBUTES, attribute),
            token=token,
            page_size=page_size,
            forward=forward,
        )

    async def _query(
        self,
        request: dict[str, Any],
        *,
        key_attributes: tuple[str, ...],
        token: bytes | None,
        page_size: int,
        forward: bool,
    ) -> Page:
        """Run a Query until ``page_size + 1`` items or the end is reached.

        The extra item only tells whether more items follow in the query
        direction; DynamoDB may return a LastEvaluatedKey even when nothing
        follows. Backward pages are reversed into ascending order.
        """
        if page_size < 1:
            raise ValueError("page_size must be positive")

        start_key = _decode_token(token) if token is not None else None
        from_client = start_key is not None
        raw_items: list[dict[str, Any]] = []

        while True:
            kwargs = dict(request, Limit=page_size + 1 - len(raw_items))
            if start_key:
                kwargs["ExclusiveStartKey"] = start_key
            try:
                resp = await self._call("query", **kwargs)
            except ClientError as exc:
                if from_client and _error_code(exc) == "ValidationException":
                    raise InvalidCursorError() from None
                raise self._storage_error("query", exc) from exc
            from_client = False

            raw_items.extend(resp.get("Items", []))
            start_key = resp.get("LastEvaluatedKey")
            if len(raw_items) > page_size or not start_key:
                break

        has_more = len(raw_items) > page_size
        entries = [
            PageEntry(
                entity=self._parse(item),
                token=self._position_token(item, key_attributes),
            )
            for item in raw_items[:page_size]
        ]
        next_token = entries[-1].token if has_more and entries else None
        if not forward:
            entries.reverse()
        return Page(entries=entries, next_token=next_token)

    @staticmethod
    def _position_token(item: dict[str, Any], key_attributes: tuple[str, ...]) -> bytes:
        try:
            return _encode_token({name: item[name] for name in key_attributes})
        except KeyError as exc:
            raise CorruptRecordError(
                details={"reason": f"missing key attribute {exc}"}
            ) from exc

    def _parse(self, item: dict[str, Any], expected: EntityKind | None = None) -> Entity:
        try:
            return item_to_entity(item, expected)
        except CorruptRecordError as exc:
            self._log.error("storage.corrupt_record", details=exc.details)
            raise
