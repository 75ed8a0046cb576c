"""Query and Mutation resolvers.

Each resolver obtains the caller's identity (optional for public reads),
enforces its requirement, decodes global IDs and cursors, calls the store
or the auth service, and re-encodes IDs and cursors for the response.
"""

import dataclasses
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Iterator, TypeVar

import pydantic
import strawberry
import structlog
from strawberry.types import Info

from homeapi.config import PaginationConfig
from homeapi.errors import (
    HomeApiError,
    InternalServerError,
    InvalidIdentifierError,
    NotFoundError,
    ValidationError,
)
from homeapi.graphql.context import RequestContext
from homeapi.graphql.permissions import check_write_access, require_oauth
from homeapi.graphql.types import (
    ApiKeyCreated,
    ApiKeyType,
    Connection,
    DeletePayload,
    DeviceInput,
    DeviceType,
    Edge,
    ElectricityInput,
    ElectricityType,
    FinalElectricityInput,
    FinalElectricityType,
    Node,
    PageInfo,
    PlaceConditionInput,
    PlaceConditionType,
    PlaceInput,
    PlaceType,
)
from homeapi.models import (
    Device,
    Electricity,
    Entity,
    EntityKind,
    FinalElectricity,
    Place,
    PlaceCondition,
    Reading,
)
from homeapi.storage import cursor, keys
from homeapi.storage.client import Page

logger = structlog.get_logger()

N = TypeVar("N")
M = TypeVar("M", bound=pydantic.BaseModel)
R = TypeVar("R", Electricity, FinalElectricity, PlaceCondition)

ResolverInfo = Info[RequestContext, None]


@dataclasses.dataclass(frozen=True)
class _Window:
    """Slice of a connection requested by first/after or last/before."""

    page_size: int
    forward: bool = True
    token: bytes | None = None


@contextmanager
def _public_errors(field: str, info: ResolverInfo) -> Iterator[None]:
    """Replace internal errors with an opaque InternalServerError."""
    try:
        yield
    except HomeApiError as e:
        if not e.internal:
            raise
        logger.error(
            "graphql.internal_error",
            field=field,
            code=e.code,
            error=e.message,
            request_id=info.context.request_id,
            details=e.details,
        )
        raise InternalServerError() from None


def _page_size(name: str, value: int | None, pagination: PaginationConfig) -> int:
    if value is None:
        return pagination.default_page_size
    if not 1 <= value <= pagination.max_page_size:
        raise ValidationError(
            f"{name} must be between 1 and {pagination.max_page_size}"
        )
    return value


def _start_token(value: str | None) -> bytes | None:
    return cursor.decode(value) if value is not None else None


def _window(
    pagination: PaginationConfig,
    first: int | None = None,
    after: str | None = None,
    last: int | None = None,
    before: str | None = None,
) -> _Window:
    if first is not None and last is not None:
        raise ValidationError("first and last cannot be combined")
    if last is None and before is None:
        return _Window(_page_size("first", first, pagination), token=_start_token(after))
    if first is not None or after is not None:
        raise ValidationError("first/after cannot be combined with last/before")
    return _Window(
        _page_size("last", last, pagination), forward=False, token=_start_token(before)
    )


def _connection(
    page: Page, window: _Window, convert: Callable[[Entity], N]
) -> "Connection[N]":
    edges = [
        Edge(cursor=cursor.encode(entry.token), node=convert(entry.entity))
        for entry in page.entries
    ]
    more = page.next_token is not None
    resumed = window.token is not None
    return Connection(
        edges=edges,
        page_info=PageInfo(
            has_next_page=more if window.forward else resumed,
            has_previous_page=resumed if window.forward else more,
            start_cursor=edges[0].cursor if edges else None,
            end_cursor=edges[-1].cursor if edges else None,
        ),
    )


def _build(model: type[M], **fields: object) -> M:
    try:
        return model(**fields)
    except pydantic.ValidationError as e:
        error = e.errors()[0]
        location = ".".join(str(part) for part in error["loc"])
        raise ValidationError(f"{location}: {error['msg']}") from None


def _provided(input: object) -> dict[str, Any]:
    """Fields of a GraphQL input object that were given a value."""
    return {
        name: value
        for name, value in dataclasses.asdict(input).items()
        if value is not None
    }


def _expect_identifier(global_id: str, kind: EntityKind) -> str:
    decoded_kind, identifier = keys.from_global_id(global_id)
    if decoded_kind is not kind:
        raise InvalidIdentifierError(f"Expected a {kind.value} ID")
    return identifier


# Node types readable without a credential
_PUBLIC_NODES: dict[EntityKind, Callable[[Any], Node]] = {
    EntityKind.DEVICE: DeviceType.from_entity,
    EntityKind.PLACE: PlaceType.from_entity,
    EntityKind.ELECTRICITY: ElectricityType.from_entity,
    EntityKind.FINAL_ELECTRICITY: FinalElectricityType.from_entity,
    EntityKind.PLACE_CONDITION: PlaceConditionType.from_entity,
}


async def _readings(
    ctx: RequestContext,
    kind: EntityKind,
    device: str,
    after: datetime | None,
    before: datetime | None,
    window: _Window,
) -> Page:
    """Readings of ``device`` taken strictly between ``after`` and ``before``."""
    partition = keys.reading_partition(device)
    bounds = keys.reading_range(kind, after, before)
    if bounds is None:
        return Page(entries=[])
    return await ctx.storage.query_by_partition(
        partition,
        page_size=window.page_size,
        forward=window.forward,
        sort_key_between=bounds,
    )


async def _put_reading(info: ResolverInfo, model: type[R], input: object) -> R:
    ctx = info.context
    identity = await ctx.require_identity()
    check_write_access(identity, ctx.app.settings.access)
    reading = _build(model, **_provided(input))
    await ctx.storage.put_item(reading)
    logger.info(
        "graphql.reading.put",
        kind=reading.kind.value,
        device=reading.device,
        by=identity.email,
    )
    return reading


async def _update_reading(info: ResolverInfo, model: type[R], input: object) -> Reading:
    ctx = info.context
    identity = await ctx.require_identity()
    check_write_access(identity, ctx.app.settings.access)
    fields = _provided(input)
    reading = _build(model, **fields)
    values = reading.model_dump(include=set(fields) - set(model.key_fields))
    if not values:
        raise ValidationError("No fields to update")
    try:
        return await ctx.storage.update_attributes(model.kind, reading.identifier, values)
    except NotFoundError:
        raise NotFoundError(f"{model.kind.value} reading not found") from None


@strawberry.type
class Query:
    @strawberry.field
    async def devices(
        self,
        info: ResolverInfo,
        first: int | None = None,
        after: str | None = None,
        last: int | None = None,
        before: str | None = None,
    ) -> Connection[DeviceType]:
        ctx = info.context
        with _public_errors("devices", info):
            await ctx.optional_identity()
            window = _window(ctx.app.settings.pagination, first, after, last, before)
            page = await ctx.storage.query_by_partition(
                keys.partition_for(EntityKind.DEVICE),
                token=window.token,
                page_size=window.page_size,
                forward=window.forward,
            )
            return _connection(page, window, DeviceType.from_entity)

    @strawberry.field
    async def places(
        self,
        info: ResolverInfo,
        first: int | None = None,
        after: str | None = None,
        last: int | None = None,
        before: str | None = None,
    ) -> Connection[PlaceType]:
        ctx = info.context
        with _public_errors("places", info):
            await ctx.optional_identity()
            window = _window(ctx.app.settings.pagination, first, after, last, before)
            page = await ctx.storage.query_by_partition(
                keys.partition_for(EntityKind.PLACE),
                token=window.token,
                page_size=window.page_size,
                forward=window.forward,
            )
            return _connection(page, window, PlaceType.from_entity)

    @strawberry.field(description="API keys of the authenticated caller.")
    async def api_keys(
        self,
        info: ResolverInfo,
        first: int | None = None,
        after: str | None = None,
        last: int | None = None,
        before: str | None = None,
    ) -> Connection[ApiKeyType]:
        ctx = info.context
        with _public_errors("apiKeys", info):
            identity = await ctx.require_identity()
            window = _window(ctx.app.settings.pagination, first, after, last, before)
            page = await ctx.auth.page_api_keys(
                identity.email,
                token=window.token,
                page_size=window.page_size,
                forward=window.forward,
            )
            return _connection(page, window, ApiKeyType.from_entity)

    @strawberry.field(description="Electricity samples of a device, oldest first.")
    async def electricity(
        self,
        info: ResolverInfo,
        device: str,
        after: datetime | None = None,
        before: datetime | None = None,
        first: int | None = None,
        last: int | None = None,
    ) -> Connection[ElectricityType]:
        ctx = info.context
        with _public_errors("electricity", info):
            await ctx.optional_identity()
            window = _window(ctx.app.settings.pagination, first=first, last=last)
            page = await _readings(
                ctx, EntityKind.ELECTRICITY, device, after, before, window
            )
            return _connection(page, window, ElectricityType.from_entity)

    @strawberry.field
    async def final_electricity(
        self,
        info: ResolverInfo,
        device: str,
        after: datetime | None = None,
        before: datetime | None = None,
        first: int | None = None,
        last: int | None = None,
    ) -> Connection[FinalElectricityType]:
        ctx = info.context
        with _public_errors("finalElectricity", info):
            await ctx.optional_identity()
            window = _window(ctx.app.settings.pagination, first=first, last=last)
            page = await _readings(
                ctx, EntityKind.FINAL_ELECTRICITY, device, after, before, window
            )
            return _connection(page, window, FinalElectricityType.from_entity)

    @strawberry.field
    async def place_conditions(
        self,
        info: ResolverInfo,
        device: str,
        after: datetime | None = None,
        before: datetime | None = None,
        first: int | None = None,
        last: int | None = None,
    ) -> Connection[PlaceConditionType]:
        ctx = info.context
        with _public_errors("placeConditions", info):
            await ctx.optional_identity()
            window = _window(ctx.app.settings.pagination, first=first, last=last)
            page = await _readings(
                ctx, EntityKind.PLACE_CONDITION, device, after, before, window
            )
            return _connection(page, window, PlaceConditionType.from_entity)

    @strawberry.field
    async def node(self, info: ResolverInfo, id: strawberry.ID) -> Node | None:
        ctx = info.context
        with _public_errors("node", info):
            kind, identifier = keys.from_global_id(id)

            if kind is EntityKind.API_KEY:
                identity = await ctx.require_identity()
                api_key = await ctx.auth.get_api_key(identifier, identity.email)
                return ApiKeyType.from_entity(api_key) if api_key else None

            await ctx.optional_identity()
            convert = _PUBLIC_NODES.get(kind)
            if convert is None:
                # Users are not exposed as nodes
                return None
            entity = await ctx.storage.get_item(kind, identifier)
            return convert(entity) if entity else None


@strawberry.type
class Mutation:
    @strawberry.mutation
    async def put_device(self, info: ResolverInfo, input: DeviceInput) -> DeviceType:
        ctx = info.context
        with _public_errors("putDevice", info):
            identity = await ctx.require_identity()
            check_write_access(identity, ctx.app.settings.access)
            device = _build(
                Device, device_id=input.device_id, place=input.place, name=input.name
            )
            await ctx.storage.put_item(device)
            logger.info("graphql.device.put", device_id=device.device_id, by=identity.email)
            return DeviceType.from_entity(device)

    @strawberry.mutation
    async def update_device(self, info: ResolverInfo, input: DeviceInput) -> DeviceType:
        ctx = info.context
        with _public_errors("updateDevice", info):
            identity = await ctx.require_identity()
            check_write_access(identity, ctx.app.settings.access)
            device = _build(
                Device, device_id=input.device_id, place=input.place, name=input.name
            )
            try:
                updated = await ctx.storage.update_item(device)
            except NotFoundError:
                raise NotFoundError("Device not found") from None
            return DeviceType.from_entity(updated)

    @strawberry.mutation
    async def delete_device(self, info: ResolverInfo, id: strawberry.ID) -> DeletePayload:
        ctx = info.context
        with _public_errors("deleteDevice", info):
            identity = await ctx.require_identity()
            check_write_access(identity, ctx.app.settings.access)
            device_id = _expect_identifier(id, EntityKind.DEVICE)
            await ctx.storage.delete_item(EntityKind.DEVICE, device_id)
            logger.info("graphql.device.deleted", device_id=device_id, by=identity.email)
            return DeletePayload(success=True)

    @strawberry.mutation
    async def put_place(self, info: ResolverInfo, input: PlaceInput) -> PlaceType:
        ctx = info.context
        with _public_errors("putPlace", info):
            identity = await ctx.require_identity()
            check_write_access(identity, ctx.app.settings.access)
            place = _build(Place, place_id=input.place_id, name=input.name)
            await ctx.storage.put_item(place)
            logger.info("graphql.place.put", place_id=place.place_id, by=identity.email)
            return PlaceType.from_entity(place)

    @strawberry.mutation
    async def update_place(self, info: ResolverInfo, input: PlaceInput) -> PlaceType:
        ctx = info.context
        with _public_errors("updatePlace", info):
            identity = await ctx.require_identity()
            check_write_access(identity, ctx.app.settings.access)
            place = _build(Place, place_id=input.place_id, name=input.name)
            try:
                updated = await ctx.storage.update_item(place)
            except NotFoundError:
                raise NotFoundError("Place not found") from None
            return PlaceType.from_entity(updated)

    @strawberry.mutation
    async def delete_place(self, info: ResolverInfo, id: strawberry.ID) -> DeletePayload:
        ctx = info.context
        with _public_errors("deletePlace", info):
            identity = await ctx.require_identity()
            check_write_access(identity, ctx.app.settings.access)
            place_id = _expect_identifier(id, EntityKind.PLACE)
            await ctx.storage.delete_item(EntityKind.PLACE, place_id)
            logger.info("graphql.place.deleted", place_id=place_id, by=identity.email)
            return DeletePayload(success=True)

    @strawberry.mutation
    async def put_electricity(
        self, info: ResolverInfo, input: ElectricityInput
    ) -> ElectricityType:
        with _public_errors("putElectricity", info):
            reading = await _put_reading(info, Electricity, input)
            return ElectricityType.from_entity(reading)

    @strawberry.mutation
    async def update_electricity(
        self, info: ResolverInfo, input: ElectricityInput
    ) -> ElectricityType:
        with _public_errors("updateElectricity", info):
            reading = await _update_reading(info, Electricity, input)
            return ElectricityType.from_entity(reading)

    @strawberry.mutation
    async def put_final_electricity(
        self, info: ResolverInfo, input: FinalElectricityInput
    ) -> FinalElectricityType:
        with _public_errors("putFinalElectricity", info):
            reading = await _put_reading(info, FinalElectricity, input)
            return FinalElectricityType.from_entity(reading)

    @strawberry.mutation
    async def update_final_electricity(
        self, info: ResolverInfo, input: FinalElectricityInput
    ) -> FinalElectricityType:
        with _public_errors("updateFinalElectricity", info):
            reading = await _update_reading(info, FinalElectricity, input)
            return FinalElectricityType.from_entity(reading)

    @strawberry.mutation
    async def put_place_condition(
        self, info: ResolverInfo, input: PlaceConditionInput
    ) -> PlaceConditionType:
        with _public_errors("putPlaceCondition", info):
            reading = await _put_reading(info, PlaceCondition, input)
            return PlaceConditionType.from_entity(reading)

    @strawberry.mutation
    async def update_place_condition(
        self, info: ResolverInfo, input: PlaceConditionInput
    ) -> PlaceConditionType:
        with _public_errors("updatePlaceCondition", info):
            reading = await _update_reading(info, PlaceCondition, input)
            return PlaceConditionType.from_entity(reading)

    @strawberry.mutation
    async def create_api_key(
        self,
        info: ResolverInfo,
        name: str,
        expires_at: datetime | None = None,
    ) -> ApiKeyCreated:
        ctx = info.context
        with _public_errors("createApiKey", info):
            identity = await ctx.require_identity()
            require_oauth(identity)
            api_key, plaintext = await ctx.auth.issue_api_key(
                identity.email, name, expires_at=expires_at
            )
            return ApiKeyCreated(api_key=ApiKeyType.from_entity(api_key), key=plaintext)

    @strawberry.mutation
    async def delete_api_key(self, info: ResolverInfo, id: strawberry.ID) -> DeletePayload:
        ctx = info.context
        with _public_errors("deleteApiKey", info):
            identity = await ctx.require_identity()
            key_hash = _expect_identifier(id, EntityKind.API_KEY)
            await ctx.auth.delete_api_key(key_hash, identity.email)
            return DeletePayload(success=True)
