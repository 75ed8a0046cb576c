"""GraphQL object, input and connection types."""

from datetime import datetime
from decimal import Decimal
from typing import Generic, TypeVar

import strawberry

from homeapi.models import (
    ApiKey,
    Device,
    Electricity,
    FinalElectricity,
    Place,
    PlaceCondition,
)
from homeapi.storage import keys

T = TypeVar("T")


@strawberry.interface
class Node:
    """An object with a global ID."""

    id: strawberry.ID


@strawberry.type(name="Device")
class DeviceType(Node):
    device_id: str
    place: str
    name: str | None

    @classmethod
    def from_entity(cls, device: Device) -> "DeviceType":
        return cls(
            id=strawberry.ID(keys.global_id_of(device)),
            device_id=device.device_id,
            place=device.place,
            name=device.name,
        )


@strawberry.type(name="Place")
class PlaceType(Node):
    place_id: str
    name: str

    @classmethod
    def from_entity(cls, place: Place) -> "PlaceType":
        return cls(
            id=strawberry.ID(keys.global_id_of(place)),
            place_id=place.place_id,
            name=place.name,
        )


@strawberry.type(name="ApiKey")
class ApiKeyType(Node):
    """API key metadata. The key itself is only returned by createApiKey."""

    name: str
    created_at: datetime
    last_used_at: datetime | None
    expires_at: datetime | None

    @classmethod
    def from_entity(cls, api_key: ApiKey) -> "ApiKeyType":
        return cls(
            id=strawberry.ID(keys.global_id_of(api_key)),
            name=api_key.name,
            created_at=api_key.created_at,
            last_used_at=api_key.last_used_at,
            expires_at=api_key.expires_at,
        )


@strawberry.type(name="Electricity")
class ElectricityType(Node):
    device: str
    timestamp: datetime
    place: str
    cumulative_kwh_p: Decimal | None
    cumulative_kwh_n: Decimal | None
    current_w: int | None

    @classmethod
    def from_entity(cls, reading: Electricity) -> "ElectricityType":
        return cls(
            id=strawberry.ID(keys.global_id_of(reading)),
            device=reading.device,
            timestamp=reading.timestamp,
            place=reading.place,
            cumulative_kwh_p=reading.cumulative_kwh_p,
            cumulative_kwh_n=reading.cumulative_kwh_n,
            current_w=reading.current_w,
        )


@strawberry.type(name="FinalElectricity")
class FinalElectricityType(Node):
    device: str
    timestamp: datetime
    place: str
    cumulative_kwh_p: Decimal
    cumulative_kwh_n: Decimal

    @classmethod
    def from_entity(cls, reading: FinalElectricity) -> "FinalElectricityType":
        return cls(
            id=strawberry.ID(keys.global_id_of(reading)),
            device=reading.device,
            timestamp=reading.timestamp,
            place=reading.place,
            cumulative_kwh_p=reading.cumulative_kwh_p,
            cumulative_kwh_n=reading.cumulative_kwh_n,
        )


@strawberry.type(name="PlaceCondition")
class PlaceConditionType(Node):
    device: str
    timestamp: datetime
    place: str
    temperature: Decimal | None
    humidity: int | None
    illuminance: int | None
    motion: int | None

    @classmethod
    def from_entity(cls, reading: PlaceCondition) -> "PlaceConditionType":
        return cls(
            id=strawberry.ID(keys.global_id_of(reading)),
            device=reading.device,
            timestamp=reading.timestamp,
            place=reading.place,
            temperature=reading.temperature,
            humidity=reading.humidity,
            illuminance=reading.illuminance,
            motion=reading.motion,
        )


@strawberry.type
class PageInfo:
    has_next_page: bool
    has_previous_page: bool
    start_cursor: str | None
    end_cursor: str | None


@strawberry.type
class Edge(Generic[T]):
    cursor: str
    node: T


@strawberry.type
class Connection(Generic[T]):
    edges: list[Edge[T]]
    page_info: PageInfo


@strawberry.input
class DeviceInput:
    device_id: str
    place: str = ""
    name: str | None = None


@strawberry.input
class PlaceInput:
    place_id: str
    name: str


@strawberry.input
class ElectricityInput:
    device: str
    timestamp: datetime
    place: str | None = None
    cumulative_kwh_p: Decimal | None = None
    cumulative_kwh_n: Decimal | None = None
    current_w: int | None = None


@strawberry.input
class FinalElectricityInput:
    device: str
    timestamp: datetime
    place: str | None = None
    cumulative_kwh_p: Decimal | None = None
    cumulative_kwh_n: Decimal | None = None


@strawberry.input
class PlaceConditionInput:
    device: str
    timestamp: datetime
    place: str | None = None
    temperature: Decimal | None = None
    humidity: int | None = None
    illuminance: int | None = None
    motion: int | None = None


@strawberry.type
class ApiKeyCreated:
    api_key: ApiKeyType
    # Plaintext key, shown once
    key: str


@strawberry.type
class DeletePayload:
    success: bool
