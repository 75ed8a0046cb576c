"""Entity models persisted in the single DynamoDB table.

Key attributes (pk/sk) are not part of the models; ``homeapi.storage.keys``
derives them from the entity kind and identifier. The model fields named
in ``key_fields`` are carried by the key and never stored as attributes.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from homeapi.utils.datetime import ensure_utc, format_timestamp, parse_timestamp, utcnow

# Separates device and timestamp in a reading identifier
READING_SEPARATOR = "#"


class EntityKind(str, Enum):
    """Entity kinds stored in the table.

    Values double as the type name embedded in global IDs.
    """

    DEVICE = "Device"
    PLACE = "Place"
    API_KEY = "ApiKey"
    USER = "User"
    ELECTRICITY = "Electricity"
    FINAL_ELECTRICITY = "FinalElectricity"
    PLACE_CONDITION = "PlaceCondition"


class _Entity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    kind: ClassVar[EntityKind]
    key_fields: ClassVar[tuple[str, ...]]

    @property
    def identifier(self) -> str:
        raise NotImplementedError

    @classmethod
    def key_values(cls, identifier: str) -> dict[str, Any]:
        """Model fields carried by ``identifier``."""
        return {cls.key_fields[0]: identifier}


class Device(_Entity):
    """A device in the household (shared, no owner)."""

    kind: ClassVar[EntityKind] = EntityKind.DEVICE
    key_fields: ClassVar[tuple[str, ...]] = ("device_id",)

    device_id: str = Field(min_length=1)
    place: str = ""
    name: str | None = None

    @property
    def identifier(self) -> str:
        return self.device_id


class Place(_Entity):
    """A place (room, area) devices can be located at."""

    kind: ClassVar[EntityKind] = EntityKind.PLACE
    key_fields: ClassVar[tuple[str, ...]] = ("place_id",)

    place_id: str = Field(min_length=1)
    name: str

    @property
    def identifier(self) -> str:
        return self.place_id


class ApiKey(_Entity):
    """API key metadata.

    Keys are stored under the SHA-256 hash of their plaintext. The plaintext
    itself is never persisted.
    """

    kind: ClassVar[EntityKind] = EntityKind.API_KEY
    key_fields: ClassVar[tuple[str, ...]] = ("key_hash",)

    key_hash: str
    user_email: str
    name: str
    created_at: datetime = Field(default_factory=utcnow)
    last_used_at: datetime | None = None
    expires_at: datetime | None = None

    @field_validator("created_at", "last_used_at", "expires_at")
    @classmethod
    def _to_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    @property
    def identifier(self) -> str:
        return self.key_hash

    def is_expired(self, now: datetime | None = None) -> bool:
        """Whether the key has an expiration and it lies before ``now``."""
        if self.expires_at is None:
            return False
        return self.expires_at < (now or utcnow())


class User(_Entity):
    """A registered household member allowed to authenticate."""

    kind: ClassVar[EntityKind] = EntityKind.USER
    key_fields: ClassVar[tuple[str, ...]] = ("email",)

    email: str
    name: str | None = None

    @property
    def identifier(self) -> str:
        return self.email


def reading_identifier(device: str, timestamp: datetime) -> str:
    """Identifier of the reading taken by ``device`` at ``timestamp``."""
    return f"{device}{READING_SEPARATOR}{format_timestamp(timestamp)}"


def split_reading_identifier(identifier: str) -> tuple[str, datetime]:
    """Inverse of ``reading_identifier``.

    Raises:
        ValueError: If the identifier has no device or no valid timestamp
    """
    device, separator, stamp = identifier.rpartition(READING_SEPARATOR)
    if not separator or not device:
        raise ValueError("Reading identifier must be '<device>#<timestamp>'")
    return device, parse_timestamp(stamp)


class _Reading(_Entity):
    """A time-series reading, keyed by device and timestamp."""

    key_fields: ClassVar[tuple[str, ...]] = ("device", "timestamp")

    device: str = Field(min_length=1)
    timestamp: datetime
    place: str = ""

    @field_validator("timestamp")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @property
    def identifier(self) -> str:
        return reading_identifier(self.device, self.timestamp)

    @classmethod
    def key_values(cls, identifier: str) -> dict[str, Any]:
        device, timestamp = split_reading_identifier(identifier)
        return {"device": device, "timestamp": timestamp}


class Electricity(_Reading):
    """Smart meter sample: cumulative energy and instantaneous power."""

    kind: ClassVar[EntityKind] = EntityKind.ELECTRICITY

    cumulative_kwh_p: Decimal | None = None
    cumulative_kwh_n: Decimal | None = None
    current_w: int | None = Field(default=None, ge=0)


class FinalElectricity(_Reading):
    """Settled meter totals for a metering period."""

    kind: ClassVar[EntityKind] = EntityKind.FINAL_ELECTRICITY

    cumulative_kwh_p: Decimal = Decimal("0")
    cumulative_kwh_n: Decimal = Decimal("0")


class PlaceCondition(_Reading):
    """Environment sensor sample for a place."""

    kind: ClassVar[EntityKind] = EntityKind.PLACE_CONDITION

    temperature: Decimal | None = None
    humidity: int | None = None
    illuminance: int | None = None
    motion: int | None = None


Reading = Union[Electricity, FinalElectricity, PlaceCondition]

Entity = Union[Device, Place, ApiKey, User, Electricity, FinalElectricity, PlaceCondition]

MODEL_BY_KIND: dict[EntityKind, type[_Entity]] = {
    EntityKind.DEVICE: Device,
    EntityKind.PLACE: Place,
    EntityKind.API_KEY: ApiKey,
    EntityKind.USER: User,
    EntityKind.ELECTRICITY: Electricity,
    EntityKind.FINAL_ELECTRICITY: FinalElectricity,
    EntityKind.PLACE_CONDITION: PlaceCondition,
}

READING_KINDS = frozenset(
    {EntityKind.ELECTRICITY, EntityKind.FINAL_ELECTRICITY, EntityKind.PLACE_CONDITION}
)
