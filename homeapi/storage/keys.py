"""Single-table key scheme.

Key shapes:
- Device:           PK=DEVICE,        SK={device_id}
- Place:            PK=PLACE,         SK={place_id}
- ApiKey:           PK={sha256 hex},  SK=APIKEY      (GSI user_email-index on user_email)
- User:             PK={email},       SK=USER
- Electricity:      PK={device},      SK=TS#{timestamp}
- FinalElectricity: PK={device},      SK=FIN#TS#{timestamp}
- PlaceCondition:   PK={device},      SK=COND#TS#{timestamp}

Reading timestamps are fixed-width UTC (``2024-05-01T12:00:00.000000Z``),
so sort key order is chronological within a prefix.

Global IDs exposed to clients are ``base64("{Kind}:{pk}:{sk}")`` without
padding. This is the only module that knows these shapes.
"""

from __future__ import annotations

import base64
import binascii
import re
from datetime import UTC, datetime, timedelta

from homeapi.errors import InvalidIdentifierError, MalformedKeyError
from homeapi.models.entities import (
    READING_KINDS,
    Entity,
    EntityKind,
    reading_identifier,
    split_reading_identifier,
)
from homeapi.utils.datetime import ensure_utc, format_timestamp, parse_timestamp

DEVICE_PARTITION = "DEVICE"
PLACE_PARTITION = "PLACE"
API_KEY_SORT_KEY = "APIKEY"
USER_SORT_KEY = "USER"

# Partition attribute of the owner index
OWNER_INDEX_ATTRIBUTE = "user_email"

_SHA256_HEX = re.compile(r"[0-9a-f]{64}")

_COLLECTION_PARTITIONS: dict[EntityKind, str] = {
    EntityKind.DEVICE: DEVICE_PARTITION,
    EntityKind.PLACE: PLACE_PARTITION,
}

READING_PREFIXES: dict[EntityKind, str] = {
    EntityKind.ELECTRICITY: "TS#",
    EntityKind.FINAL_ELECTRICITY: "FIN#TS#",
    EntityKind.PLACE_CONDITION: "COND#TS#",
}

_EARLIEST = datetime(1, 1, 1, tzinfo=UTC)
_LATEST = datetime(9999, 12, 31, 23, 59, 59, 999999, tzinfo=UTC)
_TICK = timedelta(microseconds=1)


def _is_key_hash(value: str) -> bool:
    return _SHA256_HEX.fullmatch(value) is not None


def _is_email(value: str) -> bool:
    return "@" in value and ":" not in value


def _reading_prefix(kind: EntityKind) -> str:
    try:
        return READING_PREFIXES[kind]
    except KeyError:
        raise MalformedKeyError(f"{kind.value} is not a reading") from None


def partition_for(kind: EntityKind) -> str:
    """Partition holding a whole collection (Device, Place)."""
    try:
        return _COLLECTION_PARTITIONS[kind]
    except KeyError:
        raise MalformedKeyError(f"{kind.value} has no collection partition") from None


def reading_partition(device: str) -> str:
    """Partition holding the readings of ``device``.

    Raises:
        MalformedKeyError: If the device name cannot be a reading partition
    """
    if not device:
        raise MalformedKeyError("Empty device")
    if device in _COLLECTION_PARTITIONS.values():
        raise MalformedKeyError(f"Device name {device!r} is reserved")
    # The partition is the middle segment of a global ID
    if ":" in device:
        raise MalformedKeyError("Device name must not contain ':'")
    return device


def reading_range(
    kind: EntityKind,
    after: datetime | None = None,
    before: datetime | None = None,
) -> tuple[str, str] | None:
    """Inclusive sort key bounds of readings strictly between ``after`` and ``before``.

    Returns None when no timestamp fits.
    """
    prefix = _reading_prefix(kind)
    try:
        low = ensure_utc(after) + _TICK if after is not None else _EARLIEST
        high = ensure_utc(before) - _TICK if before is not None else _LATEST
    except OverflowError:
        return None
    if low > high:
        return None
    return prefix + format_timestamp(low), prefix + format_timestamp(high)


def encode(kind: EntityKind, identifier: str) -> tuple[str, str]:
    """Map an entity kind and identifier to its (pk, sk) pair.

    Raises:
        MalformedKeyError: If the identifier cannot be represented
    """
    if not identifier:
        raise MalformedKeyError("Empty identifier")

    if kind in _COLLECTION_PARTITIONS:
        return _COLLECTION_PARTITIONS[kind], identifier
    if kind is EntityKind.API_KEY:
        if not _is_key_hash(identifier):
            raise MalformedKeyError("API key identifier must be a SHA-256 hex digest")
        return identifier, API_KEY_SORT_KEY
    if kind is EntityKind.USER:
        if not _is_email(identifier):
            raise MalformedKeyError("User identifier must be an email address")
        return identifier, USER_SORT_KEY
    if kind in READING_KINDS:
        try:
            device, timestamp = split_reading_identifier(identifier)
        except ValueError as exc:
            raise MalformedKeyError(str(exc)) from None
        return reading_partition(device), READING_PREFIXES[kind] + format_timestamp(timestamp)

    raise MalformedKeyError(f"Unknown entity kind: {kind!r}")


def _decode_reading(pk: str, sk: str) -> tuple[EntityKind, str] | None:
    for kind, prefix in READING_PREFIXES.items():
        if not sk.startswith(prefix):
            continue
        stamp = sk[len(prefix):]
        try:
            timestamp = parse_timestamp(stamp)
        except ValueError:
            return None
        # Only the canonical form maps back to the same key
        if format_timestamp(timestamp) != stamp:
            return None
        return kind, reading_identifier(pk, timestamp)
    return None


def decode(pk: str, sk: str) -> tuple[EntityKind, str]:
    """Map a (pk, sk) pair back to its entity kind and identifier.

    Raises:
        MalformedKeyError: If the pair matches no known key shape
    """
    if not pk or not sk:
        raise MalformedKeyError("Empty key component")

    for kind, partition in _COLLECTION_PARTITIONS.items():
        if pk == partition:
            return kind, sk
    if sk == API_KEY_SORT_KEY and _is_key_hash(pk):
        return EntityKind.API_KEY, pk
    if sk == USER_SORT_KEY and _is_email(pk):
        return EntityKind.USER, pk

    decoded = _decode_reading(pk, sk)
    if decoded is not None:
        return decoded

    raise MalformedKeyError("Key does not match any entity shape")


def key_of(entity: Entity) -> tuple[str, str]:
    """(pk, sk) of an entity instance."""
    return encode(entity.kind, entity.identifier)


def to_global_id(kind: EntityKind, pk: str, sk: str) -> str:
    """Encode an opaque global ID for a stored item."""
    raw = f"{kind.value}:{pk}:{sk}".encode()
    return base64.b64encode(raw).decode("ascii").rstrip("=")


def global_id_of(entity: Entity) -> str:
    """Global ID of an entity instance."""
    pk, sk = key_of(entity)
    return to_global_id(entity.kind, pk, sk)


def from_global_id(value: str) -> tuple[EntityKind, str]:
    """Decode a global ID into (kind, identifier).

    Raises:
        InvalidIdentifierError: If the ID was not produced by ``to_global_id``
    """
    try:
        padded = value + "=" * (-len(value) % 4)
        raw = base64.b64decode(padded.encode("ascii"), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        raise InvalidIdentifierError() from None

    parts = raw.split(":", 2)
    if len(parts) != 3:
        raise InvalidIdentifierError()
    type_name, pk, sk = parts

    try:
        kind = EntityKind(type_name)
        decoded_kind, identifier = decode(pk, sk)
    except (ValueError, MalformedKeyError):
        raise InvalidIdentifierError() from None

    if decoded_kind is not kind:
        raise InvalidIdentifierError()
    return kind, identifier
