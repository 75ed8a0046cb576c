"""Domain models."""

from homeapi.models.entities import (
    ApiKey,
    Device,
    Electricity,
    Entity,
    EntityKind,
    FinalElectricity,
    Place,
    PlaceCondition,
    Reading,
    User,
)
from homeapi.models.identity import AuthMethod, Identity

__all__ = [
    "ApiKey",
    "AuthMethod",
    "Device",
    "Electricity",
    "Entity",
    "EntityKind",
    "FinalElectricity",
    "Identity",
    "Place",
    "PlaceCondition",
    "Reading",
    "User",
]
