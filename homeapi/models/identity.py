"""Authenticated caller identity (transient, never persisted)."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class AuthMethod(str, Enum):
    """How the identity was established."""

    OAUTH = "oauth"
    API_KEY = "api_key"


@dataclass(frozen=True)
class Identity:
    """Result of a successful authentication."""

    email: str
    method: AuthMethod
    # Hash of the API key used, for API key identities only
    key_hash: str | None = None

    @classmethod
    def from_oauth(cls, email: str) -> Identity:
        return cls(email=email, method=AuthMethod.OAUTH)

    @classmethod
    def from_api_key(cls, email: str, key_hash: str) -> Identity:
        return cls(email=email, method=AuthMethod.API_KEY, key_hash=key_hash)
