"""Authentication service.

Handles API key generation, hashing and verification, OAuth identity
resolution, and the owner-scoped API key lifecycle.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import re
import secrets
from datetime import datetime
from typing import Callable

import structlog

from homeapi.config import AccessConfig
from homeapi.errors import (
    CredentialError,
    ExpiredCredentialError,
    ForbiddenError,
    InvalidCredentialError,
    MalformedCredentialError,
    MalformedKeyError,
    NotFoundError,
    UnauthenticatedError,
    UnknownCredentialError,
    ValidationError,
)
from homeapi.models import ApiKey, EntityKind, Identity
from homeapi.services.oauth import TokenVerifier
from homeapi.storage.client import Page, StorageClient
from homeapi.utils.datetime import ensure_utc, utcnow

logger = structlog.get_logger()

# Key format: ha_{32 hex chars}
API_KEY_PREFIX = "ha_"
_KEY_PATTERN = re.compile(r"ha_[0-9a-f]{32}")
_HASH_DISPLAY_LEN = 12  # chars of the hash used in logs

_LIST_PAGE_SIZE = 100


class AuthService:
    """Resolves bearer credentials to identities and manages API keys."""

    def __init__(
        self,
        storage: StorageClient,
        verifier: TokenVerifier,
        access: AccessConfig,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._storage = storage
        self._verifier = verifier
        self._access = access
        self._clock = clock
        # Pending last_used_at updates; held so they are not garbage-collected
        self._touch_tasks: set[asyncio.Task[None]] = set()
        self._log = logger.bind(component="auth")

    # ---- Key primitives ----

    @staticmethod
    def generate_key() -> tuple[str, str]:
        """Generate a new API key.

        Returns:
            Tuple of (plaintext, key_hash)
        """
        plaintext = f"{API_KEY_PREFIX}{secrets.token_hex(16)}"
        return plaintext, AuthService.hash_key(plaintext)

    @staticmethod
    def hash_key(plaintext: str) -> str:
        """SHA-256 hex digest of a plaintext key."""
        return hashlib.sha256(plaintext.encode()).hexdigest()

    @staticmethod
    def verify_key(plaintext: str, key_hash: str) -> bool:
        """Constant-time check of a plaintext key against a stored hash."""
        return hmac.compare_digest(AuthService.hash_key(plaintext), key_hash)

    @staticmethod
    def is_api_key(credential: str) -> bool:
        return credential.startswith(API_KEY_PREFIX)

    # ---- Issuance ----

    async def issue_api_key(
        self,
        owner_email: str,
        name: str,
        expires_at: datetime | None = None,
    ) -> tuple[ApiKey, str]:
        """Create and persist a new API key for ``owner_email``.

        The plaintext is returned here and nowhere else.

        Raises:
            ValidationError: If the name is blank or expiry is not in the future
            DuplicateKeyError: If the generated hash already exists
        """
        if not name.strip():
            raise ValidationError("API key name must not be empty")

        now = self._clock()
        if expires_at is not None:
            expires_at = ensure_utc(expires_at)
            if expires_at <= now:
                raise ValidationError("expiresAt must be in the future")

        plaintext, key_hash = self.generate_key()
        api_key = ApiKey(
            key_hash=key_hash,
            user_email=owner_email,
            name=name,
            created_at=now,
            expires_at=expires_at,
        )
        await self._storage.put_item(api_key)

        self._log.info(
            "auth.api_key.issued",
            owner=owner_email,
            key_hash_prefix=key_hash[:_HASH_DISPLAY_LEN],
            expires_at=expires_at.isoformat() if expires_at else None,
        )
        return api_key, plaintext

    # ---- Verification ----

    async def verify_api_key(self, presented: str) -> Identity:
        """Resolve a presented API key to its owner's identity.

        Raises:
            MalformedCredentialError: Wrong prefix, length or charset
            UnknownCredentialError: No key with this hash
            ExpiredCredentialError: Key expired before the service clock's now
        """
        if not _KEY_PATTERN.fullmatch(presented):
            raise MalformedCredentialError()

        key_hash = self.hash_key(presented)
        api_key = await self._storage.get_item(EntityKind.API_KEY, key_hash)
        if api_key is None or not self.verify_key(presented, api_key.key_hash):
            self._log.info(
                "auth.api_key.unknown",
                key_hash_prefix=key_hash[:_HASH_DISPLAY_LEN],
            )
            raise UnknownCredentialError()

        now = self._clock()
        if api_key.is_expired(now):
            self._log.info(
                "auth.api_key.expired",
                key_hash_prefix=key_hash[:_HASH_DISPLAY_LEN],
                owner=api_key.user_email,
            )
            raise ExpiredCredentialError()

        self._schedule_touch(key_hash, now)
        return Identity.from_api_key(api_key.user_email, key_hash)

    def _schedule_touch(self, key_hash: str, when: datetime) -> None:
        task = asyncio.create_task(self._touch(key_hash, when))
        self._touch_tasks.add(task)
        task.add_done_callback(self._touch_tasks.discard)

    async def _touch(self, key_hash: str, when: datetime) -> None:
        try:
            await self._storage.touch_api_key(key_hash, when)
        except Exception as e:
            # Usage tracking never affects authentication
            self._log.warning(
                "auth.api_key.touch_failed",
                key_hash_prefix=key_hash[:_HASH_DISPLAY_LEN],
                error=str(e),
            )

    async def drain(self) -> None:
        """Wait for outstanding last_used_at updates."""
        if self._touch_tasks:
            await asyncio.gather(*list(self._touch_tasks), return_exceptions=True)

    async def verify_oauth_token(self, token: str) -> Identity:
        """Resolve an external ID token to an identity.

        Raises:
            InvalidCredentialError: If the verifier rejects the token
        """
        try:
            claims = await self._verifier.verify(token)
        except CredentialError as e:
            self._log.info("auth.oauth.rejected", **e.details)
            raise InvalidCredentialError() from None
        return Identity.from_oauth(claims.email)

    async def authenticate(self, credential: str | None) -> Identity:
        """Resolve a bearer credential (API key or ID token) to an identity.

        Raises:
            UnauthenticatedError: If no credential is presented
            CredentialError: If the credential cannot establish an identity
        """
        if not credential:
            raise UnauthenticatedError()

        if self.is_api_key(credential):
            identity = await self.verify_api_key(credential)
        else:
            identity = await self.verify_oauth_token(credential)

        if self._access.require_registered_user:
            await self._require_registered(identity.email)
        return identity

    async def _require_registered(self, email: str) -> None:
        try:
            user = await self._storage.get_item(EntityKind.USER, email)
        except MalformedKeyError:
            user = None
        if user is None:
            self._log.info("auth.user.not_registered", email=email)
            raise UnknownCredentialError()

    # ---- Owner-scoped key management ----

    async def page_api_keys(
        self,
        owner_email: str,
        token: bytes | None = None,
        page_size: int = 20,
        *,
        forward: bool = True,
    ) -> Page:
        """One page of the owner's API keys, via the owner index."""
        page = await self._storage.query_by_index(
            self._storage.owner_index,
            owner_email,
            token=token,
            page_size=page_size,
            forward=forward,
        )
        entries = [
            entry
            for entry in page.entries
            if isinstance(entry.entity, ApiKey) and entry.entity.user_email == owner_email
        ]
        return Page(entries=entries, next_token=page.next_token)

    async def list_api_keys(self, owner_email: str) -> list[ApiKey]:
        """All API keys owned by ``owner_email``."""
        keys: list[ApiKey] = []
        token: bytes | None = None
        while True:
            page = await self.page_api_keys(owner_email, token, _LIST_PAGE_SIZE)
            keys.extend(page.items)
            token = page.next_token
            if token is None:
                return keys

    async def get_api_key(self, key_hash: str, requester_email: str) -> ApiKey | None:
        """Key metadata if it exists and belongs to the requester."""
        api_key = await self._storage.get_item(EntityKind.API_KEY, key_hash)
        if api_key is None or api_key.user_email != requester_email:
            return None
        return api_key

    async def delete_api_key(self, key_hash: str, requester_email: str) -> None:
        """Delete one of the requester's API keys.

        Raises:
            NotFoundError: If the key does not exist
            ForbiddenError: If the key belongs to someone else
        """
        api_key = await self._storage.get_item(EntityKind.API_KEY, key_hash)
        if api_key is None:
            raise NotFoundError("API key not found")
        if api_key.user_email != requester_email:
            self._log.warning(
                "auth.api_key.delete_forbidden",
                key_hash_prefix=key_hash[:_HASH_DISPLAY_LEN],
                requester=requester_email,
            )
            raise ForbiddenError()

        await self._storage.delete_item(EntityKind.API_KEY, key_hash)
        self._log.info(
            "auth.api_key.deleted",
            key_hash_prefix=key_hash[:_HASH_DISPLAY_LEN],
            owner=requester_email,
        )
