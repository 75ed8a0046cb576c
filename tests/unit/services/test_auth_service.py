"""Unit tests for AuthService.

Tests key generation, hashing, issuance, verification, usage tracking and
owner-scoped key management.
"""

from __future__ import annotations

import hashlib
import json
import re
from datetime import timedelta

import pytest

from homeapi.config import AccessConfig
from homeapi.errors import (
    CredentialError,
    DuplicateKeyError,
    ExpiredCredentialError,
    ForbiddenError,
    InvalidCredentialError,
    MalformedCredentialError,
    NotFoundError,
    UnauthenticatedError,
    UnknownCredentialError,
    ValidationError,
)
from homeapi.models import AuthMethod, EntityKind
from homeapi.services.auth import AuthService
from tests.conftest import OAUTH_EMAIL, OAUTH_TOKEN, OTHER_EMAIL


class TestGenerateKey:
    """Test API key generation."""

    def test_format(self):
        """Generated key has ha_ prefix and correct length."""
        plaintext, key_hash = AuthService.generate_key()

        assert re.fullmatch(r"ha_[0-9a-f]{32}", plaintext)
        # ha_ (3 chars) + 32 hex chars = 35 total
        assert len(plaintext) == 35

    def test_hash_is_sha256(self):
        plaintext, key_hash = AuthService.generate_key()
        assert key_hash == hashlib.sha256(plaintext.encode()).hexdigest()

    def test_uniqueness(self):
        keys = {AuthService.generate_key()[0] for _ in range(10)}
        assert len(keys) == 10


class TestHashAndVerify:
    def test_hash_deterministic(self):
        assert AuthService.hash_key("ha_x") == AuthService.hash_key("ha_x")

    def test_verify_correct_key(self):
        plaintext, key_hash = AuthService.generate_key()
        assert AuthService.verify_key(plaintext, key_hash) is True

    def test_verify_wrong_key(self):
        _, key_hash = AuthService.generate_key()
        assert AuthService.verify_key("ha_wrong", key_hash) is False


class TestIssue:
    """Test API key issuance."""

    @pytest.mark.asyncio
    async def test_issue_persists_hash_only(self, auth, storage, fake_dynamodb, clock):
        api_key, plaintext = await auth.issue_api_key(OAUTH_EMAIL, "CI key")

        assert api_key.key_hash == AuthService.hash_key(plaintext)
        assert api_key.created_at == clock.now
        assert api_key.last_used_at is None

        stored = await storage.get_item(EntityKind.API_KEY, api_key.key_hash)
        assert stored == api_key
        assert plaintext not in json.dumps(list(fake_dynamodb.items.values()))

    @pytest.mark.asyncio
    async def test_issue_with_expiry(self, auth, clock):
        expires_at = clock.now + timedelta(days=30)
        api_key, _ = await auth.issue_api_key(OAUTH_EMAIL, "temp", expires_at=expires_at)
        assert api_key.expires_at == expires_at

    @pytest.mark.asyncio
    async def test_expiry_in_past_rejected(self, auth, clock):
        with pytest.raises(ValidationError):
            await auth.issue_api_key(OAUTH_EMAIL, "old", expires_at=clock.now - timedelta(seconds=1))

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self, auth):
        with pytest.raises(ValidationError):
            await auth.issue_api_key(OAUTH_EMAIL, "  ")

    @pytest.mark.asyncio
    async def test_hash_collision_propagates(self, auth, monkeypatch):
        fixed = ("ha_" + "0" * 32, AuthService.hash_key("ha_" + "0" * 32))
        monkeypatch.setattr(AuthService, "generate_key", staticmethod(lambda: fixed))

        await auth.issue_api_key(OAUTH_EMAIL, "first")
        with pytest.raises(DuplicateKeyError):
            await auth.issue_api_key(OTHER_EMAIL, "second")


class TestVerifyApiKey:
    """Test API key verification."""

    @pytest.mark.asyncio
    async def test_valid_key(self, auth, storage, clock):
        api_key, plaintext = await auth.issue_api_key(OAUTH_EMAIL, "ci")

        identity = await auth.verify_api_key(plaintext)
        await auth.drain()

        assert identity.email == OAUTH_EMAIL
        assert identity.method is AuthMethod.API_KEY
        assert identity.key_hash == api_key.key_hash
        stored = await storage.get_item(EntityKind.API_KEY, api_key.key_hash)
        assert stored.last_used_at == clock.now

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "presented",
        [
            "ha_short",
            "ha_" + "0" * 33,
            "ha_" + "G" * 32,
            "ha_" + "A" * 32,
            "xx_" + "0" * 32,
        ],
    )
    async def test_malformed(self, auth, fake_dynamodb, presented):
        with pytest.raises(MalformedCredentialError):
            await auth.verify_api_key(presented)
        assert fake_dynamodb.calls == []

    @pytest.mark.asyncio
    async def test_unknown_key(self, auth):
        forged, _ = AuthService.generate_key()
        with pytest.raises(UnknownCredentialError):
            await auth.verify_api_key(forged)

    @pytest.mark.asyncio
    async def test_expired_key(self, auth, clock, fake_dynamodb):
        _, plaintext = await auth.issue_api_key(
            OAUTH_EMAIL, "short", expires_at=clock.now + timedelta(hours=1)
        )
        clock.advance(hours=2)

        with pytest.raises(ExpiredCredentialError):
            await auth.verify_api_key(plaintext)
        await auth.drain()
        assert fake_dynamodb.calls_of("update_item") == []

    @pytest.mark.asyncio
    async def test_key_valid_at_expiry_instant(self, auth, clock):
        _, plaintext = await auth.issue_api_key(
            OAUTH_EMAIL, "edge", expires_at=clock.now + timedelta(hours=1)
        )
        clock.advance(hours=1)

        identity = await auth.verify_api_key(plaintext)
        assert identity.email == OAUTH_EMAIL

    @pytest.mark.asyncio
    async def test_touch_failure_does_not_fail_auth(self, auth, fake_dynamodb):
        _, plaintext = await auth.issue_api_key(OAUTH_EMAIL, "ci")
        fake_dynamodb.fail_next("update_item", "AccessDeniedException")

        identity = await auth.verify_api_key(plaintext)
        await auth.drain()

        assert identity.email == OAUTH_EMAIL
        assert len(fake_dynamodb.calls_of("update_item")) == 1

    @pytest.mark.asyncio
    async def test_messages_never_echo_credential(self, auth):
        forged, key_hash = AuthService.generate_key()
        with pytest.raises(CredentialError) as exc_info:
            await auth.verify_api_key(forged)
        assert forged not in str(exc_info.value)
        assert key_hash not in str(exc_info.value)


class TestAuthenticate:
    """Test credential dispatch."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("credential", [None, ""])
    async def test_missing_credential(self, auth, credential):
        with pytest.raises(UnauthenticatedError) as exc_info:
            await auth.authenticate(credential)
        assert not isinstance(exc_info.value, CredentialError)

    @pytest.mark.asyncio
    async def test_oauth_token(self, auth, registered):
        identity = await auth.authenticate(OAUTH_TOKEN)
        assert identity.email == OAUTH_EMAIL
        assert identity.method is AuthMethod.OAUTH

    @pytest.mark.asyncio
    async def test_rejected_oauth_token(self, auth, registered):
        with pytest.raises(InvalidCredentialError):
            await auth.authenticate("not-a-real-token")

    @pytest.mark.asyncio
    async def test_api_key(self, auth, registered):
        _, plaintext = await auth.issue_api_key(OAUTH_EMAIL, "ci")
        identity = await auth.authenticate(plaintext)
        await auth.drain()
        assert identity.method is AuthMethod.API_KEY

    @pytest.mark.asyncio
    async def test_unregistered_user(self, auth):
        with pytest.raises(UnknownCredentialError):
            await auth.authenticate(OAUTH_TOKEN)

    @pytest.mark.asyncio
    async def test_registration_not_required(self, storage, verifier, clock):
        auth = AuthService(
            storage, verifier, AccessConfig(require_registered_user=False), clock=clock
        )
        identity = await auth.authenticate(OAUTH_TOKEN)
        assert identity.email == OAUTH_EMAIL


class TestOwnerScopedKeys:
    """Test listing and deletion."""

    @pytest.mark.asyncio
    async def test_list_only_own_keys(self, auth):
        await auth.issue_api_key(OAUTH_EMAIL, "a1")
        await auth.issue_api_key(OAUTH_EMAIL, "a2")
        await auth.issue_api_key(OTHER_EMAIL, "b1")

        keys = await auth.list_api_keys(OAUTH_EMAIL)

        assert sorted(k.name for k in keys) == ["a1", "a2"]
        assert all(k.user_email == OAUTH_EMAIL for k in keys)

    @pytest.mark.asyncio
    async def test_list_spans_pages(self, auth, monkeypatch):
        monkeypatch.setattr("homeapi.services.auth._LIST_PAGE_SIZE", 2)
        for i in range(5):
            await auth.issue_api_key(OAUTH_EMAIL, f"k{i}")

        keys = await auth.list_api_keys(OAUTH_EMAIL)
        assert len(keys) == 5

    @pytest.mark.asyncio
    async def test_page_api_keys(self, auth):
        for i in range(3):
            await auth.issue_api_key(OAUTH_EMAIL, f"k{i}")

        page = await auth.page_api_keys(OAUTH_EMAIL, page_size=2)
        assert len(page.items) == 2
        assert page.next_token is not None

    @pytest.mark.asyncio
    async def test_delete_own_key(self, auth, storage):
        api_key, _ = await auth.issue_api_key(OAUTH_EMAIL, "ci")

        await auth.delete_api_key(api_key.key_hash, OAUTH_EMAIL)

        assert await storage.get_item(EntityKind.API_KEY, api_key.key_hash) is None

    @pytest.mark.asyncio
    async def test_delete_other_users_key(self, auth, storage):
        api_key, _ = await auth.issue_api_key(OAUTH_EMAIL, "ci")

        with pytest.raises(ForbiddenError):
            await auth.delete_api_key(api_key.key_hash, OTHER_EMAIL)
        assert await storage.get_item(EntityKind.API_KEY, api_key.key_hash) is not None

    @pytest.mark.asyncio
    async def test_delete_missing_key(self, auth):
        _, key_hash = AuthService.generate_key()
        with pytest.raises(NotFoundError):
            await auth.delete_api_key(key_hash, OAUTH_EMAIL)

    @pytest.mark.asyncio
    async def test_deleted_key_no_longer_authenticates(self, auth):
        api_key, plaintext = await auth.issue_api_key(OAUTH_EMAIL, "ci")
        await auth.delete_api_key(api_key.key_hash, OAUTH_EMAIL)

        with pytest.raises(UnknownCredentialError):
            await auth.verify_api_key(plaintext)

    @pytest.mark.asyncio
    async def test_get_api_key_hides_other_owners(self, auth):
        api_key, _ = await auth.issue_api_key(OAUTH_EMAIL, "ci")

        assert await auth.get_api_key(api_key.key_hash, OAUTH_EMAIL) == api_key
        assert await auth.get_api_key(api_key.key_hash, OTHER_EMAIL) is None
