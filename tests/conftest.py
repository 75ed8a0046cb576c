"""Shared fixtures."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from homeapi.api.handler import create_app_context
from homeapi.config import AccessConfig, DynamoDBConfig, OAuthConfig, Settings
from homeapi.models import User
from homeapi.services.auth import AuthService
from homeapi.storage.client import StorageClient
from tests.fakes import FakeClock, FakeDynamoDB, FakeTokenVerifier

OAUTH_TOKEN = "google-id-token-a"
OAUTH_EMAIL = "a@example.com"
OTHER_TOKEN = "google-id-token-b"
OTHER_EMAIL = "b@example.com"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        dynamodb=DynamoDBConfig(retry_base_delay=0, retry_max_delay=0),
        oauth=OAuthConfig(client_id="test-client-id"),
        access=AccessConfig(require_registered_user=True),
    )


@pytest.fixture
def fake_dynamodb() -> FakeDynamoDB:
    return FakeDynamoDB()


@pytest.fixture
def storage(settings: Settings, fake_dynamodb: FakeDynamoDB) -> StorageClient:
    return StorageClient(settings.dynamodb, client=fake_dynamodb)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def verifier() -> FakeTokenVerifier:
    return FakeTokenVerifier({OAUTH_TOKEN: OAUTH_EMAIL, OTHER_TOKEN: OTHER_EMAIL})


@pytest.fixture
def auth(storage, verifier, settings, clock) -> AuthService:
    return AuthService(storage, verifier, settings.access, clock=clock)


@pytest.fixture
async def registered(storage: StorageClient) -> list[str]:
    """Register the two test users."""
    for email in (OAUTH_EMAIL, OTHER_EMAIL):
        await storage.put_item(User(email=email))
    return [OAUTH_EMAIL, OTHER_EMAIL]


@pytest.fixture
def app_ctx(settings, storage, verifier, clock):
    return create_app_context(settings, storage, verifier=verifier, clock=clock)
