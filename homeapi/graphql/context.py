"""Application and per-request GraphQL context."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from homeapi.config import Settings
from homeapi.errors import UnauthenticatedError
from homeapi.models import Identity
from homeapi.services.auth import AuthService
from homeapi.storage.client import StorageClient

if TYPE_CHECKING:
    import strawberry

logger = structlog.get_logger()


@dataclass(frozen=True)
class AppContext:
    """Process-wide state built once at startup and shared by all requests."""

    settings: Settings
    storage: StorageClient
    auth: AuthService
    schema: strawberry.Schema


class RequestContext:
    """Per-request context handed to resolvers.

    The identity is resolved at most once per request, on first use.
    """

    def __init__(
        self,
        app: AppContext,
        credential: str | None,
        request_id: str | None = None,
    ) -> None:
        self.app = app
        self.credential = credential
        self.request_id = request_id
        self._identity_task: asyncio.Task[Identity] | None = None

    @property
    def storage(self) -> StorageClient:
        return self.app.storage

    @property
    def auth(self) -> AuthService:
        return self.app.auth

    async def require_identity(self) -> Identity:
        """Identity of the caller.

        Raises:
            UnauthenticatedError: If no credential was presented
            CredentialError: If the credential was rejected
        """
        if self._identity_task is None:
            self._identity_task = asyncio.ensure_future(
                self.app.auth.authenticate(self.credential)
            )
        return await asyncio.shield(self._identity_task)

    async def optional_identity(self) -> Identity | None:
        """Identity of the caller, or None for anonymous or rejected credentials."""
        try:
            return await self.require_identity()
        except UnauthenticatedError as e:
            if self.credential:
                logger.info(
                    "graphql.credential_ignored",
                    code=e.code,
                    request_id=self.request_id,
                )
            return None
