"""Google ID token verification.

Tokens are RS256 JWTs signed by one of Google's rotating keys, published as
a JWKS document. Keys are cached for ``jwks_ttl_seconds``; a token signed by
an unknown key id forces one refresh before it is rejected.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol

import httpx
import jwt
import structlog
from jwt.algorithms import RSAAlgorithm

from homeapi.config import OAuthConfig
from homeapi.errors import InvalidCredentialError
from homeapi.services.http import get_http_client

logger = structlog.get_logger()


@dataclass(frozen=True)
class OAuthClaims:
    """Verified claims of an ID token."""

    sub: str
    email: str
    name: str | None
    exp: int


class TokenVerifier(Protocol):
    """Verifies an external bearer token.

    Implementations raise InvalidCredentialError on any failure.
    """

    async def verify(self, token: str) -> OAuthClaims: ...


class GoogleTokenVerifier:
    """Verifies Google-issued ID tokens with PyJWT."""

    def __init__(
        self,
        config: OAuthConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._http_client = http_client
        self._clock = clock
        self._keys: dict[str, Any] = {}
        self._fetched_at: float | None = None
        self._lock = asyncio.Lock()
        self._log = logger.bind(component="oauth")

    @property
    def _client(self) -> httpx.AsyncClient:
        return self._http_client or get_http_client()

    def _cache_fresh(self) -> bool:
        if self._fetched_at is None:
            return False
        return self._clock() - self._fetched_at < self._config.jwks_ttl_seconds

    async def _get_keys(self, *, force: bool = False) -> dict[str, Any]:
        async with self._lock:
            if not force and self._cache_fresh():
                return self._keys

            try:
                response = await self._client.get(self._config.jwks_url)
                response.raise_for_status()
                data = response.json()
            except (httpx.HTTPError, ValueError) as e:
                self._log.warning("oauth.jwks.fetch_failed", error=str(e))
                raise InvalidCredentialError(details={"reason": "jwks unavailable"}) from e

            keys: dict[str, Any] = {}
            for key_data in data.get("keys", []):
                kid = key_data.get("kid")
                if not kid or key_data.get("kty") != "RSA":
                    continue
                try:
                    keys[kid] = RSAAlgorithm.from_jwk(json.dumps(key_data))
                except (jwt.InvalidKeyError, ValueError, KeyError):
                    self._log.warning("oauth.jwks.bad_key", kid=kid)

            self._keys = keys
            self._fetched_at = self._clock()
            self._log.info("oauth.jwks.refreshed", key_count=len(keys))
            return self._keys

    async def _signing_key(self, kid: str) -> Any:
        keys = await self._get_keys()
        if kid not in keys:
            # Google rotated its keys since the last fetch
            keys = await self._get_keys(force=True)
        try:
            return keys[kid]
        except KeyError:
            raise InvalidCredentialError(details={"reason": "unknown key id"}) from None

    async def verify(self, token: str) -> OAuthClaims:
        """Verify signature, audience, issuer and expiry of an ID token.

        Raises:
            InvalidCredentialError: On any verification failure
        """
        client_id = self._config.client_id
        if not client_id:
            raise InvalidCredentialError(details={"reason": "oauth not configured"})

        try:
            header = jwt.get_unverified_header(token)
        except jwt.PyJWTError:
            raise InvalidCredentialError(details={"reason": "bad header"}) from None

        kid = header.get("kid")
        if header.get("alg") != "RS256" or not kid:
            raise InvalidCredentialError(details={"reason": "unexpected algorithm"})

        key = await self._signing_key(kid)
        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=["RS256"],
                audience=client_id,
                leeway=self._config.leeway_seconds,
                options={"require": ["exp", "iss", "aud", "sub"]},
            )
        except jwt.PyJWTError as e:
            raise InvalidCredentialError(
                details={"reason": type(e).__name__}
            ) from None

        if claims["iss"] not in self._config.issuers:
            raise InvalidCredentialError(details={"reason": "issuer mismatch"})

        email = claims.get("email")
        if not email:
            raise InvalidCredentialError(details={"reason": "missing email claim"})
        if claims.get("email_verified") is False:
            raise InvalidCredentialError(details={"reason": "email not verified"})

        return OAuthClaims(
            sub=str(claims["sub"]),
            email=email,
            name=claims.get("name"),
            exp=int(claims["exp"]),
        )
