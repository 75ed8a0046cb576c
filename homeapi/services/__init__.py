"""homeapi services."""

from homeapi.services.auth import API_KEY_PREFIX, AuthService
from homeapi.services.oauth import GoogleTokenVerifier, OAuthClaims, TokenVerifier

__all__ = [
    "API_KEY_PREFIX",
    "AuthService",
    "GoogleTokenVerifier",
    "OAuthClaims",
    "TokenVerifier",
]
