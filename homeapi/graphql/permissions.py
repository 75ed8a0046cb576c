"""Write access checks for shared entities."""

from __future__ import annotations

import structlog

from homeapi.config import AccessConfig
from homeapi.errors import ForbiddenError
from homeapi.models import AuthMethod, Identity

logger = structlog.get_logger()


def check_write_access(identity: Identity, access: AccessConfig) -> None:
    """Enforce the configured write policy for devices and places.

    Raises:
        ForbiddenError: If the policy is ``allowlist`` and the caller is not listed
    """
    if access.write_policy == "authenticated":
        return
    if identity.email not in access.writers:
        logger.warning("graphql.write_denied", email=identity.email)
        raise ForbiddenError()


def require_oauth(identity: Identity) -> None:
    """API keys cannot mint further API keys.

    Raises:
        ForbiddenError: If the identity was established by an API key
    """
    if identity.method is not AuthMethod.OAUTH:
        raise ForbiddenError("API keys can only be created by an OAuth identity")
