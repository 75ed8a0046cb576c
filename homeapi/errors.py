"""homeapi error types.

Error codes are stable strings for programmatic handling and are surfaced
to GraphQL clients through ``extensions.code``.

Errors flagged ``internal`` carry operator-facing detail only; the API layer
logs them and replaces them with :class:`InternalServerError`.
"""

from __future__ import annotations

from typing import Any


class HomeApiError(Exception):
    """Base error for all homeapi exceptions."""

    code: str = "INTERNAL_SERVER_ERROR"
    status_code: int = 500
    message: str = "An internal error occurred"
    internal: bool = False

    def __init__(
        self,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.__class__.message
        self.details = details or {}
        super().__init__(self.message)

    @property
    def extensions(self) -> dict[str, Any]:
        """GraphQL error extensions (picked up by graphql-core)."""
        return {"code": self.code}

    def to_dict(self, request_id: str | None = None) -> dict[str, Any]:
        """Convert to the JSON error body used by non-GraphQL routes."""
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if request_id:
            error["request_id"] = request_id
        return {"error": error}


# ---- Client-supplied opaque values ----


class MalformedKeyError(HomeApiError):
    """Partition/sort key pair matches no known entity shape."""

    code = "MALFORMED_KEY"
    status_code = 400
    message = "Malformed key"


class InvalidIdentifierError(HomeApiError):
    """Global object identifier is corrupted or foreign."""

    code = "INVALID_IDENTIFIER"
    status_code = 400
    message = "Invalid identifier"


class InvalidCursorError(HomeApiError):
    """Pagination cursor is corrupted or rejected by the store."""

    code = "INVALID_CURSOR"
    status_code = 400
    message = "Invalid cursor"


class ValidationError(HomeApiError):
    """Request argument failed validation."""

    code = "VALIDATION_ERROR"
    status_code = 400
    message = "Validation error"


class DuplicateKeyError(HomeApiError):
    """Conditional create found an existing item with the same key."""

    code = "DUPLICATE_KEY"
    status_code = 409
    message = "An item with this key already exists"


class NotFoundError(HomeApiError):
    """Targeted item does not exist."""

    code = "NOT_FOUND"
    status_code = 404
    message = "Resource not found"


# ---- Authentication / authorization ----


class UnauthenticatedError(HomeApiError):
    """No usable credential was presented."""

    code = "UNAUTHENTICATED"
    status_code = 401
    message = "Authentication required"


class ForbiddenError(HomeApiError):
    """Caller is authenticated but not allowed to do this."""

    code = "FORBIDDEN"
    status_code = 403
    message = "Permission denied"


class CredentialError(UnauthenticatedError):
    """A credential was presented but could not establish an identity.

    Messages are fixed per class and never echo the credential.
    """

    code = "INVALID_CREDENTIAL"
    status_code = 401
    message = "Invalid credential"


class InvalidCredentialError(CredentialError):
    """OAuth token verification failed."""

    code = "INVALID_CREDENTIAL"
    status_code = 401
    message = "Invalid credential"


class MalformedCredentialError(CredentialError):
    """API key does not have the expected format."""

    code = "MALFORMED_CREDENTIAL"
    status_code = 401
    message = "Malformed credential"


class UnknownCredentialError(CredentialError):
    """API key (or its owner) is not known."""

    code = "UNKNOWN_CREDENTIAL"
    status_code = 401
    message = "Unknown credential"


class ExpiredCredentialError(CredentialError):
    """API key is past its expiration time."""

    code = "EXPIRED_CREDENTIAL"
    status_code = 401
    message = "Credential has expired"


# ---- Infrastructure ----


class StorageError(HomeApiError):
    """Store call failed after retries (throttling, timeouts, transport)."""

    code = "STORAGE_ERROR"
    status_code = 503
    message = "Storage request failed"
    internal = True


class CorruptRecordError(HomeApiError):
    """Stored item cannot be parsed into its entity shape."""

    code = "CORRUPT_RECORD"
    status_code = 500
    message = "Stored record is corrupt"
    internal = True


class InternalServerError(HomeApiError):
    """Opaque replacement for internal errors."""

    code = "INTERNAL_SERVER_ERROR"
    status_code = 500
    message = "Internal server error"
