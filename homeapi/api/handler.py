"""GraphQL request handler shared by the HTTP and Lambda transports.

``execute_graphql`` is a pure ``(AppContext, request) -> response`` function;
it knows nothing about which transport invoked it.
"""

from __future__ import annotations

import json
from typing import Any, Callable

import pydantic
import structlog
from pydantic import BaseModel, ConfigDict, Field

from homeapi.config import Settings
from homeapi.errors import ValidationError
from homeapi.graphql import AppContext, RequestContext, build_schema
from homeapi.services.auth import AuthService
from homeapi.services.oauth import GoogleTokenVerifier, TokenVerifier
from homeapi.storage.client import StorageClient
from homeapi.utils.datetime import utcnow

logger = structlog.get_logger()


class GraphQLRequest(BaseModel):
    """GraphQL-over-HTTP request body."""

    model_config = ConfigDict(populate_by_name=True)

    query: str
    variables: dict[str, Any] | None = None
    operation_name: str | None = Field(default=None, alias="operationName")


def parse_graphql_request(body: str | bytes | None) -> GraphQLRequest:
    """Parse a raw JSON request body.

    Raises:
        ValidationError: If the body is missing, not JSON, or not a GraphQL request
    """
    if not body:
        raise ValidationError("Request body is required")
    try:
        data = json.loads(body)
    except (UnicodeDecodeError, ValueError):
        raise ValidationError("Request body is not valid JSON") from None
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return GraphQLRequest.model_validate(data)
    except pydantic.ValidationError:
        raise ValidationError("Request body is not a GraphQL request") from None


def extract_bearer(authorization: str | None) -> str | None:
    """Token of an ``Authorization: Bearer <token>`` header, if any."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return None
    return token


def create_app_context(
    settings: Settings,
    storage: StorageClient,
    *,
    verifier: TokenVerifier | None = None,
    clock: Callable[..., Any] = utcnow,
) -> AppContext:
    """Wire the services and schema shared by every request."""
    if verifier is None:
        verifier = GoogleTokenVerifier(settings.oauth)
    auth = AuthService(storage, verifier, settings.access, clock=clock)
    return AppContext(
        settings=settings,
        storage=storage,
        auth=auth,
        schema=build_schema(),
    )


async def execute_graphql(
    app_ctx: AppContext,
    request: GraphQLRequest,
    authorization: str | None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Execute one GraphQL request.

    Returns:
        The GraphQL response document (``data`` and optionally ``errors``)
    """
    context = RequestContext(
        app_ctx,
        credential=extract_bearer(authorization),
        request_id=request_id,
    )
    result = await app_ctx.schema.execute(
        request.query,
        variable_values=request.variables,
        context_value=context,
        operation_name=request.operation_name,
    )

    response: dict[str, Any] = {"data": result.data}
    if result.errors:
        response["errors"] = [error.formatted for error in result.errors]
    return response
