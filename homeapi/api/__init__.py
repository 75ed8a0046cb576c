"""Transport-independent request handling."""

from homeapi.api.handler import (
    GraphQLRequest,
    create_app_context,
    execute_graphql,
    extract_bearer,
    parse_graphql_request,
)

__all__ = [
    "GraphQLRequest",
    "create_app_context",
    "execute_graphql",
    "extract_bearer",
    "parse_graphql_request",
]
