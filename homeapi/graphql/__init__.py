"""GraphQL API."""

from homeapi.graphql.context import AppContext, RequestContext
from homeapi.graphql.schema import HomeApiSchema, build_schema

__all__ = [
    "AppContext",
    "HomeApiSchema",
    "RequestContext",
    "build_schema",
]
