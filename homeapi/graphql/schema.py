"""GraphQL schema construction and error reporting."""

from __future__ import annotations

from typing import Any

import strawberry
import structlog
from graphql import GraphQLError
from strawberry.extensions import MaskErrors

from homeapi.errors import HomeApiError, InternalServerError
from homeapi.graphql.resolvers import Mutation, Query
from homeapi.graphql.types import (
    ApiKeyType,
    DeviceType,
    ElectricityType,
    FinalElectricityType,
    PlaceConditionType,
    PlaceType,
)

logger = structlog.get_logger()


def should_mask_error(error: GraphQLError) -> bool:
    """Mask unexpected exceptions; homeapi errors and GraphQL errors pass."""
    original = error.original_error
    return original is not None and not isinstance(original, HomeApiError)


class HomeApiSchema(strawberry.Schema):
    """Schema that reports execution errors through structlog."""

    def process_errors(
        self,
        errors: list[GraphQLError],
        execution_context: Any = None,
    ) -> None:
        for error in errors:
            original = error.original_error
            if isinstance(original, HomeApiError):
                logger.info(
                    "graphql.error",
                    code=original.code,
                    path=error.path,
                    message=original.message,
                )
            elif original is None:
                logger.info("graphql.request_error", message=error.message)
            else:
                logger.error(
                    "graphql.unhandled_error",
                    path=error.path,
                    exc_info=original,
                )


def build_schema() -> HomeApiSchema:
    """Build the homeapi schema."""
    return HomeApiSchema(
        query=Query,
        mutation=Mutation,
        types=[
            DeviceType,
            PlaceType,
            ApiKeyType,
            ElectricityType,
            FinalElectricityType,
            PlaceConditionType,
        ],
        extensions=[
            lambda: MaskErrors(
                should_mask_error=should_mask_error,
                error_message=InternalServerError.message,
            ),
        ],
    )
