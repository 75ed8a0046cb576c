"""AWS Lambda entry point.

The event loop and the application context are built on the first
invocation and reused while the execution environment stays warm.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
from typing import Any

import structlog

from homeapi.api.handler import create_app_context, execute_graphql, parse_graphql_request
from homeapi.config import get_settings
from homeapi.errors import HomeApiError
from homeapi.graphql import AppContext
from homeapi.services.http import http_client_manager
from homeapi.storage.client import StorageClient

logger = structlog.get_logger()

_loop: asyncio.AbstractEventLoop | None = None
_app_context: AppContext | None = None

_JSON_HEADERS = {"Content-Type": "application/json"}


def _get_loop() -> asyncio.AbstractEventLoop:
    global _loop
    if _loop is None or _loop.is_closed():
        _loop = asyncio.new_event_loop()
    return _loop


async def _get_app_context() -> AppContext:
    global _app_context
    if _app_context is None:
        settings = get_settings()
        await http_client_manager.startup()
        storage = StorageClient(settings.dynamodb)
        await storage.startup()
        _app_context = create_app_context(settings, storage)
        logger.info("lambda.cold_start", table=settings.dynamodb.table)
    return _app_context


def _header(headers: dict[str, str], name: str) -> str | None:
    # API Gateway v1 keeps header case, v2 lowercases
    for key, value in headers.items():
        if key.lower() == name.lower():
            return value
    return None


def _response(status_code: int, body: dict[str, Any], request_id: str | None) -> dict[str, Any]:
    headers = dict(_JSON_HEADERS)
    if request_id:
        headers["X-Request-Id"] = request_id
    return {
        "statusCode": status_code,
        "headers": headers,
        "body": json.dumps(body),
    }


async def handle_event(
    event: dict[str, Any],
    app_ctx: AppContext | None = None,
) -> dict[str, Any]:
    """Translate an API Gateway proxy event into a GraphQL execution."""
    headers = event.get("headers") or {}
    request_id = _header(headers, "X-Request-Id") or (
        event.get("requestContext") or {}
    ).get("requestId")

    try:
        body = event.get("body")
        if body and event.get("isBase64Encoded"):
            try:
                body = base64.b64decode(body, validate=True)
            except (binascii.Error, ValueError):
                body = None
        payload = parse_graphql_request(body)
    except HomeApiError as e:
        return _response(e.status_code, e.to_dict(request_id), request_id)

    app_ctx = app_ctx or await _get_app_context()
    result = await execute_graphql(
        app_ctx,
        payload,
        _header(headers, "Authorization"),
        request_id=request_id,
    )
    # The environment may be frozen once we return
    await app_ctx.auth.drain()
    return _response(200, result, request_id)


def handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """Lambda handler."""
    return _get_loop().run_until_complete(handle_event(event))
