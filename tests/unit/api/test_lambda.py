"""Unit tests for the Lambda entry point."""

from __future__ import annotations

import base64
import json

import pytest

from homeapi import lambda_function
from tests.conftest import OAUTH_TOKEN

PLACES = {"query": "{ places { edges { node { placeId name } } } }"}


def _event(body: dict | str | None, headers: dict | None = None, b64: bool = False) -> dict:
    if isinstance(body, dict):
        body = json.dumps(body)
    if b64 and body is not None:
        body = base64.b64encode(body.encode()).decode()
    return {
        "headers": headers or {},
        "body": body,
        "isBase64Encoded": b64,
        "requestContext": {"requestId": "lambda-req-1"},
    }


@pytest.mark.asyncio
async def test_query(app_ctx):
    response = await lambda_function.handle_event(_event(PLACES), app_ctx)

    assert response["statusCode"] == 200
    assert response["headers"]["Content-Type"] == "application/json"
    assert response["headers"]["X-Request-Id"] == "lambda-req-1"
    assert json.loads(response["body"]) == {"data": {"places": {"edges": []}}}


@pytest.mark.asyncio
async def test_base64_body(app_ctx):
    response = await lambda_function.handle_event(_event(PLACES, b64=True), app_ctx)
    assert response["statusCode"] == 200


@pytest.mark.asyncio
async def test_lowercase_authorization_header(app_ctx, registered):
    mutation = {"query": 'mutation { putPlace(input: {placeId: "k", name: "Kitchen"}) { name } }'}

    response = await lambda_function.handle_event(
        _event(mutation, headers={"authorization": f"Bearer {OAUTH_TOKEN}"}), app_ctx
    )

    assert json.loads(response["body"]) == {"data": {"putPlace": {"name": "Kitchen"}}}


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [None, "{not json", "[]"])
async def test_malformed_body(app_ctx, body):
    response = await lambda_function.handle_event(_event(body), app_ctx)

    assert response["statusCode"] == 400
    assert json.loads(response["body"])["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_invalid_base64_body(app_ctx):
    event = _event(None)
    event.update(body="%%%", isBase64Encoded=True)

    response = await lambda_function.handle_event(event, app_ctx)
    assert response["statusCode"] == 400


def test_handler_reuses_app_context(app_ctx, monkeypatch):
    monkeypatch.setattr(lambda_function, "_app_context", app_ctx)

    first = lambda_function.handler(_event(PLACES), None)
    second = lambda_function.handler(_event(PLACES), None)

    assert first["statusCode"] == second["statusCode"] == 200
    assert lambda_function._app_context is app_ctx
