"""homeapi FastAPI application entry point."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from homeapi import __version__
from homeapi.api.handler import create_app_context, execute_graphql, parse_graphql_request
from homeapi.config import Settings, get_settings
from homeapi.errors import HomeApiError
from homeapi.services.http import http_client_manager
from homeapi.services.oauth import TokenVerifier
from homeapi.storage.client import StorageClient

logger = structlog.get_logger()


def create_app(
    settings: Settings | None = None,
    *,
    storage: StorageClient | None = None,
    verifier: TokenVerifier | None = None,
) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        settings: Settings to use (defaults to ``get_settings()``)
        storage: Pre-built storage client
        verifier: OAuth token verifier (defaults to Google)
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        logger.info("homeapi.startup", version=__version__)

        await http_client_manager.startup()
        store = storage or StorageClient(settings.dynamodb)
        await store.startup()
        app.state.app_context = create_app_context(settings, store, verifier=verifier)

        yield

        logger.info("homeapi.shutdown")
        await app.state.app_context.auth.drain()
        await store.shutdown()
        await http_client_manager.shutdown()

    app = FastAPI(
        title="homeapi",
        description="Personal home data GraphQL API",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors.allow_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-Id"],
    )

    # Request ID middleware
    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Add request ID to all requests."""
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response

    @app.exception_handler(HomeApiError)
    async def homeapi_error_handler(request: Request, exc: HomeApiError):
        """Handle homeapi errors raised outside GraphQL execution."""
        request_id = getattr(request.state, "request_id", None)
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(request_id),
        )

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok"}

    @app.post("/graphql")
    async def graphql(request: Request) -> JSONResponse:
        """GraphQL endpoint. Errors are reported in the response body."""
        payload = parse_graphql_request(await request.body())
        result = await execute_graphql(
            request.app.state.app_context,
            payload,
            request.headers.get("Authorization"),
            request_id=request.state.request_id,
        )
        return JSONResponse(result)

    return app


# Create default app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "homeapi.main:app",
        host=settings.server.host,
        port=settings.server.port,
    )
