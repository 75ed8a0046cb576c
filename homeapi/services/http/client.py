"""Shared HTTP client for homeapi.

Provides one pooled httpx.AsyncClient for outbound calls (JWKS fetches),
started and closed by the application lifespan.
"""

from __future__ import annotations

import httpx
import structlog

logger = structlog.get_logger()


class HTTPClientManager:
    """Manages a shared httpx.AsyncClient with connection pooling.

    Usage:
        await http_client_manager.startup()
        response = await http_client_manager.client.get("https://...")
        await http_client_manager.shutdown()
    """

    def __init__(
        self,
        *,
        max_connections: int = 20,
        max_keepalive_connections: int = 10,
        keepalive_expiry: float = 30.0,
        connect_timeout: float = 5.0,
        read_timeout: float = 10.0,
    ) -> None:
        """Initialize HTTP client manager.

        Args:
            max_connections: Maximum number of concurrent connections
            max_keepalive_connections: Maximum connections to keep alive
            keepalive_expiry: Seconds before idle connections are closed
            connect_timeout: Connection timeout in seconds
            read_timeout: Read timeout in seconds
        """
        self._max_connections = max_connections
        self._max_keepalive_connections = max_keepalive_connections
        self._keepalive_expiry = keepalive_expiry
        self._connect_timeout = connect_timeout
        self._read_timeout = read_timeout

        self._client: httpx.AsyncClient | None = None
        self._log = logger.bind(component="http_client")

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the shared HTTP client.

        Raises:
            RuntimeError: If client is not initialized (call startup first)
        """
        if self._client is None:
            raise RuntimeError("HTTP client not initialized. Call startup() first.")
        return self._client

    @property
    def is_started(self) -> bool:
        return self._client is not None

    async def startup(self) -> None:
        """Initialize the HTTP client."""
        if self._client is not None:
            self._log.warning("http_client.already_started")
            return

        limits = httpx.Limits(
            max_connections=self._max_connections,
            max_keepalive_connections=self._max_keepalive_connections,
            keepalive_expiry=self._keepalive_expiry,
        )
        timeout = httpx.Timeout(
            self._read_timeout,
            connect=self._connect_timeout,
        )
        self._client = httpx.AsyncClient(limits=limits, timeout=timeout)

        self._log.info(
            "http_client.started",
            max_connections=self._max_connections,
            max_keepalive=self._max_keepalive_connections,
        )

    async def shutdown(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is None:
            return

        await self._client.aclose()
        self._client = None
        self._log.info("http_client.shutdown")


# Global singleton instance
http_client_manager = HTTPClientManager()


def get_http_client() -> httpx.AsyncClient:
    """Get the shared HTTP client.

    Raises:
        RuntimeError: If client not initialized
    """
    return http_client_manager.client
