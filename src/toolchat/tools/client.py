"""Async HTTP client for the tool server.

This module owns the shared connection to the tool server: a single
httpx.AsyncClient whose connection pool lets concurrent tool calls run over
the same handle. It performs raw requests only; validation, retries and
result mapping live in the dispatcher.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx

from toolchat.tools.protocol import ExecuteRequest, HealthResponse, ToolListResponse
from toolchat.tools.types import ToolDescriptor

logger = logging.getLogger(__name__)


class ToolServerClient:
    """Connection handle for the tool server RPC endpoints.

    Attributes:
        base_url: The tool server URL (e.g., "http://127.0.0.1:50051")
        generation: Incremented every time the connection is replaced
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: The tool server URL
            timeout: Default per-request timeout in seconds
            transport: Optional transport (tests pass a MockTransport or
                       ASGITransport; it is reused across reconnects)
        """
        self.base_url = base_url
        self.timeout = timeout
        self.generation = 0
        self._transport = transport
        self._client = self._new_client()
        self._retired: list[httpx.AsyncClient] = []
        self._in_use: dict[httpx.AsyncClient, int] = {}
        logger.info(f"ToolServerClient initialized with base_url: {base_url}")

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        )

    @asynccontextmanager
    async def _lease(self) -> AsyncIterator[httpx.AsyncClient]:
        """Borrow the current connection pool for one request.

        A pool retired by reconnect() while requests were still running on
        it is closed when the last of them returns it.
        """
        client = self._client
        self._in_use[client] = self._in_use.get(client, 0) + 1
        try:
            yield client
        finally:
            count = self._in_use.pop(client, 0) - 1
            if count > 0:
                self._in_use[client] = count
            elif client in self._retired:
                await self._release(client)

    async def _release(self, client: httpx.AsyncClient) -> None:
        self._retired.remove(client)
        await client.aclose()
        logger.debug("Closed retired tool server connection pool")

    async def check_connection(self) -> bool:
        """Check if the tool server is reachable.

        Returns:
            bool: True if the health endpoint answered, False otherwise
        """
        try:
            async with self._lease() as client:
                response = await client.get("/api/v1/health")
            response.raise_for_status()
            health = HealthResponse.model_validate(response.json())
            logger.debug(f"Tool server health: {health.status}, tools={health.tool_count}")
            return True
        except Exception as e:
            logger.warning(f"Tool server connection check failed: {e}")
            return False

    async def list_tools(self) -> list[ToolDescriptor]:
        """Fetch the tool server's advertised descriptors.

        Raises:
            httpx.HTTPError: If the request fails
            pydantic.ValidationError: If the response is malformed
        """
        async with self._lease() as client:
            response = await client.get("/api/v1/tools")
        response.raise_for_status()
        listing = ToolListResponse.model_validate(response.json())
        logger.debug(f"Listed {len(listing.tools)} tools from {self.base_url}")
        return listing.tools

    async def execute(
        self,
        name: str,
        call_id: str,
        arguments: dict[str, Any],
        timeout: float | None = None,
    ) -> httpx.Response:
        """Send one execute request and return the raw response.

        Raises:
            httpx.TransportError: On connection-level failures
        """
        body = ExecuteRequest(call_id=call_id, arguments=arguments)
        async with self._lease() as client:
            return await client.post(
                f"/api/v1/tools/{name}/execute",
                json=body.model_dump(),
                timeout=timeout if timeout is not None else self.timeout,
            )

    async def reconnect(self, seen_generation: int) -> None:
        """Replace the connection pool after a transport failure.

        Calls that observed the same failure race to reconnect; only the
        first one whose generation is still current swaps the client. The
        old pool is closed right away when idle, otherwise once the requests
        still running on it finish.

        Args:
            seen_generation: The generation the caller's failed request used
        """
        if seen_generation != self.generation:
            return
        old = self._client
        self._client = self._new_client()
        self.generation += 1
        self._retired.append(old)
        logger.info(f"Reconnected to tool server (generation {self.generation})")
        if old not in self._in_use:
            await self._release(old)

    async def close(self) -> None:
        """Close the current and all retired connection pools."""
        for client in [*self._retired, self._client]:
            await client.aclose()
        self._retired.clear()
        logger.debug("ToolServerClient closed")
