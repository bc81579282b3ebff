"""Async client for an OpenAI-compatible chat-completions API.

This module provides the streaming model client used by the conversation
manager. It only opens the request and hands back the raw byte chunks of the
SSE response; turning them into events is the StreamParser's job.
"""

import logging
from typing import Any, AsyncIterator

import httpx

from toolchat.errors import ModelAPIError

logger = logging.getLogger(__name__)


class ModelClient:
    """Async client for streaming chat completions.

    The client is designed to be created once per session and reused for
    every model turn.

    Attributes:
        api_base: Base URL of the API (e.g. "https://api.deepseek.com/v1")
        model: Model name sent with every request
        temperature: Sampling temperature sent with every request
        _client: The underlying httpx.AsyncClient instance
    """

    def __init__(
        self,
        api_key: str,
        api_base: str,
        model: str,
        temperature: float = 0.7,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the model client.

        Args:
            api_key: Bearer token for the API
            api_base: Base URL of the API
            model: Model name
            temperature: Sampling temperature
            timeout: Read timeout between stream chunks in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.api_base = api_base
        self.model = model
        self.temperature = temperature
        self._client = httpx.AsyncClient(
            base_url=api_base,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )
        logger.info(f"ModelClient initialized with api_base: {api_base}, model: {model}")

    def build_request(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """Build the JSON body of a streaming chat request."""
        body: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "stream": True,
        }
        if tools:
            body["tools"] = tools
        return body

    async def chat_stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[bytes]:
        """Stream the raw response body of a chat request.

        Args:
            messages: Conversation history in chat-completions format
            tools: Optional tool definitions to advertise

        Yields:
            bytes: Raw chunks of the SSE response, in arrival order

        Raises:
            ModelAPIError: If the API answers with a non-2xx status
            httpx.HTTPError: If the connection fails
        """
        body = self.build_request(messages, tools)
        logger.debug(
            f"Starting chat stream: {len(messages)} messages, {len(tools or [])} tools"
        )

        async with self._client.stream("POST", "/chat/completions", json=body) as response:
            if response.status_code >= 400:
                await response.aread()
                message = _error_message(response)
                logger.error(f"Model API error {response.status_code}: {message}")
                raise ModelAPIError(response.status_code, message)

            async for chunk in response.aiter_bytes():
                yield chunk

        logger.debug("Chat stream completed")

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
        logger.debug("ModelClient closed")


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"].get("message") or response.reason_phrase
    return response.text or response.reason_phrase
