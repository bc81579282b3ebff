"""Pytest configuration and shared fixtures for toolchat tests.

This module provides common fixtures used across all test modules: isolated
settings, the tool server app with an async client, builders for model SSE
streams and a scripted fake model client.
"""

import json
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from toolchat.config import ToolchatSettings
from toolchat.server import create_app
from toolchat.tools import ParameterSpec, ToolDescriptor


@pytest.fixture
def test_settings(tmp_path):
    """Create test settings with an isolated log directory.

    Args:
        tmp_path: Pytest fixture providing a temporary directory.

    Returns:
        ToolchatSettings: Settings instance configured for testing.
    """
    return ToolchatSettings(
        api_key="test-key",
        api_base="http://model.test/v1",
        model="test-model",
        tools_addr="http://tools.test",
        tool_timeout=5.0,
        max_tool_rounds=3,
        log_dir=str(tmp_path / "logs"),
        log_level="DEBUG",
    )


@pytest.fixture
def test_app(test_settings):
    """Create the tool server application with the default tools."""
    return create_app(settings=test_settings)


@pytest_asyncio.fixture
async def async_client(test_app):
    """Create an async HTTP client for the tool server endpoints.

    Yields:
        AsyncClient: Async HTTP client for making test requests.
    """
    async with test_app.router.lifespan_context(test_app):
        transport = ASGITransport(app=test_app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client


@pytest.fixture
def analyzer_descriptor():
    """Descriptor shaped like the server's file_analyzer tool."""
    return ToolDescriptor(
        name="file_analyzer",
        description="Analyze a directory",
        parameters={
            "path": ParameterSpec(type="string", required=True, description="Directory"),
            "recursive": ParameterSpec(type="boolean", description="Recurse"),
        },
    )


@pytest.fixture
def file_tool_descriptor():
    """Non-idempotent descriptor shaped like the server's file_tool."""
    return ToolDescriptor(
        name="file_tool",
        description="Convert files",
        parameters={
            "operation": ParameterSpec(type="string", required=True),
            "input": ParameterSpec(type="string", required=True),
            "output": ParameterSpec(type="string"),
        },
        idempotent=False,
    )


class SSE:
    """Builders for chat-completions SSE streams."""

    DONE = "data: [DONE]\n\n"

    @staticmethod
    def chunk(delta: dict[str, Any] | None = None, finish_reason: str | None = None) -> str:
        payload = {
            "id": "chatcmpl-test",
            "object": "chat.completion.chunk",
            "choices": [{"index": 0, "delta": delta or {}, "finish_reason": finish_reason}],
        }
        return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"

    @classmethod
    def text(cls, *parts: str) -> list[str]:
        """A complete stream answering with plain text."""
        return [
            *(cls.chunk({"content": part}) for part in parts),
            cls.chunk(finish_reason="stop"),
            cls.DONE,
        ]

    @classmethod
    def tool_calls(cls, *calls: tuple[str, str, dict[str, Any]], text: str = "") -> list[str]:
        """A complete stream requesting native tool calls.

        Args:
            calls: (call_id, name, arguments) per call
            text: Optional assistant text preceding the calls
        """
        events = [cls.chunk({"content": text})] if text else []
        for index, (call_id, name, arguments) in enumerate(calls):
            raw = json.dumps(arguments)
            middle = len(raw) // 2
            events.append(
                cls.chunk(
                    {
                        "tool_calls": [
                            {
                                "index": index,
                                "id": call_id,
                                "type": "function",
                                "function": {"name": name, "arguments": raw[:middle]},
                            }
                        ]
                    }
                )
            )
            events.append(
                cls.chunk({"tool_calls": [{"index": index, "function": {"arguments": raw[middle:]}}]})
            )
        events.append(cls.chunk(finish_reason="tool_calls"))
        events.append(cls.DONE)
        return events


@pytest.fixture
def sse():
    """SSE stream builders."""
    return SSE


class FakeModelClient:
    """Stands in for ModelClient, replaying one scripted stream per request.

    Each script is a list of chunks, or an exception to raise when the
    stream is opened. Requests are recorded for assertions.
    """

    def __init__(self, scripts: list[Any]):
        self.scripts = list(scripts)
        self.requests: list[dict[str, Any]] = []

    async def chat_stream(self, messages, tools=None):
        self.requests.append({"messages": messages, "tools": tools})
        script = self.scripts.pop(0)
        if isinstance(script, Exception):
            raise script
        for chunk in script:
            yield chunk.encode() if isinstance(chunk, str) else chunk

    async def close(self):
        pass


@pytest.fixture
def fake_model():
    """Factory for FakeModelClient instances."""
    return FakeModelClient
