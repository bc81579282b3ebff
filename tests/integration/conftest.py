"""Pytest configuration for integration tests.

Integration tests run the real tool server application in-process through
httpx.ASGITransport, and a small fake model API built with FastAPI and
sse-starlette that replays scripted chat-completion streams.
"""

import json

import pytest
import pytest_asyncio
from fastapi import FastAPI, Request
from httpx import ASGITransport
from sse_starlette.sse import EventSourceResponse

from toolchat.llm import ModelClient
from toolchat.tools import ToolServerClient


@pytest_asyncio.fixture
async def tool_client(test_app):
    """ToolServerClient talking to the in-process tool server."""
    client = ToolServerClient("http://tools.test", transport=ASGITransport(app=test_app))
    yield client
    await client.close()


def create_fake_model_app(scripts: list[list[dict]]) -> FastAPI:
    """Build a chat-completions API that answers each request with the next script.

    Each script is a list of chunk payloads; the stream ends with [DONE].
    Received request bodies are kept in app.state.requests.
    """
    app = FastAPI()
    app.state.requests = []
    app.state.scripts = list(scripts)

    @app.post("/v1/chat/completions")
    async def chat_completions(request: Request) -> EventSourceResponse:
        app.state.requests.append(await request.json())
        script = app.state.scripts.pop(0)

        async def event_generator():
            for payload in script:
                yield {"data": json.dumps(payload)}
            yield {"data": "[DONE]"}

        return EventSourceResponse(event_generator())

    return app


def completion_chunk(delta: dict | None = None, finish_reason: str | None = None) -> dict:
    return {"choices": [{"index": 0, "delta": delta or {}, "finish_reason": finish_reason}]}


@pytest_asyncio.fixture
async def fake_model_api():
    """Factory returning (app, ModelClient) for a scripted fake model API."""
    clients = []

    def factory(scripts):
        app = create_fake_model_app(scripts)
        client = ModelClient(
            api_key="test-key",
            api_base="http://model.test/v1",
            model="test-model",
            transport=ASGITransport(app=app),
        )
        clients.append(client)
        return app, client

    yield factory
    for client in clients:
        await client.close()


@pytest.fixture
def chunk():
    """Builder for chat-completion chunk payloads."""
    return completion_chunk
