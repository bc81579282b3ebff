"""Unit tests for the tool server health check endpoint."""

import pytest

from toolchat.server import create_app
from toolchat.server.tools import FileAnalyzerTool


@pytest.mark.asyncio
async def test_health_check_returns_ok(async_client):
    """Test that health check returns status ok."""
    response = await async_client.get("/api/v1/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["version"] == "0.1.0"


@pytest.mark.asyncio
async def test_health_check_reports_tool_count(async_client):
    """Test that the number of hosted tools is reported."""
    response = await async_client.get("/api/v1/health")

    assert response.json()["tool_count"] == 3


@pytest.mark.asyncio
async def test_health_check_version_format(async_client):
    """Test that version follows semantic versioning format."""
    response = await async_client.get("/api/v1/health")

    parts = response.json()["version"].split(".")
    assert len(parts) == 3
    assert all(part.isdigit() for part in parts)


@pytest.mark.asyncio
async def test_health_check_content_type(async_client):
    """Test that health check returns JSON content type."""
    response = await async_client.get("/api/v1/health")

    assert "application/json" in response.headers["content-type"]


def test_create_app_with_custom_tools(test_settings):
    """Test that the hosted tool set can be chosen at construction."""
    app = create_app(settings=test_settings, server_tools=[FileAnalyzerTool()])

    assert app.state.registry.names() == ["file_analyzer"]
    assert app.title == "toolchat-tools"


def test_create_app_rejects_duplicate_tools(test_settings):
    """Test that two tools with the same name cannot be hosted."""
    with pytest.raises(ValueError):
        create_app(settings=test_settings, server_tools=[FileAnalyzerTool(), FileAnalyzerTool()])
