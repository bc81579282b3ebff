"""Dependency injection providers for the tool server endpoints."""

from functools import lru_cache

from fastapi import HTTPException, Request, status

from toolchat.config import ToolchatSettings
from toolchat.server.tools import ServerTool
from toolchat.tools.registry import ToolRegistry


@lru_cache
def get_settings() -> ToolchatSettings:
    """Get the settings instance, loaded once from the environment.

    Returns:
        ToolchatSettings: The configuration settings.
    """
    return ToolchatSettings()


def get_registry(request: Request) -> ToolRegistry:
    """Get the registry describing the hosted tools from app state."""
    return request.app.state.registry


def get_tool(name: str, request: Request) -> ServerTool:
    """Resolve the tool named in the request path.

    Args:
        name: Tool name from the URL path.
        request: The FastAPI request object.

    Returns:
        ServerTool: The hosted tool implementation.

    Raises:
        HTTPException: 404 if no tool with that name is hosted.
    """
    tools: dict[str, ServerTool] = request.app.state.tools
    if name not in tools:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Tool '{name}' not found",
        )
    return tools[name]
