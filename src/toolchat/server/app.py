"""FastAPI application factory and lifespan management for the tool server.

This module contains the create_app() factory that builds the tool server:
the hosted tools, the registry used to validate their arguments, and the
health and tools routers.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable

from fastapi import FastAPI

from toolchat import __version__
from toolchat.config import ToolchatSettings
from toolchat.server.routers import health, tools
from toolchat.server.tools import ServerTool, default_tools
from toolchat.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan context manager for the tool server.

    Args:
        app: The FastAPI application instance.

    Yields:
        None: Control is yielded while the app is running.
    """
    registry: ToolRegistry = app.state.registry
    logger.info(f"Tool server {__version__} serving {len(registry)} tools: {', '.join(registry.names())}")

    yield

    logger.info("Tool server shutting down")


def create_app(
    settings: ToolchatSettings | None = None,
    server_tools: Iterable[ServerTool] | None = None,
) -> FastAPI:
    """Create and configure the tool server application.

    Args:
        settings: Optional ToolchatSettings instance. If not provided,
                  settings will be loaded from environment variables.
        server_tools: Tools to host (default: file_analyzer, file_tool
                      and web_search).

    Returns:
        FastAPI: Configured FastAPI application instance.

    Raises:
        ValueError: If two tools share a name.
    """
    if settings is None:
        from toolchat.server.dependencies import get_settings

        settings = get_settings()

    hosted = list(server_tools) if server_tools is not None else default_tools()

    app = FastAPI(
        title="toolchat-tools",
        description="Tool server executing file and web tools for toolchat",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.registry = ToolRegistry(tool.descriptor() for tool in hosted)
    app.state.tools = {tool.name: tool for tool in hosted}

    app.include_router(health.router)
    app.include_router(tools.router)

    return app
