"""FastAPI routers for the tool server endpoints."""

from toolchat.server.routers import health, tools

__all__ = ["health", "tools"]
