"""Reference tool server exposing the tool RPC endpoints over FastAPI."""

from toolchat.server.app import create_app

__all__ = ["create_app"]
