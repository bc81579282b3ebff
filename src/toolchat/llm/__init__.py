"""Model API client and streaming response parser.

This package provides the async client for the chat-completions API and the
parser that turns its raw SSE stream into StreamEvents.
"""

from toolchat.llm.client import ModelClient
from toolchat.llm.events import (
    StreamEnd,
    StreamError,
    StreamEvent,
    TextDelta,
    ToolCallFragment,
)
from toolchat.llm.parser import StreamParser

__all__ = [
    "ModelClient",
    "StreamEnd",
    "StreamError",
    "StreamEvent",
    "StreamParser",
    "TextDelta",
    "ToolCallFragment",
]
