"""Tool registry, RPC client and dispatcher.

This package holds everything the conversation needs to run tools on the
tool server: descriptor and call types, the session's tool registry, the
shared connection to the server and the dispatcher that validates, sends
and retries calls.
"""

from toolchat.tools.client import ToolServerClient
from toolchat.tools.dispatcher import ToolDispatcher
from toolchat.tools.registry import ToolRegistry
from toolchat.tools.types import (
    FailureKind,
    ParameterSpec,
    ToolCallRequest,
    ToolCallResult,
    ToolDescriptor,
    ToolFailure,
)

__all__ = [
    "FailureKind",
    "ParameterSpec",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolDescriptor",
    "ToolDispatcher",
    "ToolFailure",
    "ToolRegistry",
    "ToolServerClient",
]
