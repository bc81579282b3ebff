"""Conversation state machine, message types and session events."""

from toolchat.conversation.manager import ConversationManager, is_close_command
from toolchat.conversation.types import (
    AssistantMessage,
    ConversationState,
    Diagnostic,
    Message,
    SessionClosed,
    SessionEvent,
    SystemMessage,
    TextDeltaEvent,
    ToolCallFinished,
    ToolCallStarted,
    ToolMessage,
    TurnComplete,
    TurnFailed,
    UserMessage,
)

__all__ = [
    # Core classes
    "ConversationManager",
    "ConversationState",
    "is_close_command",
    # Message types
    "Message",
    "SystemMessage",
    "UserMessage",
    "AssistantMessage",
    "ToolMessage",
    # Session events
    "SessionEvent",
    "TextDeltaEvent",
    "ToolCallStarted",
    "ToolCallFinished",
    "TurnComplete",
    "TurnFailed",
    "SessionClosed",
    "Diagnostic",
]
