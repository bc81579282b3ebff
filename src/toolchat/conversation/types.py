"""Data types for the conversation: messages, states and session events.

Messages are frozen once created; the history that holds them is owned by
the ConversationManager. Session events are what the manager hands to the
session driver for display.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal

from toolchat.tools.types import ToolCallRequest


@dataclass(frozen=True)
class SystemMessage:
    """A system prompt message."""

    content: str = ""
    role: Literal["system"] = field(default="system", init=False)


@dataclass(frozen=True)
class UserMessage:
    """A message from the user."""

    content: str = ""
    role: Literal["user"] = field(default="user", init=False)


@dataclass(frozen=True)
class AssistantMessage:
    """A response from the model, with the tool calls it requested."""

    content: str = ""
    tool_calls: tuple[ToolCallRequest, ...] = ()
    role: Literal["assistant"] = field(default="assistant", init=False)


@dataclass(frozen=True)
class ToolMessage:
    """A tool result folded back into the conversation."""

    tool_call_id: str
    tool_name: str
    content: str = ""
    role: Literal["tool"] = field(default="tool", init=False)


# Union type for all message types
Message = SystemMessage | UserMessage | AssistantMessage | ToolMessage


class ConversationState(StrEnum):
    """States of the conversation manager."""

    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    AWAITING_TOOLS = "awaiting_tools"
    CLOSED = "closed"


@dataclass(frozen=True)
class TextDeltaEvent:
    """Incremental assistant text to display."""

    text: str


@dataclass(frozen=True)
class ToolCallStarted:
    """A tool call is about to be dispatched."""

    call_id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolCallFinished:
    """A tool call reached its terminal outcome."""

    call_id: str
    name: str
    ok: bool
    detail: str = ""


@dataclass(frozen=True)
class TurnComplete:
    """The model answered without requesting further tools."""


@dataclass(frozen=True)
class TurnFailed:
    """The turn could not complete. Fatal failures close the session."""

    message: str
    fatal: bool = False


@dataclass(frozen=True)
class SessionClosed:
    """The session is closed; no further events follow."""


@dataclass(frozen=True)
class Diagnostic:
    """Verbose-mode diagnostic (history size, tool connection status)."""

    message: str


SessionEvent = (
    TextDeltaEvent
    | ToolCallStarted
    | ToolCallFinished
    | TurnComplete
    | TurnFailed
    | SessionClosed
    | Diagnostic
)
