"""Events produced by the streaming response parser."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class TextDelta:
    """A piece of assistant text, safe to display as-is."""

    text: str


@dataclass(frozen=True)
class ToolCallFragment:
    """A fully assembled tool call recognized in the stream."""

    call_id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StreamEnd:
    """The model finished its turn."""

    finish_reason: str | None = None


@dataclass(frozen=True)
class StreamError:
    """The stream was malformed or interrupted; no events follow.

    Kinds: "transport", "encoding", "protocol", "api", "incomplete".
    """

    kind: str
    message: str = ""


StreamEvent = TextDelta | ToolCallFragment | StreamEnd | StreamError
