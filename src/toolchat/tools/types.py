"""Data types for tool descriptors, tool calls and their results.

Descriptors are pydantic models because they cross the RPC boundary as JSON;
requests and results stay in-process and are plain dataclasses.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ParameterType = Literal["string", "integer", "number", "boolean", "object", "array"]


class ParameterSpec(BaseModel):
    """Schema entry for a single tool parameter."""

    type: ParameterType = Field(description="JSON type of the parameter")
    required: bool = Field(default=False, description="Whether the parameter must be present")
    description: str = Field(default="", description="What the parameter means")

    model_config = ConfigDict(frozen=True)


class ToolDescriptor(BaseModel):
    """Catalog entry for one tool exposed by the tool server.

    Attributes:
        name: Unique tool name (e.g. "file_analyzer")
        description: Natural-language description shown to the model
        parameters: Mapping from parameter name to its ParameterSpec
        idempotent: False when repeating a call could duplicate a side effect
    """

    name: str = Field(min_length=1)
    description: str = ""
    parameters: dict[str, ParameterSpec] = Field(default_factory=dict)
    idempotent: bool = True

    model_config = ConfigDict(frozen=True)

    def to_model_tool(self) -> dict[str, Any]:
        """Render the descriptor in the chat-completions `tools` format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": {
                        name: {"type": spec.type, "description": spec.description}
                        for name, spec in self.parameters.items()
                    },
                    "required": [
                        name for name, spec in self.parameters.items() if spec.required
                    ],
                },
            },
        }


@dataclass(frozen=True)
class ToolCallRequest:
    """A model-originated request to run a tool.

    The call id comes from the model API (or is synthesized for fenced calls)
    and is treated as opaque.
    """

    call_id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


class FailureKind(StrEnum):
    """Why a tool call did not produce a result."""

    INVALID_ARGUMENT = "invalid_argument"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"
    TOOL_ERROR = "tool_error"
    UNKNOWN_OUTCOME = "unknown_outcome"


@dataclass(frozen=True)
class ToolFailure:
    """Failure outcome of a tool call."""

    kind: FailureKind
    message: str


@dataclass(frozen=True)
class ToolCallResult:
    """Terminal outcome of one dispatched tool call.

    Exactly one of `content` (success) or `failure` is meaningful.
    """

    call_id: str
    name: str
    content: Any = None
    failure: ToolFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, request: ToolCallRequest, content: Any) -> "ToolCallResult":
        return cls(call_id=request.call_id, name=request.name, content=content)

    @classmethod
    def failed(
        cls, request: ToolCallRequest, kind: FailureKind, message: str
    ) -> "ToolCallResult":
        return cls(
            call_id=request.call_id,
            name=request.name,
            failure=ToolFailure(kind=kind, message=message),
        )
