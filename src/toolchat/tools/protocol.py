"""Pydantic models for the tool-server RPC contract.

Shared by the client side (ToolServerClient) and the reference tool server
so both ends serialize the same shapes.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from toolchat.tools.types import ToolDescriptor


class HealthResponse(BaseModel):
    """Response body for GET /api/v1/health."""

    status: str = Field(..., description="Health status of the tool server")
    version: str = Field(..., description="Version of the tool server")
    tool_count: int = Field(default=0, description="Number of registered tools")


class ToolListResponse(BaseModel):
    """Response body for GET /api/v1/tools."""

    tools: list[ToolDescriptor] = Field(default_factory=list)


class ExecuteRequest(BaseModel):
    """Request body for POST /api/v1/tools/{name}/execute."""

    call_id: str = Field(default="", description="Opaque id of the model's tool call")
    arguments: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "call_id": "call_0",
                "arguments": {"path": "/tmp", "recursive": True},
            }
        }
    )


class ExecuteResponse(BaseModel):
    """Response body for a tool execution.

    A tool that ran but failed in its own domain (missing file, bad query)
    answers with success=false and an error message, still with HTTP 200.
    """

    success: bool
    data: Any = None
    error: str | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {"success": True, "data": {"file_count": 42}, "error": None},
                {"success": False, "data": None, "error": "path does not exist"},
            ]
        }
    )
