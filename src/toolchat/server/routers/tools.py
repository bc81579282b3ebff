"""Tools router: capability listing and tool execution.

This module provides the RPC endpoints used by the dispatcher:
- Listing the hosted tool descriptors
- Executing a tool with validated arguments
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import ValidationError

from toolchat.server.dependencies import get_registry, get_tool
from toolchat.server.tools import ServerTool, ToolExecutionError
from toolchat.tools.protocol import ExecuteRequest, ExecuteResponse, ToolListResponse
from toolchat.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/tools", tags=["tools"])


@router.get("", response_model=ToolListResponse, summary="List hosted tools")
async def list_tools(
    registry: Annotated[ToolRegistry, Depends(get_registry)],
) -> ToolListResponse:
    """List the descriptors of every hosted tool, in registration order."""
    return ToolListResponse(tools=list(registry.list()))


@router.post(
    "/{name}/execute",
    response_model=ExecuteResponse,
    summary="Execute a tool",
)
async def execute_tool(
    name: str,
    body: ExecuteRequest,
    tool: Annotated[ServerTool, Depends(get_tool)],
    registry: Annotated[ToolRegistry, Depends(get_registry)],
) -> ExecuteResponse:
    """Run a tool and report its outcome.

    Domain failures are part of the response body (success=false) so the
    caller can tell them apart from transport problems.

    Args:
        name: Tool name from the URL path
        body: Call id and raw arguments
        tool: Injected tool implementation
        registry: Injected registry used for argument validation

    Returns:
        ExecuteResponse with the tool's payload or its error message

    Raises:
        HTTPException: 404 if the tool does not exist
        HTTPException: 422 if the arguments do not match the tool's schema
    """
    try:
        arguments = registry.validate_arguments(name, body.arguments)
    except ValidationError as e:
        logger.info(f"Rejected arguments for {name} ({body.call_id}): {e}")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid arguments for '{name}': {e.error_count()} validation error(s)",
        ) from e

    logger.info(f"Executing {name} ({body.call_id})")
    try:
        data = await tool.execute(arguments)
    except ToolExecutionError as e:
        logger.info(f"Tool {name} ({body.call_id}) failed: {e}")
        return ExecuteResponse(success=False, error=str(e))
    except Exception as e:
        logger.exception(f"Unexpected error in tool {name} ({body.call_id})")
        return ExecuteResponse(success=False, error=f"Internal tool error: {e}")

    return ExecuteResponse(success=True, data=data)
