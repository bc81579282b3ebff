"""Health check endpoint router."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends

from toolchat import __version__
from toolchat.server.dependencies import get_registry
from toolchat.tools.protocol import HealthResponse
from toolchat.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    registry: Annotated[ToolRegistry, Depends(get_registry)],
) -> HealthResponse:
    """Health check endpoint.

    Returns the status and version of the tool server and how many tools
    it hosts.
    """
    return HealthResponse(status="ok", version=__version__, tool_count=len(registry))
