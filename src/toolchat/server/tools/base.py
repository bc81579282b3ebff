"""Base class for tools hosted by the tool server."""

import logging
from abc import ABC, abstractmethod
from typing import Any

from toolchat.tools.types import ParameterSpec, ToolDescriptor

logger = logging.getLogger(__name__)


class ToolExecutionError(Exception):
    """A tool ran but could not do what was asked (missing file, bad query)."""


class ServerTool(ABC):
    """A tool implementation registered with the tool server.

    Subclasses declare their descriptor fields as class attributes and
    implement `execute`. Arguments arrive already validated against the
    declared parameters. Domain failures are reported by raising
    ToolExecutionError; the server turns them into success=false responses.
    """

    name: str
    description: str
    parameters: dict[str, ParameterSpec] = {}
    idempotent: bool = True

    def descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
            idempotent=self.idempotent,
        )

    @abstractmethod
    async def execute(self, arguments: dict[str, Any]) -> Any:
        """Run the tool and return a JSON-serializable payload."""
