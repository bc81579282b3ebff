"""Tool descriptor registry.

The registry is built once per session from the tool server's advertised
capability list and never changes afterwards. Besides lookups it owns the
argument validators: one pydantic model per tool, generated from the
descriptor's parameter schema.
"""

import logging
from typing import Any, Iterable

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    create_model,
)

from toolchat.tools.client import ToolServerClient
from toolchat.tools.types import ParameterSpec, ToolDescriptor

logger = logging.getLogger(__name__)

_PYTHON_TYPES: dict[str, Any] = {
    "string": StrictStr,
    "integer": StrictInt,
    "number": StrictInt | StrictFloat,
    "boolean": StrictBool,
    "object": dict[str, Any],
    "array": list[Any],
}


def build_argument_model(descriptor: ToolDescriptor) -> type[BaseModel]:
    """Create a strict pydantic model for a tool's arguments.

    Fields are declared under positional names with the parameter name as
    alias, so parameters called e.g. "json" or "schema" cannot collide with
    BaseModel attributes.

    Args:
        descriptor: The tool descriptor to build a validator for

    Returns:
        type[BaseModel]: Model rejecting unknown, missing and mistyped arguments
    """
    fields: dict[str, Any] = {}
    for index, (name, spec) in enumerate(descriptor.parameters.items()):
        fields[f"p{index}"] = _field_definition(name, spec)

    return create_model(
        f"{descriptor.name}_arguments",
        __config__=ConfigDict(extra="forbid"),
        **fields,
    )


def _field_definition(name: str, spec: ParameterSpec) -> tuple[Any, Any]:
    python_type = _PYTHON_TYPES[spec.type]
    if spec.required:
        return (python_type, Field(..., alias=name, description=spec.description))
    return (
        python_type | None,
        Field(default=None, alias=name, description=spec.description),
    )


class ToolRegistry:
    """Immutable catalog of the tools available to a session."""

    def __init__(self, descriptors: Iterable[ToolDescriptor] = ()):
        """Initialize the registry.

        Args:
            descriptors: Tool descriptors, in advertisement order

        Raises:
            ValueError: If two descriptors share a name
        """
        self._descriptors: dict[str, ToolDescriptor] = {}
        self._argument_models: dict[str, type[BaseModel]] = {}

        for descriptor in descriptors:
            if descriptor.name in self._descriptors:
                raise ValueError(f"Duplicate tool name '{descriptor.name}'")
            self._descriptors[descriptor.name] = descriptor
            self._argument_models[descriptor.name] = build_argument_model(descriptor)

        logger.debug(f"Registry built with tools: {', '.join(self._descriptors)}")

    @classmethod
    async def from_server(cls, client: ToolServerClient) -> "ToolRegistry":
        """Build a registry from the tool server's advertised descriptors."""
        descriptors = await client.list_tools()
        logger.info(f"Tool server advertised {len(descriptors)} tools")
        return cls(descriptors)

    def names(self) -> list[str]:
        return list(self._descriptors)

    def resolve(self, name: str) -> ToolDescriptor | None:
        """Look up a descriptor by tool name.

        Returns:
            ToolDescriptor | None: The descriptor, or None if no such tool exists
        """
        return self._descriptors.get(name)

    def validate_arguments(self, name: str, arguments: Any) -> dict[str, Any]:
        """Validate a raw argument payload against a tool's schema.

        Args:
            name: Registered tool name
            arguments: Untyped payload from the model

        Returns:
            dict: The validated arguments, keyed by parameter name, without
                  unset optional parameters

        Raises:
            KeyError: If the tool is not registered
            pydantic.ValidationError: If the payload does not match the schema
        """
        model = self._argument_models[name]
        validated = model.model_validate(arguments)
        return validated.model_dump(by_alias=True, exclude_unset=True)

    def to_model_tools(self) -> list[dict[str, Any]]:
        """Render every descriptor in the chat-completions `tools` format."""
        return [descriptor.to_model_tool() for descriptor in self._descriptors.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)

    # Defined last: inside the class body the name shadows the builtin used
    # in the annotations above.
    def list(self) -> tuple[ToolDescriptor, ...]:
        """Return all descriptors in advertisement order."""
        return tuple(self._descriptors.values())
