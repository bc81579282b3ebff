"""Conversion between conversation types and the chat-completions wire format.

Also builds the system prompt that tells the model which tools exist and
how to call them.
"""

import json
from typing import Any, Iterable

from toolchat.conversation.types import (
    AssistantMessage,
    Message,
    ToolMessage,
)
from toolchat.tools.types import ToolCallResult, ToolDescriptor

SYSTEM_PROMPT_HEADER = (
    "You can use the following tools to help complete the user's request.\n"
    "Call them through the function-calling interface. If that is not "
    "available, write a fenced block instead:\n"
    "```tool\n"
    '{"name": "<tool name>", "args": {"<parameter>": <value>}}\n'
    "```\n"
    "Parameter names and types must match exactly. Every call gets a result "
    "message; if a call fails, read the error and correct the call or explain "
    "the problem to the user."
)


def build_system_prompt(descriptors: Iterable[ToolDescriptor]) -> str:
    """Describe the available tools for the model.

    Args:
        descriptors: Tools from the session's registry

    Returns:
        str: The system prompt text
    """
    sections = [SYSTEM_PROMPT_HEADER, ""]
    for number, descriptor in enumerate(descriptors, start=1):
        sections.append(f"{number}. {descriptor.name}: {descriptor.description}")
        for name, spec in descriptor.parameters.items():
            requirement = "required" if spec.required else "optional"
            sections.append(f"   - {name} ({spec.type}, {requirement}): {spec.description}")
    return "\n".join(sections)


def messages_to_api_format(messages: Iterable[Message]) -> list[dict[str, Any]]:
    """Convert conversation messages to chat-completions format.

    Args:
        messages: Conversation history

    Returns:
        List of message dicts: [{"role": "...", "content": "..."}, ...]
    """
    api_messages = []

    for msg in messages:
        api_msg: dict[str, Any] = {"role": msg.role, "content": msg.content}

        if isinstance(msg, AssistantMessage) and msg.tool_calls:
            api_msg["tool_calls"] = [
                {
                    "id": call.call_id,
                    "type": "function",
                    "function": {
                        "name": call.name,
                        "arguments": json.dumps(call.arguments, ensure_ascii=False),
                    },
                }
                for call in msg.tool_calls
            ]
        elif isinstance(msg, ToolMessage):
            api_msg["tool_call_id"] = msg.tool_call_id

        api_messages.append(api_msg)

    return api_messages


def format_tool_result(result: ToolCallResult) -> str:
    """Render a tool result as the content of a tool message.

    Successful string payloads are passed through; structured payloads and
    failures are serialized as JSON.
    """
    if result.failure is not None:
        return json.dumps(
            {"error": {"kind": str(result.failure.kind), "message": result.failure.message}},
            ensure_ascii=False,
        )
    if isinstance(result.content, str):
        return result.content
    return json.dumps(result.content, ensure_ascii=False, default=str)


def summarize_tool_result(result: ToolCallResult, max_length: int = 120) -> str:
    """Short one-line description of a result for display."""
    if result.failure is not None:
        text = f"{result.failure.kind}: {result.failure.message}"
    else:
        text = format_tool_result(result)
    text = " ".join(text.split())
    if len(text) > max_length:
        return text[: max_length - 3] + "..."
    return text
