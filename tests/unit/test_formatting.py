"""Unit tests for message formatting and the tool system prompt."""

import json

from toolchat.conversation import AssistantMessage, SystemMessage, ToolMessage, UserMessage
from toolchat.conversation.formatting import (
    build_system_prompt,
    format_tool_result,
    messages_to_api_format,
    summarize_tool_result,
)
from toolchat.tools import FailureKind, ToolCallRequest, ToolCallResult


def test_messages_to_api_format():
    """Test conversion of every message type to the wire format."""
    call = ToolCallRequest("call_1", "file_analyzer", {"path": "/tmp"})
    messages = [
        SystemMessage("rules"),
        UserMessage("hi"),
        AssistantMessage("", tool_calls=(call,)),
        ToolMessage(tool_call_id="call_1", tool_name="file_analyzer", content="{}"),
        AssistantMessage("done"),
    ]

    result = messages_to_api_format(messages)

    assert result[0] == {"role": "system", "content": "rules"}
    assert result[1] == {"role": "user", "content": "hi"}
    assert result[2] == {
        "role": "assistant",
        "content": "",
        "tool_calls": [
            {
                "id": "call_1",
                "type": "function",
                "function": {"name": "file_analyzer", "arguments": '{"path": "/tmp"}'},
            }
        ],
    }
    assert result[3] == {"role": "tool", "content": "{}", "tool_call_id": "call_1"}
    assert "tool_calls" not in result[4]


def test_format_tool_result_success():
    """Test that payloads are serialized as JSON and strings passed through."""
    request = ToolCallRequest("c", "t", {})

    assert format_tool_result(ToolCallResult.success(request, {"a": 1})) == '{"a": 1}'
    assert format_tool_result(ToolCallResult.success(request, "plain")) == "plain"
    assert format_tool_result(ToolCallResult.success(request, None)) == "null"


def test_format_tool_result_failure():
    """Test that failures carry their kind and message for the model."""
    result = ToolCallResult.failed(
        ToolCallRequest("c", "t", {}), FailureKind.UNAVAILABLE, "server down"
    )

    assert json.loads(format_tool_result(result)) == {
        "error": {"kind": "unavailable", "message": "server down"}
    }
    assert not result.ok


def test_summarize_tool_result_truncates():
    """Test that long results are shortened to one line."""
    request = ToolCallRequest("c", "t", {})
    result = ToolCallResult.success(request, "line one\nline two " + "x" * 200)

    summary = summarize_tool_result(result, max_length=40)

    assert len(summary) == 40
    assert summary.startswith("line one line two")
    assert summary.endswith("...")


def test_build_system_prompt_lists_tools(analyzer_descriptor, file_tool_descriptor):
    """Test that every tool and parameter appears in the prompt."""
    prompt = build_system_prompt([analyzer_descriptor, file_tool_descriptor])

    assert "```tool" in prompt
    assert "1. file_analyzer: Analyze a directory" in prompt
    assert "- path (string, required): Directory" in prompt
    assert "- recursive (boolean, optional): Recurse" in prompt
    assert "2. file_tool" in prompt
