"""
Tool Converter - OpenAI function calling format conversion.

Helpers used by the ReAct agent runner to talk to a tool-calling model:
- tool specs in OpenAI function format
- parsing of the JSON arguments the model produced
- assistant and tool messages for the conversation history
"""

import json
from collections.abc import Iterable
from typing import Any

from plangraph.core.interfaces.tools import ToolProtocol

# Fields of a tool result that may carry large payloads
LARGE_RESULT_FIELDS = ("output", "result", "content", "stdout", "stderr", "data")


def tool_spec(name: str, description: str, parameters: dict[str, Any]) -> dict[str, Any]:
    """Build one tool definition in OpenAI function format."""
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": parameters,
        },
    }


def tools_to_openai_format(tools: Iterable[ToolProtocol]) -> list[dict[str, Any]]:
    """
    Convert tools to OpenAI function calling format.

    Args:
        tools: Tool instances

    Returns:
        List of ``{"type": "function", "function": {...}}`` definitions
    """
    return [tool_spec(t.name, t.description, t.parameters_schema) for t in tools]


def parse_tool_arguments(raw_arguments: str | dict[str, Any] | None) -> dict[str, Any]:
    """
    Decode the arguments of a model tool call.

    Raises:
        ValueError: The arguments are not a JSON object
    """
    if raw_arguments is None or raw_arguments == "":
        return {}
    if isinstance(raw_arguments, dict):
        return raw_arguments
    try:
        arguments = json.loads(raw_arguments)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid tool arguments: {e.msg}") from e
    if not isinstance(arguments, dict):
        raise ValueError("Tool arguments must be a JSON object")
    return arguments


def tool_result_to_message(
    tool_call_id: str,
    tool_name: str,
    result: dict[str, Any],
    max_output_chars: int = 20000,
) -> dict[str, Any]:
    """
    Convert a tool result into an OpenAI ``tool`` message.

    Large result fields are truncated to ``max_output_chars`` characters.
    """
    content = json.dumps(
        truncate_tool_result(result, max_output_chars), ensure_ascii=False, default=str
    )
    return {
        "role": "tool",
        "tool_call_id": tool_call_id,
        "name": tool_name,
        "content": content,
    }


def truncate_tool_result(result: dict[str, Any], max_chars: int) -> dict[str, Any]:
    truncated = result.copy()
    for field_name in LARGE_RESULT_FIELDS:
        if field_name not in truncated:
            continue
        value = truncated[field_name]
        if isinstance(value, (list, dict)):
            value = json.dumps(value, ensure_ascii=False, default=str)
        elif not isinstance(value, str):
            continue
        if len(value) > max_chars:
            overflow = len(value) - max_chars
            truncated[field_name] = (
                value[:max_chars] + f"\n\n[... TRUNCATED - {overflow} more chars ...]"
            )
    return truncated


def assistant_tool_calls_to_message(
    tool_calls: list[dict[str, Any]],
    content: str | None = None,
) -> dict[str, Any]:
    """Assistant message carrying the model's tool calls (precedes the tool results)."""
    return {
        "role": "assistant",
        "content": content,
        "tool_calls": tool_calls,
    }
