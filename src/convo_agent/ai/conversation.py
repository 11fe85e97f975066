"""Convert conversation messages to provider request formats."""

from __future__ import annotations

import json
from typing import Any, Sequence

from convo_agent.core.messages import (
    AssistantMessage,
    Message,
    SystemMessage,
    ToolDefinition,
    ToolResultMessage,
    UserMessage,
)


def split_system(messages: Sequence[Message]) -> tuple[str, list[Message]]:
    """Separate system prompts from the turn messages.

    Several system messages are joined with blank lines, in order.
    """
    system_parts = [m.content for m in messages if isinstance(m, SystemMessage)]
    rest = [m for m in messages if not isinstance(m, SystemMessage)]
    return "\n\n".join(system_parts), rest


def _decode_arguments(arguments: str) -> dict[str, Any]:
    try:
        decoded = json.loads(arguments) if arguments else {}
    except (json.JSONDecodeError, TypeError):
        return {}
    return decoded if isinstance(decoded, dict) else {}


def build_anthropic_messages(messages: Sequence[Message]) -> tuple[str, list[dict[str, Any]]]:
    """Convert messages into the Anthropic Messages API format.

    Returns ``(system, messages)``. Consecutive tool results are grouped into
    one user message of ``tool_result`` blocks.
    """
    system, turns = split_system(messages)
    api_messages: list[dict[str, Any]] = []
    i = 0

    while i < len(turns):
        msg = turns[i]

        if isinstance(msg, UserMessage):
            api_messages.append({"role": "user", "content": msg.content})
            i += 1

        elif isinstance(msg, AssistantMessage):
            if msg.tool_calls:
                blocks: list[dict[str, Any]] = []
                if msg.content:
                    blocks.append({"type": "text", "text": msg.content})
                for call in msg.tool_calls:
                    blocks.append(
                        {
                            "type": "tool_use",
                            "id": call.id,
                            "name": call.name,
                            "input": _decode_arguments(call.arguments),
                        }
                    )
                api_messages.append({"role": "assistant", "content": blocks})
            else:
                api_messages.append({"role": "assistant", "content": msg.content or ""})
            i += 1

        elif isinstance(msg, ToolResultMessage):
            result_blocks: list[dict[str, Any]] = []
            while i < len(turns) and isinstance(turns[i], ToolResultMessage):
                result = turns[i]
                result_blocks.append(
                    {
                        "type": "tool_result",
                        "tool_use_id": result.tool_call_id,
                        "content": result.content,
                    }
                )
                i += 1
            api_messages.append({"role": "user", "content": result_blocks})

        else:
            i += 1

    return system, api_messages


def build_openai_messages(messages: Sequence[Message]) -> list[dict[str, Any]]:
    """Convert messages into the OpenAI chat-completions format."""
    api_messages: list[dict[str, Any]] = []
    for msg in messages:
        if isinstance(msg, (SystemMessage, UserMessage)):
            api_messages.append({"role": str(msg.role), "content": msg.content})
        elif isinstance(msg, AssistantMessage):
            entry: dict[str, Any] = {"role": "assistant", "content": msg.content}
            if msg.tool_calls:
                entry["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": call.arguments},
                    }
                    for call in msg.tool_calls
                ]
            api_messages.append(entry)
        elif isinstance(msg, ToolResultMessage):
            api_messages.append(
                {"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.content}
            )
    return api_messages


def anthropic_tools(tools: Sequence[ToolDefinition]) -> list[dict[str, Any]]:
    return [
        {
            "name": t.name,
            "description": t.description,
            "input_schema": t.parameters or {"type": "object"},
        }
        for t in tools
    ]


def openai_tools(tools: Sequence[ToolDefinition]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description,
                "parameters": t.parameters or {"type": "object"},
            },
        }
        for t in tools
    ]


def build_prompt(system: str, messages: Sequence[Message]) -> str:
    """Flatten a conversation into a single prompt string for CLI backends."""
    parts: list[str] = []

    if system:
        parts.append(f"[System Instructions]\n{system}\n")

    for msg in messages:
        if isinstance(msg, UserMessage):
            parts.append(f"[User]\n{msg.content}")
        elif isinstance(msg, AssistantMessage):
            if msg.content:
                parts.append(f"[Assistant]\n{msg.content}")
            for call in msg.tool_calls:
                parts.append(f"[Tool Call: {call.name} ({call.id})]\n{call.arguments}")
        elif isinstance(msg, ToolResultMessage):
            parts.append(f"[Tool Result ({msg.tool_call_id})]\n{msg.content}")

    return "\n\n".join(parts)
