"""Iterative tool execution loop for tool-calling model responses."""

from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass
from typing import Any

from convo_agent.ai.client import AIClient
from convo_agent.ai.tools.registry import ToolRegistry
from convo_agent.core.messages import AssistantMessage, Message, ToolCall, ToolResultMessage
from convo_agent.errors import (
    InvalidToolArgumentsError,
    MaxIterationsExceededError,
    ToolNotFoundError,
)
from convo_agent.log import get_logger

logger = get_logger(__name__)

MAX_TOOL_ROUNDS = 5

_QUOTED = re.compile(r"""^(["'])(.+)\1$""", re.DOTALL)


@dataclass
class ToolLoopResult:
    text: str
    messages: list[Message]
    rounds: int


async def run_tool_loop(
    ai_client: AIClient,
    messages: list[Message],
    tool_registry: ToolRegistry,
    max_iterations: int = MAX_TOOL_ROUNDS,
    **options: Any,
) -> ToolLoopResult:
    """Call the model until it answers without requesting tools.

    Each round appends the assistant's tool request and one tool result per
    call. Tool problems are reported back to the model as error results;
    transport errors propagate, and running out of rounds raises
    :class:`MaxIterationsExceededError`.
    """
    messages = list(messages)
    tool_defs = tool_registry.definitions()
    rounds = 0

    while rounds < max_iterations:
        result = await ai_client.chat_with_tools(messages, tool_defs, **options)

        if not result.pending:
            if result.content is None:
                return ToolLoopResult(text="", messages=messages, rounds=rounds)
            final_text = strip_surrounding_quotes(result.content)
            messages.append(AssistantMessage(final_text))
            return ToolLoopResult(text=final_text, messages=messages, rounds=rounds)

        calls = list(result.tool_calls or [])
        messages.append(AssistantMessage(content=result.content, tool_calls=tuple(calls)))
        logger.debug("tool_round", round=rounds, tools=[c.name for c in calls])

        results = await asyncio.gather(*(execute_tool_call(c, tool_registry) for c in calls))
        messages.extend(results)
        rounds += 1

    logger.warning("tool_loop_limit_reached", max_iterations=max_iterations)
    raise MaxIterationsExceededError(max_iterations, messages)


async def execute_tool_call(call: ToolCall, tool_registry: ToolRegistry) -> ToolResultMessage:
    """Run one tool call; failures become an error result, never an exception."""
    try:
        tool = tool_registry.get(call.name)
        if tool is None:
            raise ToolNotFoundError(call.name)
        args = _parse_arguments(call)
        logger.info("tool_execute", tool=call.name, tool_call_id=call.id)
        output = await tool.execute(**args)
    except (ToolNotFoundError, InvalidToolArgumentsError) as e:
        logger.warning("tool_call_rejected", tool=call.name, error=str(e))
        return _error_result(call.id, str(e))
    except Exception as e:
        logger.error("tool_execution_error", tool=call.name, error=str(e))
        return _error_result(call.id, f"Error executing {call.name}: {e}")

    return ToolResultMessage(tool_call_id=call.id, content=str(output))


def _parse_arguments(call: ToolCall) -> dict[str, Any]:
    if not call.arguments or not call.arguments.strip():
        return {}
    try:
        args = json.loads(call.arguments)
    except json.JSONDecodeError as e:
        raise InvalidToolArgumentsError(call.name) from e
    if not isinstance(args, dict):
        raise InvalidToolArgumentsError(call.name, "Tool arguments must be a JSON object")
    return args


def _error_result(tool_call_id: str, message: str) -> ToolResultMessage:
    return ToolResultMessage(tool_call_id=tool_call_id, content=json.dumps({"error": message}))


def strip_surrounding_quotes(content: str) -> str:
    """Remove one layer of matching quotes wrapping the whole reply."""
    trimmed = content.strip()
    match = _QUOTED.match(trimmed)
    if match:
        return match.group(2).strip()
    return trimmed
