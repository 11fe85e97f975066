"""
Tests for the LLM transport clients and message conversion.
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from convo_agent.ai.breaker import CircuitBreaker
from convo_agent.ai.client import (
    AnthropicClient,
    ClaudeCodeClient,
    OpenAIClient,
    ScriptedClient,
    build_tool_system_prompt,
    parse_anthropic_response,
    parse_tool_calls,
)
from convo_agent.ai.conversation import (
    build_anthropic_messages,
    build_openai_messages,
    build_prompt,
)
from convo_agent.config import AnthropicConfig, OpenAIConfig
from convo_agent.core.messages import (
    AssistantMessage,
    ChatResult,
    SystemMessage,
    ToolCall,
    ToolDefinition,
    ToolResultMessage,
    UserMessage,
)
from convo_agent.core.types import BreakerState
from convo_agent.errors import CircuitOpenError, TransportError

TOOL_CONVERSATION = [
    SystemMessage("sys"),
    UserMessage("what time is it?"),
    AssistantMessage(
        content="checking",
        tool_calls=(ToolCall("t1", "clock", '{"format":"iso8601"}'), ToolCall("t2", "clock", "{}")),
    ),
    ToolResultMessage("t1", "noon"),
    ToolResultMessage("t2", "12:00"),
]


class TestConversation:
    def test_anthropic_groups_tool_results(self):
        system, messages = build_anthropic_messages(TOOL_CONVERSATION)
        assert system == "sys"
        assert [m["role"] for m in messages] == ["user", "assistant", "user"]

        blocks = messages[1]["content"]
        assert blocks[0] == {"type": "text", "text": "checking"}
        assert blocks[1]["input"] == {"format": "iso8601"}
        assert [b["tool_use_id"] for b in messages[2]["content"]] == ["t1", "t2"]

    def test_openai_keeps_one_message_per_result(self):
        messages = build_openai_messages(TOOL_CONVERSATION)
        assert [m["role"] for m in messages] == ["system", "user", "assistant", "tool", "tool"]
        assert messages[2]["tool_calls"][0]["function"]["arguments"] == '{"format":"iso8601"}'
        assert messages[4]["tool_call_id"] == "t2"

    def test_build_prompt(self):
        prompt = build_prompt("sys", TOOL_CONVERSATION[1:])
        assert prompt.startswith("[System Instructions]\nsys")
        assert "[Tool Call: clock (t1)]" in prompt
        assert "[Tool Result (t2)]\n12:00" in prompt


class TestParseToolCalls:
    def test_plain_text(self):
        result = parse_tool_calls("  just an answer ")
        assert result == ChatResult(content="just an answer", tool_calls=None)

    def test_extracts_calls(self):
        text = 'Let me check.\n<tool_call>{"tool": "clock", "input": {"format": "date"}}</tool_call>'
        result = parse_tool_calls(text)
        assert result.pending
        assert result.content == "Let me check."
        (call,) = result.tool_calls
        assert call.name == "clock"
        assert json.loads(call.arguments) == {"format": "date"}
        assert call.id.startswith("call_")

    def test_malformed_block_kept_for_error_reporting(self):
        result = parse_tool_calls("<tool_call>{oops}</tool_call>")
        (call,) = result.tool_calls
        assert call.name == ""
        assert result.content is None

    def test_tool_prompt_lists_tools(self):
        prompt = build_tool_system_prompt([ToolDefinition("clock", "Tells time")])
        assert "### clock" in prompt
        assert build_tool_system_prompt([]) == ""


class TestAnthropicClient:
    def _response(self, blocks, stop_reason="end_turn"):
        return SimpleNamespace(
            content=blocks,
            stop_reason=stop_reason,
            usage=SimpleNamespace(input_tokens=10, output_tokens=5),
        )

    def test_parse_tool_use(self):
        response = self._response(
            [
                SimpleNamespace(type="text", text="Looking"),
                SimpleNamespace(type="tool_use", id="tu_1", name="clock", input={"format": "date"}),
            ],
            stop_reason="tool_use",
        )
        result = parse_anthropic_response(response)
        assert result.content == "Looking"
        assert result.tool_calls == [ToolCall("tu_1", "clock", '{"format": "date"}')]

    def test_parse_final_text(self):
        response = self._response([SimpleNamespace(type="text", text="Hi")])
        assert parse_anthropic_response(response) == ChatResult(content="Hi", tool_calls=None)

    @pytest.mark.asyncio
    async def test_chat_sends_system_separately(self):
        client = AnthropicClient(AnthropicConfig(api_key="test"), model="claude-test")
        client._client = MagicMock()
        client._client.messages.create = AsyncMock(
            return_value=self._response([SimpleNamespace(type="text", text="Hello")])
        )

        reply = await client.chat([SystemMessage("Be helpful"), UserMessage("Hi")])

        assert reply == "Hello"
        kwargs = client._client.messages.create.call_args.kwargs
        assert kwargs["system"] == "Be helpful"
        assert kwargs["model"] == "claude-test"
        assert kwargs["messages"] == [{"role": "user", "content": "Hi"}]


class TestOpenAIClient:
    @pytest.mark.asyncio
    async def test_tool_calls_mapped(self):
        client = OpenAIClient(OpenAIConfig(api_key="test"))
        tool_call = SimpleNamespace(
            id="c1", function=SimpleNamespace(name="clock", arguments='{"format":"date"}')
        )
        response = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=None, tool_calls=[tool_call]))]
        )
        client._client = MagicMock()
        client._client.chat.completions.create = AsyncMock(return_value=response)

        result = await client.chat_with_tools(
            [UserMessage("time?")], [ToolDefinition("clock", "Tells time")]
        )

        assert result.tool_calls == [ToolCall("c1", "clock", '{"format":"date"}')]
        sent_tools = client._client.chat.completions.create.call_args.kwargs["tools"]
        assert sent_tools[0]["function"]["name"] == "clock"

    @pytest.mark.asyncio
    async def test_empty_choices_is_transport_error(self):
        client = OpenAIClient(OpenAIConfig(api_key="test"))
        client._client = MagicMock()
        client._client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(choices=[]))
        with pytest.raises(TransportError):
            await client.chat([UserMessage("hi")])


class TestClaudeCodeParsing:
    def test_result_object(self):
        assert ClaudeCodeClient._parse_response('{"result": "hi", "is_error": false}') == "hi"

    def test_error_object(self):
        with pytest.raises(TransportError):
            ClaudeCodeClient._parse_response('{"result": "bad", "is_error": true}')

    def test_non_json_passthrough(self):
        assert ClaudeCodeClient._parse_response("plain output") == "plain output"


class TestScriptedClient:
    @pytest.mark.asyncio
    async def test_replays_then_echoes(self):
        client = ScriptedClient(["first"])
        assert await client.chat([UserMessage("a")]) == "first"
        assert await client.chat([UserMessage("b")]) == "Echo: b"
        assert len(client.calls) == 2

    @pytest.mark.asyncio
    async def test_failures_feed_shared_breaker(self):
        breaker = CircuitBreaker(failure_threshold=2)
        client = ScriptedClient([TransportError("x"), RuntimeError("y")], breaker=breaker)

        with pytest.raises(TransportError):
            await client.chat([UserMessage("a")])
        with pytest.raises(TransportError):
            await client.chat([UserMessage("a")])
        assert breaker.state == BreakerState.OPEN

        with pytest.raises(CircuitOpenError):
            await client.chat([UserMessage("a")])
        assert len(client.calls) == 2
