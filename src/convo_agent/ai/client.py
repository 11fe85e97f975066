"""AI client abstraction with Anthropic, OpenAI, Claude Code CLI and stub backends."""

from __future__ import annotations

import asyncio
import json
import os
import re
import secrets
import shutil
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar, Union

import anthropic
import openai

from convo_agent.ai.breaker import CircuitBreaker
from convo_agent.ai.conversation import (
    anthropic_tools,
    build_anthropic_messages,
    build_openai_messages,
    build_prompt,
    openai_tools,
    split_system,
)
from convo_agent.config import AnthropicConfig, ClaudeCodeConfig, OpenAIConfig
from convo_agent.core.messages import ChatResult, Message, ToolCall, ToolDefinition, UserMessage
from convo_agent.errors import TransportError
from convo_agent.log import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-20250514"
DEFAULT_OPENAI_MODEL = "gpt-4o"


class AIClient(ABC):
    """Abstract base class for AI backends.

    When a breaker is attached, every call runs through it, so failures of
    all sessions sharing this client count against one circuit.
    """

    def __init__(
        self,
        breaker: Optional[CircuitBreaker] = None,
        model: str = "",
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        self._breaker = breaker
        self.model_name = model
        self._max_tokens = max_tokens
        self._temperature = temperature

    @property
    def breaker(self) -> Optional[CircuitBreaker]:
        return self._breaker

    async def chat(self, messages: list[Message], **options: Any) -> str:
        """Send a conversation and return the assistant's text reply."""
        return await self._guarded(lambda: self._chat(messages, options))

    async def chat_with_tools(
        self, messages: list[Message], tools: list[ToolDefinition], **options: Any
    ) -> ChatResult:
        """Send a conversation with a tool catalog; the reply may request tool calls."""
        return await self._guarded(lambda: self._chat_with_tools(messages, tools, options))

    async def _guarded(self, work: Callable[[], Awaitable[T]]) -> T:
        if self._breaker is None:
            return await work()
        return await self._breaker.call(work)

    def _option(self, options: dict[str, Any], key: str, default: Any) -> Any:
        value = options.get(key)
        return default if value is None else value

    @abstractmethod
    async def _chat(self, messages: list[Message], options: dict[str, Any]) -> str:
        ...

    @abstractmethod
    async def _chat_with_tools(
        self, messages: list[Message], tools: list[ToolDefinition], options: dict[str, Any]
    ) -> ChatResult:
        ...


class AnthropicClient(AIClient):
    """Anthropic API backend using the official SDK."""

    def __init__(self, config: AnthropicConfig, breaker: Optional[CircuitBreaker] = None, **kwargs: Any):
        super().__init__(breaker, **kwargs)
        self.model_name = self.model_name or DEFAULT_ANTHROPIC_MODEL
        self._client = anthropic.AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )

    async def _create(self, messages: list[Message], options: dict[str, Any], tools: list[ToolDefinition] | None):
        system, api_messages = build_anthropic_messages(messages)
        model = self._option(options, "model", self.model_name)
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": self._option(options, "max_tokens", self._max_tokens),
            "messages": api_messages,
            "temperature": self._option(options, "temperature", self._temperature),
        }
        system = self._option(options, "system_prompt", system)
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = anthropic_tools(tools)

        logger.debug("api_request", backend="anthropic", model=model, message_count=len(api_messages))
        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APIError as e:
            logger.error("api_error", backend="anthropic", error=str(e))
            raise TransportError(f"Anthropic API error: {e}") from e

        logger.debug(
            "api_response",
            backend="anthropic",
            model=model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
        )
        return response

    async def _chat(self, messages: list[Message], options: dict[str, Any]) -> str:
        response = await self._create(messages, options, tools=None)
        return "\n".join(b.text for b in response.content if b.type == "text")

    async def _chat_with_tools(
        self, messages: list[Message], tools: list[ToolDefinition], options: dict[str, Any]
    ) -> ChatResult:
        response = await self._create(messages, options, tools=tools)
        return parse_anthropic_response(response)


def parse_anthropic_response(response: Any) -> ChatResult:
    """Map an Anthropic ``Message`` onto a :class:`ChatResult`."""
    text = "\n".join(b.text for b in response.content if b.type == "text")
    tool_use_blocks = [b for b in response.content if b.type == "tool_use"]

    if response.stop_reason == "tool_use" and tool_use_blocks:
        calls = [
            ToolCall(id=b.id, name=b.name, arguments=json.dumps(b.input))
            for b in tool_use_blocks
        ]
        return ChatResult(content=text or None, tool_calls=calls)
    return ChatResult(content=text, tool_calls=None)


class OpenAIClient(AIClient):
    """OpenAI-compatible chat completions backend."""

    def __init__(self, config: OpenAIConfig, breaker: Optional[CircuitBreaker] = None, **kwargs: Any):
        super().__init__(breaker, **kwargs)
        self.model_name = self.model_name or DEFAULT_OPENAI_MODEL
        self._client = openai.AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )

    async def _complete(self, messages: list[Message], options: dict[str, Any], tools: list[ToolDefinition] | None):
        model = self._option(options, "model", self.model_name)
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": build_openai_messages(messages),
            "max_tokens": self._option(options, "max_tokens", self._max_tokens),
            "temperature": self._option(options, "temperature", self._temperature),
        }
        if tools:
            kwargs["tools"] = openai_tools(tools)

        logger.debug("api_request", backend="openai", model=model, message_count=len(messages))
        try:
            response = await self._client.chat.completions.create(**kwargs)
        except openai.OpenAIError as e:
            logger.error("api_error", backend="openai", error=str(e))
            raise TransportError(f"OpenAI API error: {e}") from e

        if not response.choices:
            raise TransportError("OpenAI API returned no choices")
        return response.choices[0].message

    async def _chat(self, messages: list[Message], options: dict[str, Any]) -> str:
        message = await self._complete(messages, options, tools=None)
        return message.content or ""

    async def _chat_with_tools(
        self, messages: list[Message], tools: list[ToolDefinition], options: dict[str, Any]
    ) -> ChatResult:
        message = await self._complete(messages, options, tools=tools)
        if message.tool_calls:
            calls = [
                ToolCall(id=tc.id, name=tc.function.name, arguments=tc.function.arguments or "{}")
                for tc in message.tool_calls
            ]
            return ChatResult(content=message.content, tool_calls=calls)
        return ChatResult(content=message.content, tool_calls=None)


TOOL_CALL_PATTERN = re.compile(
    r"<tool_call>\s*(\{.*?\})\s*</tool_call>",
    re.DOTALL,
)


def build_tool_system_prompt(tools: list[ToolDefinition]) -> str:
    """Describe the tool catalog for backends without native tool calling."""
    if not tools:
        return ""

    catalog = "\n".join(
        f"### {t.name}\n{t.description}\nJSON schema: {json.dumps(t.parameters, sort_keys=True)}"
        for t in tools
    )
    return (
        "\n\n[Tools]\n"
        "To call a tool, reply with one block per call:\n"
        '<tool_call>{"tool": "<name>", "input": {...}}</tool_call>\n'
        "Results come back as [Tool Result (<id>)] sections in the next prompt. "
        "Reply without <tool_call> blocks once you can answer.\n\n"
        f"{catalog}"
    )


def parse_tool_calls(text: str) -> ChatResult:
    """Extract ``<tool_call>`` blocks from a plain-text reply.

    A block that is not valid JSON is still returned as a call, with the raw
    text as its arguments, so the tool loop reports it back to the model.
    """
    raw_calls = TOOL_CALL_PATTERN.findall(text)
    if not raw_calls:
        return ChatResult(content=text.strip(), tool_calls=None)

    calls: list[ToolCall] = []
    for raw in raw_calls:
        call_id = "call_" + secrets.token_hex(12)
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            calls.append(ToolCall(id=call_id, name="", arguments=raw))
            continue
        calls.append(
            ToolCall(
                id=call_id,
                name=str(data.get("tool", "")),
                arguments=json.dumps(data.get("input", {})),
            )
        )

    content = TOOL_CALL_PATTERN.sub("", text).strip()
    return ChatResult(content=content or None, tool_calls=calls)


class ClaudeCodeClient(AIClient):
    """Backend that shells out to the ``claude`` CLI in print mode.

    The CLI has no native tool-calling channel here, so the catalog is
    described in the prompt and calls are parsed from ``<tool_call>`` blocks.
    """

    def __init__(self, config: ClaudeCodeConfig, breaker: Optional[CircuitBreaker] = None, **kwargs: Any):
        super().__init__(breaker, **kwargs)
        self._cli_path = shutil.which(config.cli_path) or config.cli_path
        self._timeout = config.timeout
        self._allowed_tools = config.allowed_tools
        self.model_name = self.model_name or "claude-code"

    async def _chat(self, messages: list[Message], options: dict[str, Any]) -> str:
        system, turns = split_system(messages)
        return await self._run(build_prompt(system, turns))

    async def _chat_with_tools(
        self, messages: list[Message], tools: list[ToolDefinition], options: dict[str, Any]
    ) -> ChatResult:
        system, turns = split_system(messages)
        output = await self._run(build_prompt(system + build_tool_system_prompt(tools), turns))
        return parse_tool_calls(output)

    def _command(self) -> list[str]:
        cmd = [self._cli_path, "-p", "--output-format", "json"]
        for name in self._allowed_tools:
            cmd += ["--allowedTools", name]
        return cmd

    async def _run(self, prompt: str) -> str:
        # The prompt goes through stdin; argv length limits would cut long histories.
        env = dict(os.environ)
        env.pop("ANTHROPIC_API_KEY", None)  # CLI must use its own login

        logger.debug("cli_request", backend="claude_code", prompt_chars=len(prompt))
        try:
            proc = await asyncio.create_subprocess_exec(
                *self._command(),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except FileNotFoundError as e:
            raise TransportError(f"claude CLI not found: {self._cli_path}") from e

        try:
            out, err = await asyncio.wait_for(proc.communicate(prompt.encode("utf-8")), self._timeout)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise TransportError(f"claude CLI gave no answer within {self._timeout}s") from e

        output = out.decode("utf-8", errors="replace").strip()
        if proc.returncode != 0:
            detail = err.decode("utf-8", errors="replace").strip() or output or "(no output)"
            logger.error("cli_failed", backend="claude_code", returncode=proc.returncode)
            raise TransportError(f"claude CLI exited with {proc.returncode}: {detail[:500]}")

        return self._parse_response(output)

    @staticmethod
    def _parse_response(output: str) -> str:
        """Extract the answer from ``--output-format json`` output.

        Non-JSON output is returned unchanged.
        """
        try:
            data = json.loads(output)
        except json.JSONDecodeError:
            return output

        if isinstance(data, list):  # stream of events; the last result wins
            results = [d for d in data if isinstance(d, dict) and d.get("type") == "result"]
            if not results:
                return output
            data = results[-1]
        if not isinstance(data, dict):
            return output
        if data.get("is_error"):
            raise TransportError(f"claude CLI reported an error: {data.get('result', '')}")
        return str(data.get("result", ""))


ScriptedReply = Union[str, ChatResult, Exception]


class ScriptedClient(AIClient):
    """Deterministic backend for tests and offline runs.

    Replays ``replies`` in order, one per call. A string answers ``chat`` (and
    is wrapped as a final :class:`ChatResult` for ``chat_with_tools``), a
    :class:`ChatResult` answers ``chat_with_tools``, and an exception is
    raised. Once the script is exhausted it echoes the last user message.
    Every request is recorded in ``calls``.
    """

    def __init__(
        self,
        replies: Iterable[ScriptedReply] = (),
        breaker: Optional[CircuitBreaker] = None,
        **kwargs: Any,
    ):
        super().__init__(breaker, **kwargs)
        self.model_name = self.model_name or "stub"
        self._replies: list[ScriptedReply] = list(replies)
        self.calls: list[list[Message]] = []

    def script(self, *replies: ScriptedReply) -> None:
        self._replies.extend(replies)

    def _next(self, messages: list[Message]) -> ScriptedReply:
        self.calls.append(list(messages))
        if self._replies:
            return self._replies.pop(0)
        last_user = next((m.content for m in reversed(messages) if isinstance(m, UserMessage)), "")
        return f"Echo: {last_user}"

    async def _chat(self, messages: list[Message], options: dict[str, Any]) -> str:
        reply = self._next(messages)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, ChatResult):
            return reply.content or ""
        return reply

    async def _chat_with_tools(
        self, messages: list[Message], tools: list[ToolDefinition], options: dict[str, Any]
    ) -> ChatResult:
        reply = self._next(messages)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, ChatResult):
            return reply
        return ChatResult(content=reply, tool_calls=None)
