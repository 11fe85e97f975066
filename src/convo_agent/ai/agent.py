"""Conversation agent: one session's memory, served by a single worker task.

Every operation is queued and handled in arrival order by the agent's own
task, so a session never has more than one LLM call in flight. Different
sessions run independently.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from convo_agent.ai.client import AIClient
from convo_agent.ai.tool_runner import MAX_TOOL_ROUNDS, run_tool_loop
from convo_agent.ai.tools.base import Tool
from convo_agent.ai.tools.registry import ToolRegistry
from convo_agent.core.context import DEFAULT_MAX_MESSAGES, trim
from convo_agent.core.memory import Memory
from convo_agent.core.messages import AssistantMessage, Message, UserMessage
from convo_agent.core.types import ExitReason
from convo_agent.errors import AgentError, SessionCrashedError
from convo_agent.log import bind_session, get_logger

logger = get_logger(__name__)

# Must be longer than the transport budget, retries included (4 x 60s by default).
DEFAULT_CHAT_TIMEOUT = 245.0

ExitListener = Callable[["ConversationAgent", ExitReason, Optional[BaseException]], None]


@dataclass
class _Request:
    kind: str  # "chat" | "chat_with_tools" | "history" | "clear"
    future: asyncio.Future
    text: str = ""
    tools: Optional[ToolRegistry] = None


class ConversationAgent:
    """Single-worker actor owning one conversation."""

    def __init__(
        self,
        session_key: str,
        memory: Memory,
        ai_client: AIClient,
        tool_registry: Optional[ToolRegistry] = None,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        preserve_system_prompt: bool = True,
        max_tool_iterations: int = MAX_TOOL_ROUNDS,
        chat_timeout: float = DEFAULT_CHAT_TIMEOUT,
        keep_failed_turns: bool = True,
    ):
        self.session_key = session_key
        self._memory = memory
        self._ai_client = ai_client
        self._tool_registry = tool_registry or ToolRegistry()
        self._max_messages = max_messages
        self._preserve_system = preserve_system_prompt
        self._max_tool_iterations = max_tool_iterations
        self._chat_timeout = chat_timeout
        self._keep_failed_turns = keep_failed_turns

        self._queue: asyncio.Queue[_Request | None] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._exit_listeners: list[ExitListener] = []
        self.exit_reason: Optional[ExitReason] = None

    @property
    def system_prompt(self) -> str:
        return self._memory.system_prompt

    @property
    def alive(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_exit_listener(self, listener: ExitListener) -> None:
        self._exit_listeners.append(listener)

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError(f"Agent '{self.session_key}' already started")
        self._task = asyncio.create_task(self._run(), name=f"session:{self.session_key}")
        self._task.add_done_callback(self._on_task_done)
        logger.info("agent_started", session_key=self.session_key)

    async def stop(self) -> None:
        """Finish queued requests, then end the worker."""
        if not self.alive:
            return
        await self._queue.put(None)
        await asyncio.wait({self._task})

    # -- client API --

    async def chat(self, text: str) -> str:
        """Send a user message and return the assistant's reply."""
        return await self._call(_Request("chat", self._new_future(), text=text))

    async def chat_with_tools(self, text: str, tools: Optional[list[Tool]] = None) -> str:
        """Like :meth:`chat`, but let the model call tools before answering.

        ``tools`` overrides the agent's tool catalog for this call.
        """
        registry = ToolRegistry(tools) if tools is not None else None
        return await self._call(
            _Request("chat_with_tools", self._new_future(), text=text, tools=registry)
        )

    async def get_history(self) -> list[Message]:
        return await self._call(_Request("history", self._new_future()))

    async def clear_history(self) -> None:
        """Forget the conversation, keeping the system prompt."""
        await self._call(_Request("clear", self._new_future()))

    def _new_future(self) -> asyncio.Future:
        return asyncio.get_running_loop().create_future()

    async def _call(self, request: _Request) -> Any:
        if not self.alive:
            raise SessionCrashedError(self.session_key, "worker is not running")
        await self._queue.put(request)
        # On timeout the future is cancelled; the worker still finishes the request.
        return await asyncio.wait_for(request.future, timeout=self._chat_timeout)

    # -- worker --

    async def _run(self) -> None:
        bind_session(self.session_key)
        while True:
            request = await self._queue.get()
            if request is None:
                return
            try:
                result = await self._handle(request)
            except AgentError as e:
                _settle(request.future, error=e)
            except Exception as e:
                _settle(request.future, error=SessionCrashedError(self.session_key, repr(e)))
                raise
            else:
                _settle(request.future, result=result)

    async def _handle(self, request: _Request) -> Any:
        match request.kind:
            case "chat":
                return await self._handle_chat(request.text)
            case "chat_with_tools":
                return await self._handle_chat_with_tools(request.text, request.tools)
            case "history":
                return await self._memory.get_messages()
            case "clear":
                await self._memory.clear_history()
                logger.info("history_cleared", session_key=self.session_key)
                return None
            case _:
                raise ValueError(f"Unknown request kind: {request.kind}")

    async def _context_view(self) -> list[Message]:
        return trim(await self._memory.get_messages(), self._max_messages, self._preserve_system)

    async def _handle_chat(self, text: str) -> str:
        await self._memory.add_message(UserMessage(text))
        messages = await self._context_view()

        logger.debug("llm_chat", session_key=self.session_key, message_count=len(messages))
        start = time.monotonic()
        try:
            reply = await self._ai_client.chat(messages)
        except AgentError as e:
            await self._on_turn_failed(e)
            raise
        logger.debug("llm_chat_returned", elapsed_ms=round((time.monotonic() - start) * 1000))

        await self._memory.add_message(AssistantMessage(reply))
        return reply

    async def _handle_chat_with_tools(self, text: str, tools: Optional[ToolRegistry]) -> str:
        await self._memory.add_message(UserMessage(text))
        messages = await self._context_view()

        try:
            outcome = await run_tool_loop(
                self._ai_client,
                messages,
                tools if tools is not None else self._tool_registry,
                max_iterations=self._max_tool_iterations,
            )
        except AgentError as e:
            await self._on_turn_failed(e)
            raise

        # Only the final answer is kept; tool traffic stays in the loop.
        await self._memory.add_message(AssistantMessage(outcome.text))
        logger.info("tool_chat_completed", session_key=self.session_key, rounds=outcome.rounds)
        return outcome.text

    async def _on_turn_failed(self, error: AgentError) -> None:
        logger.error("llm_chat_failed", session_key=self.session_key, error=str(error))
        if not self._keep_failed_turns:
            await self._memory.rollback_last()

    def _on_task_done(self, task: asyncio.Task) -> None:
        error: Optional[BaseException] = None
        if task.cancelled():
            reason = ExitReason.SHUTDOWN
        elif task.exception() is not None:
            reason = ExitReason.CRASH
            error = task.exception()
        else:
            reason = ExitReason.NORMAL
        self.exit_reason = reason

        # Nobody will serve what is still queued.
        while not self._queue.empty():
            pending = self._queue.get_nowait()
            if pending is not None:
                _settle(pending.future, error=SessionCrashedError(self.session_key, str(reason)))

        if reason is ExitReason.CRASH:
            logger.error("agent_crashed", session_key=self.session_key, error=repr(error))
        else:
            logger.info("agent_stopped", session_key=self.session_key, reason=str(reason))

        for listener in self._exit_listeners:
            listener(self, reason, error)


def _settle(
    future: asyncio.Future, result: Any = None, error: Optional[BaseException] = None
) -> None:
    if future.done():  # caller gave up waiting
        return
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(result)
