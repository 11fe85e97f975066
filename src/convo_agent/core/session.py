"""Session manager mapping session keys to live conversation agents."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from convo_agent.core.types import ExitReason
from convo_agent.errors import SessionCrashedError, SessionNotFoundError
from convo_agent.log import get_logger

if TYPE_CHECKING:
    from convo_agent.ai.agent import ConversationAgent
    from convo_agent.storage.session_repo import SessionRepository

logger = get_logger(__name__)

# (session_key, system_prompt) -> agent that has not been started yet
AgentFactory = Callable[[str, str], Awaitable["ConversationAgent"]]

DEFAULT_MAX_RESTARTS = 3
DEFAULT_RESTART_WINDOW = 60.0  # seconds


class SessionManager:
    """Registry and supervisor of per-session agents.

    Agents that crash are restarted in the background, at most
    ``max_restarts`` times per key within any ``restart_window`` seconds.
    With a durable store the restarted agent reloads its history; otherwise
    it starts from an empty conversation. A key that exhausts its restarts is
    forgotten until a caller creates it again.
    """

    def __init__(
        self,
        agent_factory: AgentFactory,
        default_system_prompt: str = "",
        max_restarts: int = DEFAULT_MAX_RESTARTS,
        repo: Optional[SessionRepository] = None,
        restart_window: float = DEFAULT_RESTART_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._factory = agent_factory
        self._default_prompt = default_system_prompt
        self._max_restarts = max_restarts
        self._repo = repo
        self._restart_window = restart_window
        self._clock = clock

        self._agents: dict[str, ConversationAgent] = {}
        self._prompts: dict[str, str] = {}
        self._restart_times: dict[str, list[float]] = {}
        self._restart_tasks: dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()

    async def get_or_create(
        self, session_key: str, system_prompt: Optional[str] = None
    ) -> ConversationAgent:
        """Return the live agent for ``session_key``, starting one if needed.

        ``system_prompt`` only applies to new sessions.
        """
        await self._wait_for_restart(session_key)
        async with self._lock:
            agent = self._agents.get(session_key)
            if agent is not None and agent.alive:
                return agent
            prompt = self._prompts.get(session_key)
            if prompt is None:
                prompt = self._default_prompt if system_prompt is None else system_prompt
            return await self._spawn(session_key, prompt)

    async def get(self, session_key: str) -> ConversationAgent:
        """Return the live agent, restoring it from storage if it has a record."""
        await self._wait_for_restart(session_key)
        agent = self._agents.get(session_key)
        if agent is not None and agent.alive:
            return agent
        if agent is not None or session_key in self._prompts:
            return await self.get_or_create(session_key)
        if self._repo is not None and await self._repo.session_exists(session_key):
            logger.info("session_restoring", session_key=session_key)
            return await self.get_or_create(session_key)
        raise SessionNotFoundError(session_key)

    async def send(self, session_key: str, text: str, use_tools: bool = False) -> str:
        """Send ``text`` to a session, retrying once if its agent crashed."""
        agent = await self.get_or_create(session_key)
        try:
            return await self._dispatch(agent, text, use_tools)
        except SessionCrashedError as e:
            logger.warning("session_retry_after_crash", session_key=session_key, error=str(e))
            agent = await self.get_or_create(session_key)
            return await self._dispatch(agent, text, use_tools)

    async def reset_session(self, session_key: str) -> None:
        """Clear a session's history, keeping its system prompt."""
        agent = await self.get(session_key)
        await agent.clear_history()
        logger.info("session_reset", session_key=session_key)

    async def terminate(self, session_key: str) -> bool:
        """Stop a session's agent. Returns False if it was not running."""
        task = self._restart_tasks.pop(session_key, None)
        if task is not None:
            task.cancel()
        self._forget(session_key)
        agent = self._agents.pop(session_key, None)
        if agent is None:
            return False
        await agent.stop()
        logger.info("session_terminated", session_key=session_key)
        return True

    async def stop_all(self) -> None:
        for task in self._restart_tasks.values():
            task.cancel()
        self._restart_tasks.clear()
        for key in list(self._agents):
            await self.terminate(key)

    def active_keys(self) -> list[str]:
        return sorted(key for key, agent in self._agents.items() if agent.alive)

    async def _dispatch(self, agent: ConversationAgent, text: str, use_tools: bool) -> str:
        if use_tools:
            return await agent.chat_with_tools(text)
        return await agent.chat(text)

    async def _spawn(self, session_key: str, system_prompt: str) -> ConversationAgent:
        agent = await self._factory(session_key, system_prompt)
        agent.add_exit_listener(self._on_agent_exit)
        agent.start()
        self._agents[session_key] = agent
        self._prompts[session_key] = agent.system_prompt
        logger.info("session_started", session_key=session_key)
        return agent

    async def _wait_for_restart(self, session_key: str) -> None:
        task = self._restart_tasks.get(session_key)
        if task is not None:
            await asyncio.wait({task})

    def _on_agent_exit(
        self, agent: ConversationAgent, reason: ExitReason, error: Optional[BaseException]
    ) -> None:
        key = agent.session_key
        if self._agents.get(key) is not agent:
            return  # already replaced or terminated
        del self._agents[key]
        if reason is not ExitReason.CRASH:
            self._forget(key)
            return

        now = self._clock()
        recent = [t for t in self._restart_times.get(key, []) if now - t < self._restart_window]
        if len(recent) >= self._max_restarts:
            logger.error(
                "session_restart_limit_reached",
                session_key=key,
                max_restarts=self._max_restarts,
                window_s=self._restart_window,
            )
            self._forget(key)
            return
        recent.append(now)
        self._restart_times[key] = recent
        logger.warning(
            "session_restarting", session_key=key, attempt=len(recent), error=repr(error)
        )
        self._restart_tasks[key] = asyncio.create_task(self._restart(key))

    def _forget(self, session_key: str) -> None:
        self._prompts.pop(session_key, None)
        self._restart_times.pop(session_key, None)

    async def _restart(self, session_key: str) -> None:
        try:
            async with self._lock:
                agent = self._agents.get(session_key)
                if agent is None or not agent.alive:
                    await self._spawn(session_key, self._prompts.get(session_key, self._default_prompt))
        except Exception as e:
            logger.error("session_restart_failed", session_key=session_key, error=str(e))
        finally:
            if self._restart_tasks.get(session_key) is asyncio.current_task():
                del self._restart_tasks[session_key]
