"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from typing import Optional

from convo_agent.ai.agent import ConversationAgent
from convo_agent.ai.breaker import CircuitBreaker
from convo_agent.ai.client import (
    AIClient,
    AnthropicClient,
    ClaudeCodeClient,
    OpenAIClient,
    ScriptedClient,
)
from convo_agent.ai.tools.registry import ToolRegistry
from convo_agent.config import AppConfig
from convo_agent.core.memory import InMemoryMemory, Memory
from convo_agent.core.session import SessionManager
from convo_agent.log import get_logger
from convo_agent.storage.database import Database
from convo_agent.storage.memory import SqliteMemory
from convo_agent.storage.session_repo import SessionRepository

logger = get_logger(__name__)


class AgentApp:
    """Top-level application orchestrator."""

    def __init__(self, config: AppConfig):
        self.config = config
        self.db: Optional[Database] = None
        self.session_repo: Optional[SessionRepository] = None
        if config.storage.enabled:
            self.db = Database(config.storage.db_path)
            self.session_repo = SessionRepository(self.db)

        cb = config.circuit_breaker
        self.breaker = CircuitBreaker(
            failure_threshold=cb.failure_threshold,
            reset_timeout_ms=cb.reset_timeout_ms,
            success_threshold=cb.success_threshold,
        )
        self.ai_client = self._create_ai_client()
        self.tool_registry = ToolRegistry()
        self.session_manager = SessionManager(
            self._create_agent,
            default_system_prompt=config.ai.system_prompt,
            max_restarts=config.session.max_restarts,
            restart_window=config.session.restart_window_ms / 1000,
            repo=self.session_repo,
        )

    async def start(self) -> None:
        """Initialize and start all components."""
        # 1. Database
        if self.db is not None:
            await self.db.initialize()

        # 2. Tools
        self.tool_registry.discover_and_register()
        if self.config.ai.tools:
            self.tool_registry = self.tool_registry.subset(self.config.ai.tools)

        logger.info(
            "convo_agent_started",
            backend=self.config.ai.backend,
            model=self.ai_client.model_name,
            storage=self.db is not None,
            tools=[t.name for t in self.tool_registry.all_tools()],
        )

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        await self.session_manager.stop_all()
        if self.db is not None:
            await self.db.close()
        logger.info("convo_agent_stopped")

    async def _create_agent(self, session_key: str, system_prompt: str) -> ConversationAgent:
        memory: Memory
        if self.session_repo is not None:
            memory = await SqliteMemory.open(
                self.session_repo,
                session_key,
                system_prompt,
                max_messages=self.config.context.max_messages,
            )
        else:
            memory = InMemoryMemory(system_prompt)

        return ConversationAgent(
            session_key,
            memory,
            self.ai_client,
            tool_registry=self.tool_registry,
            max_messages=self.config.context.max_messages,
            preserve_system_prompt=self.config.context.preserve_system_prompt,
            max_tool_iterations=self.config.session.max_tool_iterations,
            chat_timeout=self.config.session.chat_timeout_ms / 1000,
            keep_failed_turns=self.config.session.keep_failed_turns,
        )

    def _create_ai_client(self) -> AIClient:
        """Create the AI client for the configured backend, sharing the breaker."""
        ai = self.config.ai
        options = {"model": ai.model, "max_tokens": ai.max_tokens, "temperature": ai.temperature}
        match ai.backend:
            case "anthropic":
                if not self.config.anthropic:
                    raise ValueError("'anthropic' backend but no 'anthropic' section in config")
                return AnthropicClient(self.config.anthropic, self.breaker, **options)
            case "openai":
                if not self.config.openai:
                    raise ValueError("'openai' backend but no 'openai' section in config")
                return OpenAIClient(self.config.openai, self.breaker, **options)
            case "claude_code":
                return ClaudeCodeClient(self.config.claude_code, self.breaker, **options)
            case "stub":
                return ScriptedClient(self.config.stub.replies, self.breaker, **options)
            case _:
                raise ValueError(f"Unknown AI backend: {ai.backend}")
