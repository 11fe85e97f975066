"""SQLite-backed conversation memory.

Sessions survive process restarts: opening a memory for an existing key
reloads its stored system prompt and messages. Every append prunes the
stored history to the context window, so storage stays bounded too.
"""

from __future__ import annotations

from typing import Optional

from convo_agent.core.context import DEFAULT_MAX_MESSAGES
from convo_agent.core.memory import Memory
from convo_agent.core.messages import (
    AssistantMessage,
    Message,
    SystemMessage,
    UserMessage,
    message_from_role,
)
from convo_agent.storage.models import SessionRecord
from convo_agent.storage.session_repo import SessionRepository


class SqliteMemory(Memory):
    """Durable memory for one session key."""

    def __init__(
        self,
        repo: SessionRepository,
        session: SessionRecord,
        max_messages: int = DEFAULT_MAX_MESSAGES,
    ):
        self._repo = repo
        self._session = session
        self._max_messages = max_messages
        self._last_message_id: Optional[int] = None

    @classmethod
    async def open(
        cls,
        repo: SessionRepository,
        session_key: str,
        system_prompt: str,
        max_messages: int = DEFAULT_MAX_MESSAGES,
    ) -> SqliteMemory:
        session = await repo.find_or_create_session(session_key, system_prompt)
        return cls(repo, session, max_messages)

    @property
    def session_key(self) -> str:
        return self._session.session_key

    @property
    def system_prompt(self) -> str:
        return self._session.system_prompt

    async def add_message(self, message: Message) -> None:
        if isinstance(message, AssistantMessage) and message.tool_calls:
            raise TypeError("assistant tool requests are not persisted")
        if not isinstance(message, (UserMessage, AssistantMessage)):
            raise TypeError(f"{type(message).__name__} is not persisted")

        self._last_message_id = await self._repo.append_message(
            self._session.id, str(message.role), message.content or "", self._max_messages
        )

    async def get_messages(self) -> list[Message]:
        records = await self._repo.get_messages(self._session.id)
        head: list[Message] = [SystemMessage(self.system_prompt)] if self.system_prompt else []
        return head + [message_from_role(r.role, r.content) for r in records]

    async def message_count(self) -> int:
        return await self._repo.count_messages(self._session.id)

    async def rollback_last(self) -> None:
        if self._last_message_id is not None:
            await self._repo.delete_message(self._last_message_id)
            self._last_message_id = None

    async def clear_history(self) -> None:
        await self._repo.clear_messages(self._session.id)
        self._last_message_id = None
