"""Conversation memory interface and the in-process implementation."""

from __future__ import annotations

from abc import ABC, abstractmethod

from convo_agent.core.messages import Message, SystemMessage


class Memory(ABC):
    """Ordered history of one session, headed by its system prompt."""

    @property
    @abstractmethod
    def system_prompt(self) -> str:
        ...

    @abstractmethod
    async def add_message(self, message: Message) -> None:
        ...

    @abstractmethod
    async def get_messages(self) -> list[Message]:
        """System prompt (when set) followed by the history, oldest first."""
        ...

    @abstractmethod
    async def message_count(self) -> int:
        """Number of history messages, not counting the system prompt."""
        ...

    @abstractmethod
    async def rollback_last(self) -> None:
        """Drop the most recently added message."""
        ...

    @abstractmethod
    async def clear_history(self) -> None:
        """Forget the history, keeping the system prompt."""
        ...


class InMemoryMemory(Memory):
    """Process-local memory. Lost when the session worker is restarted."""

    def __init__(self, system_prompt: str):
        self._system_prompt = system_prompt
        self._messages: list[Message] = []

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    async def add_message(self, message: Message) -> None:
        self._messages.append(message)

    async def get_messages(self) -> list[Message]:
        head: list[Message] = [SystemMessage(self._system_prompt)] if self._system_prompt else []
        return head + self._messages

    async def message_count(self) -> int:
        return len(self._messages)

    async def rollback_last(self) -> None:
        if self._messages:
            self._messages.pop()

    async def clear_history(self) -> None:
        self._messages = []
