"""Conversation message variants and tool-call models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union

from convo_agent.core.types import Role


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: str  # JSON-encoded object, exactly as the model produced it


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})


@dataclass(frozen=True, slots=True)
class SystemMessage:
    content: str

    @property
    def role(self) -> Role:
        return Role.SYSTEM


@dataclass(frozen=True, slots=True)
class UserMessage:
    content: str

    @property
    def role(self) -> Role:
        return Role.USER


@dataclass(frozen=True, slots=True)
class AssistantMessage:
    content: Optional[str]
    tool_calls: tuple[ToolCall, ...] = ()

    @property
    def role(self) -> Role:
        return Role.ASSISTANT


@dataclass(frozen=True, slots=True)
class ToolResultMessage:
    tool_call_id: str
    content: str

    @property
    def role(self) -> Role:
        return Role.TOOL


Message = Union[SystemMessage, UserMessage, AssistantMessage, ToolResultMessage]


@dataclass(frozen=True, slots=True)
class ChatResult:
    """Outcome of a tool-enabled completion.

    ``tool_calls`` is ``None`` when the model gave a final answer; an empty
    list is treated the same way.
    """

    content: Optional[str]
    tool_calls: Optional[list[ToolCall]] = None

    @property
    def pending(self) -> bool:
        return bool(self.tool_calls)


def message_from_role(role: str, content: str) -> Message:
    """Rebuild a plain-text message from a stored (role, content) pair."""
    match Role(role):
        case Role.SYSTEM:
            return SystemMessage(content)
        case Role.USER:
            return UserMessage(content)
        case Role.ASSISTANT:
            return AssistantMessage(content)
        case Role.TOOL:
            raise ValueError("tool results cannot be rebuilt without a tool_call_id")
