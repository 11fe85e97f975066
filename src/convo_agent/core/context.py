"""Context window trimming for conversation histories.

Keeps the message list sent to the model (and, for durable sessions, the
stored history) bounded. Trimming only ever drops the oldest messages; the
leading system prompt is pinned when ``preserve_system`` is set.
"""

from __future__ import annotations

from typing import Sequence, TypeVar

from convo_agent.core.messages import SystemMessage

DEFAULT_MAX_MESSAGES = 20

T = TypeVar("T")


def trim(
    messages: Sequence[T],
    max_messages: int = DEFAULT_MAX_MESSAGES,
    preserve_system: bool = True,
) -> list[T]:
    """Return at most ``max_messages`` messages, newest last.

    If ``preserve_system`` is set and the first message is a system message,
    it is kept and followed by the newest ``max_messages - 1`` messages.
    Trimming an already trimmed list with the same arguments is a no-op.
    """
    if max_messages < 1:
        raise ValueError("max_messages must be at least 1")

    if len(messages) <= max_messages:
        return list(messages)

    if preserve_system and isinstance(messages[0], SystemMessage):
        keep = max_messages - 1
        tail = list(messages[len(messages) - keep:]) if keep else []
        return [messages[0], *tail]

    return list(messages[-max_messages:])


def trim_history(messages: Sequence[T], max_messages: int = DEFAULT_MAX_MESSAGES) -> list[T]:
    """Keep the newest ``max_messages`` items of a history with no system prompt."""
    if max_messages < 1:
        raise ValueError("max_messages must be at least 1")
    return list(messages[-max_messages:])


def needs_trimming(messages: Sequence[object], max_messages: int = DEFAULT_MAX_MESSAGES) -> bool:
    return len(messages) > max_messages
