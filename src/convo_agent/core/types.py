"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class BreakerState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class ExitReason(StrEnum):
    """Why a session worker stopped."""

    NORMAL = "normal"  # stop() was requested
    SHUTDOWN = "shutdown"  # task cancelled, e.g. event loop teardown
    CRASH = "crash"  # unexpected exception inside the worker
