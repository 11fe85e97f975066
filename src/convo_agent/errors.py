"""Error taxonomy for the agent core."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from convo_agent.core.messages import Message


class AgentError(Exception):
    """Base class for every failure produced by the agent core."""


class TransportError(AgentError):
    """The LLM backend could not produce a completion."""


class CircuitOpenError(TransportError):
    """Rejected by the circuit breaker without contacting the backend."""

    def __init__(self, retry_after: float = 0.0):
        super().__init__(f"Circuit open, retry in {retry_after:.1f}s")
        self.retry_after = retry_after


class ToolNotFoundError(AgentError):
    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class InvalidToolArgumentsError(AgentError):
    def __init__(self, name: str, detail: str = "Invalid arguments JSON"):
        super().__init__(detail)
        self.name = name


class MaxIterationsExceededError(AgentError):
    """The model kept requesting tools past the iteration cap.

    ``messages`` holds the conversation as it stood when the loop gave up.
    """

    def __init__(self, max_iterations: int, messages: Optional[list[Message]] = None):
        super().__init__(f"Tool loop exceeded {max_iterations} iterations")
        self.max_iterations = max_iterations
        self.messages = list(messages or [])


class SessionNotFoundError(AgentError):
    def __init__(self, session_key: str):
        super().__init__(f"No live or stored session for key '{session_key}'")
        self.session_key = session_key


class SessionCrashedError(AgentError):
    """The session worker died before answering."""

    def __init__(self, session_key: str, reason: str = ""):
        detail = f": {reason}" if reason else ""
        super().__init__(f"Session '{session_key}' worker crashed{detail}")
        self.session_key = session_key
