"""Tool interface for model tool calling."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from convo_agent.core.messages import ToolDefinition


class Tool(ABC):
    """A capability the model may invoke by name during a tool loop."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Name the model uses in its tool calls; unique per registry."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @property
    @abstractmethod
    def input_schema(self) -> dict[str, Any]:
        """JSON Schema of the keyword arguments ``execute`` accepts."""
        ...

    @abstractmethod
    async def execute(self, **kwargs: Any) -> str:
        """Run with the decoded call arguments and return the result text.

        Exceptions are reported back to the model as an error result.
        """
        ...

    def definition(self) -> ToolDefinition:
        """Provider-neutral description sent along with each request."""
        return ToolDefinition(self.name, self.description, self.input_schema)
