"""Name-indexed catalog of the tools a session may call."""

from __future__ import annotations

from typing import Iterable, Optional

from convo_agent.ai.tools.base import Tool
from convo_agent.core.messages import ToolDefinition
from convo_agent.log import get_logger

logger = get_logger(__name__)


class ToolRegistry:
    """Registry of available tools. Names are unique."""

    def __init__(self, tools: Optional[Iterable[Tool]] = None):
        self._tools: dict[str, Tool] = {}
        for tool in tools or ():
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool
        logger.debug("tool_registered", tool_name=tool.name)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def get_tools_by_names(self, names: list[str]) -> list[Tool]:
        """Get a subset of tools by name list."""
        return [self._tools[n] for n in names if n in self._tools]

    def subset(self, names: list[str]) -> ToolRegistry:
        return ToolRegistry(self.get_tools_by_names(names))

    def all_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def definitions(self) -> list[ToolDefinition]:
        return [tool.definition() for tool in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def discover_and_register(self) -> None:
        """Import and register all built-in tools."""
        from convo_agent.ai.tools.clock import CurrentTimeTool

        self.register(CurrentTimeTool())
