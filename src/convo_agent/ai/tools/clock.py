"""Current date/time tool."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from convo_agent.ai.tools.base import Tool

_FORMATS = {
    "datetime": "%Y-%m-%d %H:%M:%S UTC",
    "date": "%Y-%m-%d",
    "time": "%H:%M:%S UTC",
}


class CurrentTimeTool(Tool):
    """Reports the current UTC time in one of a few formats."""

    @property
    def name(self) -> str:
        return "get_current_time"

    @property
    def description(self) -> str:
        return "Get the current date and time in various formats"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "format": {
                    "type": "string",
                    "enum": ["datetime", "date", "time", "iso8601"],
                    "description": "Output format. Defaults to 'datetime'.",
                },
            },
            "required": [],
        }

    async def execute(self, **kwargs: Any) -> str:
        fmt = kwargs.get("format") or "datetime"
        now = datetime.now(timezone.utc)

        if fmt == "iso8601":
            result = now.isoformat()
        else:
            result = now.strftime(_FORMATS.get(fmt, _FORMATS["datetime"]))

        return f"Current time: {result}"
