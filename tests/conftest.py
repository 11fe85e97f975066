"""
Shared test fixtures and helpers.
"""

import asyncio
import json
from typing import Any

import pytest

from convo_agent.ai.client import ScriptedClient
from convo_agent.ai.tools.base import Tool


class EchoTool(Tool):
    """Returns its arguments as JSON."""

    def __init__(self, name: str = "echo"):
        self._name = name
        self.calls: list[dict[str, Any]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return "Echo the arguments back"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {"x": {"type": "integer"}}}

    async def execute(self, **kwargs: Any) -> str:
        self.calls.append(kwargs)
        return json.dumps(kwargs)


class FailingTool(Tool):
    @property
    def name(self) -> str:
        return "explode"

    @property
    def description(self) -> str:
        return "Always fails"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    async def execute(self, **kwargs: Any) -> str:
        raise RuntimeError("boom")


class SlowClient(ScriptedClient):
    """Echoes after a delay."""

    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay

    async def _chat(self, messages, options):
        await asyncio.sleep(self.delay)
        return await super()._chat(messages, options)


class FakeClock:
    """Manually advanced monotonic clock, in seconds."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000


@pytest.fixture
def echo_tool():
    return EchoTool()


@pytest.fixture
def fake_clock():
    return FakeClock()
