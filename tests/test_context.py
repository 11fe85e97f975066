"""
Tests for context window trimming.
"""

import pytest

from convo_agent.core.context import needs_trimming, trim, trim_history
from convo_agent.core.messages import AssistantMessage, SystemMessage, UserMessage


def _conversation():
    return [
        SystemMessage("sys"),
        UserMessage("u1"),
        AssistantMessage("a1"),
        UserMessage("u2"),
        AssistantMessage("a2"),
    ]


class TestTrim:
    def test_keeps_system_and_newest(self):
        result = trim(_conversation(), max_messages=3, preserve_system=True)
        assert result == [SystemMessage("sys"), UserMessage("u2"), AssistantMessage("a2")]

    def test_without_preserve_keeps_newest_only(self):
        result = trim(_conversation(), max_messages=3, preserve_system=False)
        assert result == [AssistantMessage("a1"), UserMessage("u2"), AssistantMessage("a2")]

    def test_short_list_unchanged(self):
        messages = _conversation()
        result = trim(messages, max_messages=10)
        assert result == messages
        assert result is not messages

    def test_idempotent(self):
        once = trim(_conversation(), max_messages=3)
        assert trim(once, max_messages=3) == once

    def test_max_one_with_system_keeps_only_system(self):
        assert trim(_conversation(), max_messages=1) == [SystemMessage("sys")]

    def test_no_leading_system_message(self):
        messages = _conversation()[1:]
        assert trim(messages, max_messages=2) == [UserMessage("u2"), AssistantMessage("a2")]

    def test_rejects_non_positive_limit(self):
        with pytest.raises(ValueError):
            trim(_conversation(), max_messages=0)

    def test_preserved_prompt_always_first(self):
        messages = [SystemMessage("sys")] + [UserMessage(str(i)) for i in range(50)]
        result = trim(messages, max_messages=5)
        assert len(result) == 5
        assert result[0] == SystemMessage("sys")
        assert result[-1] == UserMessage("49")


class TestTrimHistory:
    def test_keeps_newest(self):
        assert trim_history([1, 2, 3, 4, 5], 2) == [4, 5]

    def test_rejects_non_positive_limit(self):
        with pytest.raises(ValueError):
            trim_history([1], 0)

    def test_needs_trimming(self):
        assert needs_trimming([1, 2, 3], 2)
        assert not needs_trimming([1, 2], 2)
