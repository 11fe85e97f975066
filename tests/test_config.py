"""
Tests for configuration loading and validation.
"""

import pytest
from pydantic import ValidationError

from convo_agent.config import (
    AIConfig,
    AnthropicConfig,
    ClaudeCodeConfig,
    AppConfig,
    SessionConfig,
    StubConfig,
    load_config,
)


class TestAppConfig:
    def test_stub_defaults(self):
        config = AppConfig(ai=AIConfig(backend="stub"))
        assert config.context.max_messages == 20
        assert config.circuit_breaker.failure_threshold == 5
        assert config.session.chat_timeout_ms == 245_000
        assert config.session.keep_failed_turns is True

    def test_anthropic_requires_section(self):
        with pytest.raises(ValidationError):
            AppConfig(ai=AIConfig(backend="anthropic"))

    def test_chat_timeout_must_exceed_transport_timeout(self):
        with pytest.raises(ValidationError, match="chat_timeout_ms"):
            AppConfig(
                anthropic=AnthropicConfig(api_key="k", timeout=60),
                session=SessionConfig(chat_timeout_ms=60_000),
            )

    def test_chat_timeout_accounts_for_sdk_retries(self):
        # one 60s attempt fits, four attempts do not
        with pytest.raises(ValidationError, match="timeout x attempts"):
            AppConfig(
                anthropic=AnthropicConfig(api_key="k", timeout=60, max_retries=3),
                session=SessionConfig(chat_timeout_ms=65_000),
            )

    def test_transport_budget_includes_retries(self):
        config = AppConfig(
            anthropic=AnthropicConfig(api_key="k", timeout=60, max_retries=3),
            session=SessionConfig(chat_timeout_ms=241_000),
        )
        assert config.transport_budget() == 240

    def test_default_chat_timeout_covers_default_budget(self):
        config = AppConfig(anthropic=AnthropicConfig(api_key="k"))
        assert config.session.chat_timeout_ms > config.transport_budget() * 1000

    def test_claude_code_budget_is_plain_timeout(self):
        config = AppConfig(
            ai=AIConfig(backend="claude_code"),
            claude_code=ClaudeCodeConfig(timeout=90),
            session=SessionConfig(chat_timeout_ms=91_000),
        )
        assert config.transport_budget() == 90

    def test_stub_timeout_checked_too(self):
        with pytest.raises(ValidationError):
            AppConfig(
                ai=AIConfig(backend="stub"),
                stub=StubConfig(timeout=5),
                session=SessionConfig(chat_timeout_ms=1_000),
            )

    def test_context_window_must_be_positive(self):
        with pytest.raises(ValidationError):
            AppConfig(ai=AIConfig(backend="stub"), context={"max_messages": 0})


class TestLoadConfig:
    def test_env_interpolation(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_ANTHROPIC_KEY", "sk-test")
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "data_dir: /var/agent\n"
            "anthropic:\n"
            "  api_key: ${TEST_ANTHROPIC_KEY}\n"
            "storage:\n"
            "  enabled: true\n"
            "  db_path: ${data_dir}/agent.db\n",
            encoding="utf-8",
        )

        config = load_config(config_file, tmp_path / "missing.env")

        assert config.anthropic.api_key == "sk-test"
        assert config.storage.db_path == "/var/agent/agent.db"

    def test_dotenv_file_loaded(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DOTENV_ONLY_KEY", "placeholder")
        monkeypatch.delenv("DOTENV_ONLY_KEY")
        env_file = tmp_path / ".env"
        env_file.write_text("DOTENV_ONLY_KEY=from-dotenv\n", encoding="utf-8")
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "ai:\n  backend: openai\nopenai:\n  api_key: ${DOTENV_ONLY_KEY}\n",
            encoding="utf-8",
        )

        config = load_config(config_file, env_file)
        assert config.openai.api_key == "from-dotenv"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml", tmp_path / ".env")
