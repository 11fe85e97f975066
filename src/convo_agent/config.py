"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

Backend = Literal["anthropic", "openai", "claude_code", "stub"]


class AIConfig(BaseModel):
    backend: Backend = "anthropic"
    model: str = ""  # empty = the backend's default model
    max_tokens: int = 4096
    system_prompt: str = "You are a helpful AI assistant. Be concise and friendly."
    temperature: float = 0.7
    tools: list[str] = Field(default_factory=list)


class AnthropicConfig(BaseModel):
    api_key: str
    base_url: Optional[str] = None
    max_retries: int = 3
    timeout: int = 60


class OpenAIConfig(BaseModel):
    api_key: str
    base_url: Optional[str] = None
    max_retries: int = 3
    timeout: int = 60


class ClaudeCodeConfig(BaseModel):
    cli_path: str = "claude"
    timeout: int = 60
    allowed_tools: list[str] = Field(default_factory=list)


class StubConfig(BaseModel):
    replies: list[str] = Field(default_factory=list)
    timeout: int = 0


class ContextConfig(BaseModel):
    max_messages: int = Field(default=20, ge=1)
    preserve_system_prompt: bool = True


class CircuitBreakerConfig(BaseModel):
    failure_threshold: int = Field(default=5, ge=1)
    reset_timeout_ms: int = Field(default=30_000, ge=0)
    success_threshold: int = Field(default=2, ge=1)


class SessionConfig(BaseModel):
    # must exceed the backend budget: 60s x (3 retries + 1) with the defaults
    chat_timeout_ms: int = Field(default=245_000, gt=0)
    max_tool_iterations: int = Field(default=5, ge=1)
    keep_failed_turns: bool = True  # leave the user message in history when the LLM call fails
    max_restarts: int = Field(default=3, ge=0)
    restart_window_ms: int = Field(default=60_000, gt=0)  # max_restarts counted within this window


class StorageConfig(BaseModel):
    enabled: bool = False
    db_path: str = "./data/convo_agent.db"


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_json: bool = False
    data_dir: str = "./data"
    ai: AIConfig = Field(default_factory=AIConfig)
    anthropic: Optional[AnthropicConfig] = None
    openai: Optional[OpenAIConfig] = None
    claude_code: ClaudeCodeConfig = Field(default_factory=ClaudeCodeConfig)
    stub: StubConfig = Field(default_factory=StubConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    def transport_budget(self) -> int:
        """Longest time in seconds one backend call may take, SDK retries included."""
        match self.ai.backend:
            case "anthropic":
                sdk = self.anthropic
            case "openai":
                sdk = self.openai
            case "claude_code":
                return self.claude_code.timeout
            case _:
                return self.stub.timeout
        if sdk is None:
            return 0
        return sdk.timeout * (sdk.max_retries + 1)

    @model_validator(mode="after")
    def _check_backend(self) -> AppConfig:
        if self.ai.backend == "anthropic" and self.anthropic is None:
            raise ValueError("backend 'anthropic' requires an 'anthropic' section")
        if self.ai.backend == "openai" and self.openai is None:
            raise ValueError("backend 'openai' requires an 'openai' section")
        # The caller must never give up before the transport does.
        budget = self.transport_budget()
        if self.session.chat_timeout_ms <= budget * 1000:
            raise ValueError(
                f"session.chat_timeout_ms ({self.session.chat_timeout_ms}) must exceed "
                f"the {self.ai.backend} budget of {budget}s (timeout x attempts)"
            )
        return self


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
