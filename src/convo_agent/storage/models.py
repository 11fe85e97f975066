"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class SessionRecord:
    id: int
    session_key: str
    system_prompt: str
    created_at: datetime
    updated_at: datetime


@dataclass
class MessageRecord:
    id: int
    session_id: int
    role: str  # "user" | "assistant" | "system" | "tool"
    content: str
    created_at: datetime
