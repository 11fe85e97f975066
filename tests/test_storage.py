"""
Tests for the SQLite-backed session store and memory.
"""

import sqlite3

import pytest

from convo_agent.ai.agent import ConversationAgent
from convo_agent.ai.client import ScriptedClient
from convo_agent.core.messages import (
    AssistantMessage,
    SystemMessage,
    ToolResultMessage,
    UserMessage,
)
from convo_agent.core.session import SessionManager
from convo_agent.storage.database import Database
from convo_agent.storage.memory import SqliteMemory
from convo_agent.storage.session_repo import SessionRepository


class TestSessionRepository:
    @pytest.mark.asyncio
    async def test_find_or_create_keeps_original_prompt(self):
        db = Database(":memory:")
        await db.initialize()
        try:
            repo = SessionRepository(db)
            first = await repo.find_or_create_session("k", "original")
            again = await repo.find_or_create_session("k", "ignored")
            assert again.id == first.id
            assert again.system_prompt == "original"
            assert await repo.session_exists("k")
            assert not await repo.session_exists("other")
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_append_prunes_to_window(self):
        db = Database(":memory:")
        await db.initialize()
        try:
            repo = SessionRepository(db)
            session = await repo.find_or_create_session("k", "sys")
            for i in range(5):
                await repo.append_message(session.id, "user", f"m{i}", max_messages=3)

            messages = await repo.get_messages(session.id)
            assert [m.content for m in messages] == ["m2", "m3", "m4"]
            assert await repo.count_messages(session.id) == 3
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_rejects_unknown_role(self):
        db = Database(":memory:")
        await db.initialize()
        try:
            repo = SessionRepository(db)
            session = await repo.find_or_create_session("k", "sys")
            with pytest.raises(sqlite3.IntegrityError):
                await repo.append_message(session.id, "narrator", "x", max_messages=5)
            assert await repo.count_messages(session.id) == 0
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_delete_session_cascades(self):
        db = Database(":memory:")
        await db.initialize()
        try:
            repo = SessionRepository(db)
            session = await repo.find_or_create_session("k", "sys")
            await repo.append_message(session.id, "user", "hi", max_messages=5)

            assert await repo.delete_session("k")
            assert not await repo.delete_session("k")
            assert await repo.count_messages(session.id) == 0
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_delete_stale_sessions(self):
        db = Database(":memory:")
        await db.initialize()
        try:
            repo = SessionRepository(db)
            old = await repo.find_or_create_session("old", "sys")
            await repo.find_or_create_session("fresh", "sys")
            await repo.append_message(old.id, "user", "hi", max_messages=5)
            await db.conn.execute(
                "UPDATE sessions SET updated_at = '2000-01-01T00:00:00.000' WHERE id = ?",
                (old.id,),
            )

            assert await repo.delete_stale_sessions(hours=24) == 1
            assert not await repo.session_exists("old")
            assert await repo.session_exists("fresh")
            assert await repo.count_messages(old.id) == 0
        finally:
            await db.close()


class TestSqliteMemory:
    @pytest.mark.asyncio
    async def test_survives_reopen(self, tmp_path):
        db_path = str(tmp_path / "agent.db")

        db = Database(db_path)
        await db.initialize()
        memory = await SqliteMemory.open(SessionRepository(db), "k", "Be helpful")
        await memory.add_message(UserMessage("Hi"))
        await memory.add_message(AssistantMessage("Hello"))
        await db.close()

        db = Database(db_path)
        await db.initialize()
        try:
            memory = await SqliteMemory.open(SessionRepository(db), "k", "different")
            assert await memory.get_messages() == [
                SystemMessage("Be helpful"),
                UserMessage("Hi"),
                AssistantMessage("Hello"),
            ]
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_rollback_and_clear(self):
        db = Database(":memory:")
        await db.initialize()
        try:
            memory = await SqliteMemory.open(SessionRepository(db), "k", "sys")
            await memory.add_message(UserMessage("keep"))
            await memory.add_message(UserMessage("drop"))
            await memory.rollback_last()
            assert await memory.get_messages() == [SystemMessage("sys"), UserMessage("keep")]

            await memory.clear_history()
            assert await memory.message_count() == 0
            assert await memory.get_messages() == [SystemMessage("sys")]
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_tool_traffic_not_persisted(self):
        db = Database(":memory:")
        await db.initialize()
        try:
            memory = await SqliteMemory.open(SessionRepository(db), "k", "sys")
            with pytest.raises(TypeError):
                await memory.add_message(ToolResultMessage("1", "{}"))
        finally:
            await db.close()


class TestDurableSessions:
    @pytest.mark.asyncio
    async def test_manager_restores_stored_session(self, tmp_path):
        db = Database(str(tmp_path / "agent.db"))
        await db.initialize()
        repo = SessionRepository(db)
        client = ScriptedClient(["Hello"])

        async def factory(key, prompt):
            memory = await SqliteMemory.open(repo, key, prompt, max_messages=10)
            return ConversationAgent(key, memory, client, max_messages=10)

        try:
            first = SessionManager(factory, default_system_prompt="Be helpful", repo=repo)
            assert await first.send("k", "Hi") == "Hello"
            await first.stop_all()

            second = SessionManager(factory, default_system_prompt="other", repo=repo)
            agent = await second.get("k")
            assert await agent.get_history() == [
                SystemMessage("Be helpful"),
                UserMessage("Hi"),
                AssistantMessage("Hello"),
            ]
            await second.stop_all()
        finally:
            await db.close()
