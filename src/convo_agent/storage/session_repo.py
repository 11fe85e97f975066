"""Session and message persistence over SQLite."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from convo_agent.core.context import trim_history
from convo_agent.log import get_logger
from convo_agent.storage.database import Database
from convo_agent.storage.models import MessageRecord, SessionRecord

logger = get_logger(__name__)

_NOW_SQL = "strftime('%Y-%m-%dT%H:%M:%f','now')"


class SessionRepository:
    """CRUD over the ``sessions`` and ``messages`` tables."""

    def __init__(self, db: Database):
        self._db = db

    async def find_or_create_session(self, session_key: str, system_prompt: str) -> SessionRecord:
        """Load the session for ``session_key``, creating it on first use.

        An existing session keeps its stored system prompt and is marked active.
        """
        async with self._db.transaction() as conn:
            await conn.execute(
                f"""INSERT INTO sessions (session_key, system_prompt)
                   VALUES (?, ?)
                   ON CONFLICT(session_key)
                   DO UPDATE SET updated_at = {_NOW_SQL}""",
                (session_key, system_prompt),
            )
        session = await self.get_session(session_key)
        if session is None:
            raise RuntimeError(f"Session '{session_key}' vanished after upsert")
        return session

    async def get_session(self, session_key: str) -> Optional[SessionRecord]:
        cursor = await self._db.conn.execute(
            "SELECT * FROM sessions WHERE session_key = ?", (session_key,)
        )
        row = await cursor.fetchone()
        return self._row_to_session(row) if row else None

    async def session_exists(self, session_key: str) -> bool:
        return await self.get_session(session_key) is not None

    async def append_message(
        self, session_id: int, role: str, content: str, max_messages: int
    ) -> int:
        """Persist a message, touch the session and prune old rows atomically.

        Returns the new message ID.
        """
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                "INSERT INTO messages (session_id, role, content) VALUES (?, ?, ?)",
                (session_id, role, content),
            )
            message_id = cursor.lastrowid
            await conn.execute(
                f"UPDATE sessions SET updated_at = {_NOW_SQL} WHERE id = ?",
                (session_id,),
            )
            pruned = await self._prune(session_id, max_messages)

        if pruned:
            logger.debug("messages_pruned", session_id=session_id, count=pruned)
        return message_id  # type: ignore[return-value]

    async def _prune(self, session_id: int, max_messages: int) -> int:
        cursor = await self._db.conn.execute(
            "SELECT id FROM messages WHERE session_id = ? ORDER BY id ASC",
            (session_id,),
        )
        ids = [row["id"] for row in await cursor.fetchall()]
        kept = set(trim_history(ids, max_messages))
        stale = [(i,) for i in ids if i not in kept]
        if stale:
            await self._db.conn.executemany("DELETE FROM messages WHERE id = ?", stale)
        return len(stale)

    async def get_messages(self, session_id: int) -> list[MessageRecord]:
        """All messages of a session in insertion order."""
        cursor = await self._db.conn.execute(
            "SELECT * FROM messages WHERE session_id = ? ORDER BY id ASC",
            (session_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_message(row) for row in rows]

    async def count_messages(self, session_id: int) -> int:
        cursor = await self._db.conn.execute(
            "SELECT COUNT(*) AS n FROM messages WHERE session_id = ?", (session_id,)
        )
        row = await cursor.fetchone()
        return row["n"] if row else 0

    async def delete_message(self, message_id: int) -> None:
        async with self._db.transaction() as conn:
            await conn.execute("DELETE FROM messages WHERE id = ?", (message_id,))

    async def clear_messages(self, session_id: int) -> int:
        """Delete all messages of a session. Returns number of deleted rows."""
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM messages WHERE session_id = ?", (session_id,)
            )
        return cursor.rowcount

    async def delete_session(self, session_key: str) -> bool:
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM sessions WHERE session_key = ?", (session_key,)
            )
        return cursor.rowcount > 0

    async def delete_stale_sessions(self, hours: int = 24) -> int:
        """Delete sessions idle for more than ``hours``; messages cascade."""
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM sessions WHERE updated_at < strftime('%Y-%m-%dT%H:%M:%f','now', ?)",
                (f"-{hours} hours",),
            )
        deleted = cursor.rowcount
        logger.info("stale_sessions_deleted", deleted_sessions=deleted, hours=hours)
        return deleted

    @staticmethod
    def _row_to_session(row) -> SessionRecord:
        return SessionRecord(
            id=row["id"],
            session_key=row["session_key"],
            system_prompt=row["system_prompt"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_message(row) -> MessageRecord:
        return MessageRecord(
            id=row["id"],
            session_id=row["session_id"],
            role=row["role"],
            content=row["content"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )
