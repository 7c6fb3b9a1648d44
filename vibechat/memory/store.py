"""MemoryStore: aiosqlite persistence for conversations and everything around them.

One short-lived connection per public operation; each operation is a single
transaction that is committed on success and rolled back on any failure, so
a create or append is either fully visible or not visible at all.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import aiosqlite

from vibechat.db import get_connection
from vibechat.errors import ConstraintError, StorageError
from vibechat.memory.models import (
    Conversation,
    MemoryEntry,
    Message,
    Personality,
    Role,
    make_id,
    to_db_time,
    utcnow,
)
from vibechat.memory.personalities import DEFAULT_PERSONALITIES

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    personality_id TEXT NOT NULL,
    title TEXT NOT NULL,
    summary TEXT
);

CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id),
    role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
    content TEXT NOT NULL,
    screenshot_path TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation
    ON messages(conversation_id, created_at);

CREATE TABLE IF NOT EXISTS personalities (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    system_prompt TEXT NOT NULL DEFAULT '',
    traits TEXT NOT NULL DEFAULT '[]',
    color TEXT NOT NULL DEFAULT '',
    avatar TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS memory_entries (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id),
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    importance INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_memory_entries_rank
    ON memory_entries(importance DESC, created_at DESC);

CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

_CONVERSATION_COLUMNS = "id, created_at, updated_at, personality_id, title, summary"
_MESSAGE_COLUMNS = "id, conversation_id, role, content, screenshot_path, created_at"
_PERSONALITY_COLUMNS = (
    "id, name, description, system_prompt, traits, color, avatar, created_at, updated_at"
)
_MEMORY_COLUMNS = "id, conversation_id, key, value, importance, created_at"


class MemoryStore:
    """Persists conversations, messages, personalities, memory entries and settings.

    Pass the database file path explicitly (``tmp_path / "memory.db"`` in
    tests).  The schema is created lazily on first connect, or eagerly via
    ``initialize()`` which also seeds the default personalities.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._initialised = False

    @property
    def db_path(self) -> Path:
        return self._db_path

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        db = await get_connection(self._db_path)
        if not self._initialised:
            try:
                await db.executescript(_SCHEMA)
                await db.commit()
            except aiosqlite.Error:
                await db.close()
                raise
            self._initialised = True
        return db

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield a connection whose work is committed only if the block succeeds."""
        try:
            db = await self._connect()
        except (aiosqlite.Error, OSError) as exc:
            msg = f"Memory database unavailable at {self._db_path}: {exc}"
            raise StorageError(msg) from exc

        try:
            yield db
            await db.commit()
        except aiosqlite.IntegrityError as exc:
            await db.rollback()
            raise ConstraintError(str(exc)) from exc
        except aiosqlite.Error as exc:
            await db.rollback()
            msg = f"Memory database operation failed: {exc}"
            raise StorageError(msg) from exc
        finally:
            await db.close()

    @staticmethod
    async def _conversation_exists(db: aiosqlite.Connection, conversation_id: str) -> bool:
        cursor = await db.execute(
            "SELECT 1 FROM conversations WHERE id = ?", (conversation_id,)
        )
        return await cursor.fetchone() is not None

    # -- Lifecycle -------------------------------------------------------------

    async def initialize(self) -> None:
        """Create the schema and seed any missing default personalities."""
        async with self._transaction() as db:
            for personality in DEFAULT_PERSONALITIES:
                await db.execute(
                    f"INSERT OR IGNORE INTO personalities ({_PERSONALITY_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    personality.to_row(),
                )
        logger.info("Memory store ready at %s", self._db_path)

    # -- Conversations ---------------------------------------------------------

    async def create_conversation(self, personality_id: str, title: str) -> Conversation:
        """Insert a new conversation bound to *personality_id* and return it."""
        now = utcnow()
        conversation = Conversation(
            id=make_id("conv"),
            created_at=now,
            updated_at=now,
            personality_id=personality_id,
            title=title,
        )
        async with self._transaction() as db:
            await db.execute(
                f"INSERT INTO conversations ({_CONVERSATION_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    conversation.id,
                    to_db_time(now),
                    to_db_time(now),
                    personality_id,
                    title,
                    None,
                ),
            )
        logger.info("Created conversation %s (personality=%s)", conversation.id, personality_id)
        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        """Fetch a conversation by ID, or None if not found."""
        async with self._transaction() as db:
            cursor = await db.execute(
                f"SELECT {_CONVERSATION_COLUMNS} FROM conversations WHERE id = ?",
                (conversation_id,),
            )
            row = await cursor.fetchone()
        return Conversation.from_row(row) if row else None

    async def list_conversations(self, limit: int = 50) -> list[Conversation]:
        """Return the most recently updated conversations first."""
        async with self._transaction() as db:
            cursor = await db.execute(
                f"SELECT {_CONVERSATION_COLUMNS} FROM conversations "
                "ORDER BY updated_at DESC, rowid DESC LIMIT ?",
                (limit,),
            )
            rows = await cursor.fetchall()
        return [Conversation.from_row(row) for row in rows]

    async def touch_conversation(
        self, conversation_id: str, summary: str | None = None
    ) -> Conversation | None:
        """Bump ``updated_at`` (and optionally the rolling summary).

        Returns the updated conversation, or None if it does not exist.
        """
        now = to_db_time(utcnow())
        async with self._transaction() as db:
            if summary is None:
                await db.execute(
                    "UPDATE conversations SET updated_at = ? WHERE id = ?",
                    (now, conversation_id),
                )
            else:
                await db.execute(
                    "UPDATE conversations SET updated_at = ?, summary = ? WHERE id = ?",
                    (now, summary, conversation_id),
                )
            cursor = await db.execute(
                f"SELECT {_CONVERSATION_COLUMNS} FROM conversations WHERE id = ?",
                (conversation_id,),
            )
            row = await cursor.fetchone()
        return Conversation.from_row(row) if row else None

    # -- Messages --------------------------------------------------------------

    async def append_message(self, message: Message) -> Message:
        """Insert one message. Does not touch the parent conversation.

        Raises ``ConstraintError`` if the conversation does not exist or the
        role is not one of ``Role``.
        """
        try:
            Role(message.role)
        except ValueError as exc:
            msg = f"Invalid message role: {message.role!r}"
            raise ConstraintError(msg) from exc

        async with self._transaction() as db:
            if not await self._conversation_exists(db, message.conversation_id):
                msg = f"Unknown conversation: {message.conversation_id}"
                raise ConstraintError(msg)
            await db.execute(
                f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                message.to_row(),
            )
        logger.debug(
            "Appended %s message %s to %s", message.role, message.id, message.conversation_id
        )
        return message

    async def get_history(self, conversation_id: str) -> list[Message]:
        """Return every message of a conversation, oldest first.

        Timestamp ties are broken by insertion order.  Unknown conversations
        yield an empty list.
        """
        async with self._transaction() as db:
            cursor = await db.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE conversation_id = ? "
                "ORDER BY created_at ASC, rowid ASC",
                (conversation_id,),
            )
            rows = await cursor.fetchall()
        return [Message.from_row(row) for row in rows]

    # -- Personalities ---------------------------------------------------------

    async def upsert_personality(self, personality: Personality) -> Personality:
        """Insert or replace a personality, preserving its original ``created_at``."""
        async with self._transaction() as db:
            cursor = await db.execute(
                "SELECT created_at FROM personalities WHERE id = ?", (personality.id,)
            )
            existing = await cursor.fetchone()
            updated = personality.model_copy(update={"updated_at": utcnow()})
            row = list(updated.to_row())
            if existing:
                row[7] = existing[0]
            await db.execute(
                f"INSERT OR REPLACE INTO personalities ({_PERSONALITY_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                tuple(row),
            )
        return Personality.from_row(tuple(row))

    async def get_personality(self, personality_id: str) -> Personality | None:
        async with self._transaction() as db:
            cursor = await db.execute(
                f"SELECT {_PERSONALITY_COLUMNS} FROM personalities WHERE id = ?",
                (personality_id,),
            )
            row = await cursor.fetchone()
        return Personality.from_row(row) if row else None

    async def list_personalities(self) -> list[Personality]:
        async with self._transaction() as db:
            cursor = await db.execute(
                f"SELECT {_PERSONALITY_COLUMNS} FROM personalities ORDER BY created_at, rowid"
            )
            rows = await cursor.fetchall()
        return [Personality.from_row(row) for row in rows]

    # -- Memory entries --------------------------------------------------------

    async def add_memory_entry(
        self,
        conversation_id: str,
        key: str,
        value: str,
        importance: int = 0,
    ) -> MemoryEntry:
        """Append a distilled fact for *conversation_id*."""
        entry = MemoryEntry(
            id=make_id("mem"),
            conversation_id=conversation_id,
            key=key,
            value=value,
            importance=importance,
        )
        async with self._transaction() as db:
            if not await self._conversation_exists(db, conversation_id):
                msg = f"Unknown conversation: {conversation_id}"
                raise ConstraintError(msg)
            await db.execute(
                f"INSERT INTO memory_entries ({_MEMORY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    entry.id,
                    entry.conversation_id,
                    entry.key,
                    entry.value,
                    entry.importance,
                    to_db_time(entry.created_at),
                ),
            )
        logger.debug("Stored memory [%s] %s=%s", conversation_id, key, value[:80])
        return entry

    async def get_memory_entries(
        self,
        conversation_id: str | None = None,
        limit: int | None = None,
    ) -> list[MemoryEntry]:
        """Return memory entries, most important first, newest first within a rank."""
        sql = f"SELECT {_MEMORY_COLUMNS} FROM memory_entries"
        params: list = []
        if conversation_id is not None:
            sql += " WHERE conversation_id = ?"
            params.append(conversation_id)
        sql += " ORDER BY importance DESC, created_at DESC, rowid DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        async with self._transaction() as db:
            cursor = await db.execute(sql, tuple(params))
            rows = await cursor.fetchall()
        return [MemoryEntry.from_row(row) for row in rows]

    async def prune_memory_entries(self, max_entries: int) -> int:
        """Delete the least important, oldest entries beyond *max_entries*.

        Returns the number of entries removed.
        """
        async with self._transaction() as db:
            cursor = await db.execute(
                """
                DELETE FROM memory_entries WHERE id IN (
                    SELECT id FROM memory_entries
                    ORDER BY importance DESC, created_at DESC, rowid DESC
                    LIMIT -1 OFFSET ?
                )
                """,
                (max(max_entries, 0),),
            )
            removed = cursor.rowcount
        if removed:
            logger.info("Pruned %d memory entr%s", removed, "y" if removed == 1 else "ies")
        return removed

    # -- Settings --------------------------------------------------------------

    async def upsert_setting(self, key: str, value: str) -> None:
        """Write a setting; the last write wins."""
        async with self._transaction() as db:
            await db.execute(
                """
                INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value, to_db_time(utcnow())),
            )
        logger.debug("Setting %s updated", key)

    async def get_setting(self, key: str) -> str | None:
        """Return the stored value for *key*, or None if never set."""
        async with self._transaction() as db:
            cursor = await db.execute("SELECT value FROM settings WHERE key = ?", (key,))
            row = await cursor.fetchone()
        return row[0] if row else None

    async def get_settings(self) -> dict[str, str]:
        """Return every stored setting as a plain dict."""
        async with self._transaction() as db:
            cursor = await db.execute("SELECT key, value FROM settings ORDER BY key")
            rows = await cursor.fetchall()
        return {row[0]: row[1] for row in rows}
