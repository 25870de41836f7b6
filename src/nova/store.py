"""aiosqlite persistence for Nova: conversations, learners and content chunks."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import aiosqlite

from src.config import settings
from src.nova.models import (
    ContentChunk,
    Conversation,
    ConversationPage,
    ConversationSummary,
    LearnerProfile,
    Memory,
    Message,
)

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_CONVERSATION_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id TEXT PRIMARY KEY,
        profile_id TEXT NOT NULL,
        title TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        deleted INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id TEXT PRIMARY KEY,
        conversation_id TEXT NOT NULL REFERENCES conversations(id),
        role TEXT NOT NULL,
        content TEXT NOT NULL DEFAULT '',
        position INTEGER NOT NULL,
        created_at TEXT NOT NULL,
        tool_invocations TEXT NOT NULL DEFAULT '[]',
        truncated INTEGER NOT NULL DEFAULT 0,
        tokens_used INTEGER NOT NULL DEFAULT 0,
        model_used TEXT,
        UNIQUE (conversation_id, position)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_conversations_profile ON conversations(profile_id, updated_at)",
)

_CHUNK_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS content_chunks (
        id TEXT PRIMARY KEY,
        source TEXT NOT NULL,
        source_url TEXT,
        title TEXT NOT NULL,
        content TEXT NOT NULL,
        author TEXT,
        technology TEXT,
        embedding BLOB NOT NULL
    )
    """,
)

_MESSAGE_COLUMNS = (
    "id, conversation_id, role, content, position, created_at, "
    "tool_invocations, truncated, tokens_used, model_used"
)

_LEARNER_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS learner_profiles (
        profile_id TEXT PRIMARY KEY,
        current_role TEXT,
        experience_years INTEGER,
        primary_tech_stack TEXT,
        current_project TEXT,
        learning_goals TEXT,
        learning_style TEXT,
        preferred_pace TEXT,
        identified_strengths TEXT,
        identified_struggles TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS memories (
        id TEXT PRIMARY KEY,
        profile_id TEXT NOT NULL,
        category TEXT NOT NULL,
        content TEXT NOT NULL,
        importance INTEGER NOT NULL DEFAULT 3,
        embedding BLOB,
        created_at TEXT NOT NULL,
        superseded_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_memories_profile ON memories(profile_id, created_at)",
)

_PROFILE_COLUMNS = (
    "profile_id, current_role, experience_years, primary_tech_stack, current_project, "
    "learning_goals, learning_style, preferred_pace, identified_strengths, "
    "identified_struggles, created_at, updated_at"
)

_MEMORY_COLUMNS = (
    "id, profile_id, category, content, importance, embedding, created_at, superseded_at"
)


class _SqliteStore:
    """Shared connect-per-operation plumbing."""

    _schema: tuple[str, ...] = ()

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        await db.execute("PRAGMA busy_timeout=5000")
        if not self._initialised:
            for statement in self._schema:
                await db.execute(statement)
            await db.commit()
            self._initialised = True
        return db


class ConversationStore(_SqliteStore):
    """Persists conversations and their messages in SQLite.

    Singleton accessed via ``ConversationStore.get()``.  Pass an explicit
    *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    _instance: ConversationStore | None = None
    _schema = _CONVERSATION_SCHEMA

    @classmethod
    def get(cls) -> ConversationStore:
        """Return the shared ConversationStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    # -- Conversations ---------------------------------------------------------

    async def create_conversation(self, conversation: Conversation) -> Conversation:
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT INTO conversations
                    (id, profile_id, title, created_at, updated_at, deleted)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                conversation.to_row(),
            )
            await db.commit()
            logger.info(
                "Created conversation %s for profile %s",
                conversation.id,
                conversation.profile_id,
            )
            return conversation
        finally:
            await db.close()

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        """Fetch a live conversation by ID, or None if absent or deleted."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT * FROM conversations WHERE id = ? AND deleted = 0",
                (conversation_id,),
            )
            row = await cursor.fetchone()
            return Conversation.from_row(row) if row else None
        finally:
            await db.close()

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Soft-delete a conversation. Returns True if a row was updated."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "UPDATE conversations SET deleted = 1 WHERE id = ? AND deleted = 0",
                (conversation_id,),
            )
            await db.commit()
            deleted = cursor.rowcount > 0
            if deleted:
                logger.info("Deleted conversation: %s", conversation_id)
            return deleted
        finally:
            await db.close()

    async def list_conversations(
        self,
        profile_id: str,
        limit: int = 20,
        before_updated_at: str | None = None,
        before_id: str | None = None,
    ) -> ConversationPage:
        """List a profile's conversations, most recently active first.

        Pagination is keyset-based on ``(updated_at, id)``; pass the last
        summary's values as ``before_updated_at``/``before_id`` to continue.
        A *limit* below 1 is treated as 1.
        """
        limit = max(limit, 1)
        sql = (
            "SELECT c.id, c.title, c.created_at, c.updated_at, "
            "(SELECT COUNT(*) FROM messages m WHERE m.conversation_id = c.id) "
            "FROM conversations c WHERE c.profile_id = ? AND c.deleted = 0"
        )
        params: list = [profile_id]
        if before_updated_at is not None:
            sql += " AND (c.updated_at < ? OR (c.updated_at = ? AND c.id < ?))"
            params.extend([before_updated_at, before_updated_at, before_id or ""])
        sql += " ORDER BY c.updated_at DESC, c.id DESC LIMIT ?"
        params.append(limit + 1)

        db = await self._connect()
        try:
            cursor = await db.execute(sql, tuple(params))
            rows = await cursor.fetchall()
        finally:
            await db.close()

        has_more = len(rows) > limit
        summaries = [
            ConversationSummary(
                id=row[0],
                title=row[1],
                created_at=row[2],
                updated_at=row[3],
                message_count=row[4],
            )
            for row in rows[:limit]
        ]
        return ConversationPage(conversations=summaries, has_more=has_more)

    # -- Messages --------------------------------------------------------------

    async def append_message(self, message: Message) -> Message:
        """Atomically insert *message* at the conversation's next position.

        The message's ``position`` is overwritten with ``max(position) + 1``
        (``0`` for an empty conversation) computed inside the same write
        transaction, and the conversation's ``updated_at`` is bumped.
        """
        db = await self._connect()
        try:
            await db.execute("BEGIN IMMEDIATE")
            try:
                cursor = await db.execute(
                    "SELECT COALESCE(MAX(position), -1) + 1 FROM messages "
                    "WHERE conversation_id = ?",
                    (message.conversation_id,),
                )
                (next_position,) = await cursor.fetchone()
                stored = message.model_copy(update={"position": next_position})
                await db.execute(
                    f"INSERT INTO messages ({_MESSAGE_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    stored.to_row(),
                )
                await db.execute(
                    "UPDATE conversations SET updated_at = ? WHERE id = ?",
                    (datetime.now(UTC).isoformat(), message.conversation_id),
                )
                await db.commit()
            except Exception:
                await db.rollback()
                raise
            logger.debug(
                "Appended %s message at position %d to %s",
                stored.role,
                stored.position,
                stored.conversation_id,
            )
            return stored
        finally:
            await db.close()

    async def list_messages(self, conversation_id: str) -> list[Message]:
        """Return all messages in a conversation ordered by position."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages "
                "WHERE conversation_id = ? ORDER BY position",
                (conversation_id,),
            )
            rows = await cursor.fetchall()
            return [Message.from_row(row) for row in rows]
        finally:
            await db.close()

    async def recent_messages(self, conversation_id: str, limit: int) -> list[Message]:
        """Return the last *limit* messages, oldest first."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages "
                "WHERE conversation_id = ? ORDER BY position DESC LIMIT ?",
                (conversation_id, limit),
            )
            rows = await cursor.fetchall()
            return [Message.from_row(row) for row in reversed(rows)]
        finally:
            await db.close()


class ContentChunkStore(_SqliteStore):
    """Read/append access to indexed content chunks.

    Indexing happens out-of-band; Nova only reads chunks (via
    ``ContentIndex``). ``add_chunk`` exists for the indexer and tests.
    """

    _instance: ContentChunkStore | None = None
    _schema = _CHUNK_SCHEMA

    @classmethod
    def get(cls) -> ContentChunkStore:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        cls._instance = None

    async def add_chunk(self, chunk: ContentChunk) -> ContentChunk:
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT INTO content_chunks
                    (id, source, source_url, title, content, author, technology, embedding)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                chunk.to_row(),
            )
            await db.commit()
            return chunk
        finally:
            await db.close()

    async def list_chunks(self) -> list[ContentChunk]:
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT id, source, source_url, title, content, author, technology, "
                "embedding FROM content_chunks ORDER BY id"
            )
            rows = await cursor.fetchall()
            return [ContentChunk.from_row(row) for row in rows]
        finally:
            await db.close()


class LearnerStore(_SqliteStore):
    """Learner profiles and remembered facts, read when a turn starts.

    Profiles and memories are written by whatever maintains them (profile
    edits, memory extraction); Nova itself only reads them.
    """

    _instance: LearnerStore | None = None
    _schema = _LEARNER_SCHEMA

    @classmethod
    def get(cls) -> LearnerStore:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        cls._instance = None

    # -- Profiles --------------------------------------------------------------

    async def save_profile(self, profile: LearnerProfile) -> LearnerProfile:
        """Insert or replace the profile for ``profile.profile_id``."""
        db = await self._connect()
        try:
            await db.execute(
                f"INSERT OR REPLACE INTO learner_profiles ({_PROFILE_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                profile.to_row(),
            )
            await db.commit()
            return profile
        finally:
            await db.close()

    async def get_profile(self, profile_id: str) -> LearnerProfile | None:
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_PROFILE_COLUMNS} FROM learner_profiles WHERE profile_id = ?",
                (profile_id,),
            )
            row = await cursor.fetchone()
            return LearnerProfile.from_row(row) if row else None
        finally:
            await db.close()

    # -- Memories --------------------------------------------------------------

    async def add_memory(self, memory: Memory) -> Memory:
        db = await self._connect()
        try:
            await db.execute(
                f"INSERT INTO memories ({_MEMORY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                memory.to_row(),
            )
            await db.commit()
            return memory
        finally:
            await db.close()

    async def recent_memories(self, profile_id: str, limit: int) -> list[Memory]:
        """Active memories, newest first."""
        return await self._select_memories(
            "WHERE profile_id = ? AND superseded_at IS NULL "
            "ORDER BY created_at DESC, id DESC LIMIT ?",
            (profile_id, limit),
        )

    async def important_memories(
        self, profile_id: str, min_importance: int, limit: int
    ) -> list[Memory]:
        """Active memories at or above *min_importance*, most important first."""
        return await self._select_memories(
            "WHERE profile_id = ? AND superseded_at IS NULL AND importance >= ? "
            "ORDER BY importance DESC, created_at DESC LIMIT ?",
            (profile_id, min_importance, limit),
        )

    async def embedded_memories(self, profile_id: str) -> list[Memory]:
        """Active memories that carry an embedding."""
        return await self._select_memories(
            "WHERE profile_id = ? AND superseded_at IS NULL AND embedding IS NOT NULL",
            (profile_id,),
        )

    async def _select_memories(self, where: str, params: tuple) -> list[Memory]:
        db = await self._connect()
        try:
            cursor = await db.execute(f"SELECT {_MEMORY_COLUMNS} FROM memories {where}", params)
            rows = await cursor.fetchall()
            return [Memory.from_row(row) for row in rows]
        finally:
            await db.close()
