"""MessageStore — aiosqlite persistence for messages."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ephemera.config import settings
from ephemera.db import connect
from ephemera.messages.models import Message, to_iso

if TYPE_CHECKING:
    from datetime import datetime
    from pathlib import Path

    import aiosqlite

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    sender_id TEXT NOT NULL,
    receiver_id TEXT NOT NULL,
    content TEXT NOT NULL,
    media_type TEXT NOT NULL,
    media_ref TEXT,
    is_delivered INTEGER NOT NULL DEFAULT 0,
    delivered_at TEXT,
    is_viewed INTEGER NOT NULL DEFAULT 0,
    viewed_at TEXT,
    view_count INTEGER NOT NULL DEFAULT 0,
    is_saved INTEGER NOT NULL DEFAULT 0,
    is_view_once INTEGER NOT NULL DEFAULT 0,
    expires_at TEXT,
    reactions TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    save_grace_until TEXT,
    version INTEGER NOT NULL DEFAULT 1
)
"""

_CREATE_PAIR_INDEX = """
CREATE INDEX IF NOT EXISTS idx_messages_pair
    ON messages (sender_id, receiver_id, created_at)
"""

_COLUMNS = (
    "id, sender_id, receiver_id, content, media_type, media_ref, "
    "is_delivered, delivered_at, is_viewed, viewed_at, view_count, "
    "is_saved, is_view_once, expires_at, reactions, created_at, "
    "save_grace_until, version"
)

# Mirrors Message.is_reapable; the engine re-checks under the message lock.
_REAPABLE = """
is_saved = 0 AND (
    (expires_at IS NOT NULL AND expires_at <= ?)
    OR (is_view_once = 1 AND is_viewed = 1
        AND (save_grace_until IS NULL OR save_grace_until < ?))
)
"""


class MessageStore:
    """Persists messages in SQLite.

    Singleton accessed via ``MessageStore.get()``.  Pass an explicit *db_path*
    for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    _instance: MessageStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False

    @classmethod
    def get(cls) -> MessageStore:
        """Return the shared MessageStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        db = await connect(self._db_path)
        if not self._initialised:
            await db.execute(_CREATE_TABLE)
            await db.execute(_CREATE_PAIR_INDEX)
            await db.commit()
            self._initialised = True
        return db

    async def _select(self, where: str, params: tuple) -> list[Message]:
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM messages WHERE {where} "  # noqa: S608
                "ORDER BY created_at, rowid",
                params,
            )
            rows = await cursor.fetchall()
            return [Message.from_row(row) for row in rows]
        finally:
            await db.close()

    # -- CRUD ------------------------------------------------------------------

    async def add(self, message: Message) -> Message:
        """Insert a new message. Returns the same message object."""
        db = await self._connect()
        try:
            await db.execute(
                f"INSERT INTO messages ({_COLUMNS}) "  # noqa: S608
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                message.to_row(),
            )
            await db.commit()
            return message
        finally:
            await db.close()

    async def get_message(self, message_id: str) -> Message | None:
        """Fetch a message by ID, or None if not found."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM messages WHERE id = ?",  # noqa: S608
                (message_id,),
            )
            row = await cursor.fetchone()
            return Message.from_row(row) if row else None
        finally:
            await db.close()

    async def compare_and_swap(self, message: Message, expected_version: int) -> bool:
        """Write the mutable fields if the stored version still matches.

        Returns False when the row changed underneath (or vanished).
        """
        row = message.to_row()
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                UPDATE messages SET
                    is_delivered = ?, delivered_at = ?, is_viewed = ?, viewed_at = ?,
                    view_count = ?, is_saved = ?, is_view_once = ?, expires_at = ?,
                    reactions = ?, save_grace_until = ?, version = ?
                WHERE id = ? AND version = ?
                """,
                (*row[6:15], row[16], row[17], message.id, expected_version),
            )
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()

    async def delete(self, message_id: str) -> bool:
        """Remove a message. Returns True if a row was removed."""
        db = await self._connect()
        try:
            cursor = await db.execute("DELETE FROM messages WHERE id = ?", (message_id,))
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()

    # -- Queries ---------------------------------------------------------------

    async def list_conversation(self, a: str, b: str) -> list[Message]:
        """All messages between two participants, oldest first."""
        return await self._select(
            "(sender_id = ? AND receiver_id = ?) OR (sender_id = ? AND receiver_id = ?)",
            (a, b, b, a),
        )

    async def list_undelivered(self, sender_id: str, receiver_id: str) -> list[Message]:
        """Messages from *sender_id* still waiting to reach *receiver_id*."""
        return await self._select(
            "sender_id = ? AND receiver_id = ? AND is_delivered = 0",
            (sender_id, receiver_id),
        )

    async def list_reapable(
        self,
        now: datetime,
        pair: tuple[str, str] | None = None,
    ) -> list[Message]:
        """Messages matching the reaper predicate, optionally for one pair."""
        ts = to_iso(now)
        if pair is None:
            return await self._select(_REAPABLE, (ts, ts))
        a, b = pair
        return await self._select(
            f"({_REAPABLE}) AND ((sender_id = ? AND receiver_id = ?) "
            "OR (sender_id = ? AND receiver_id = ?))",
            (ts, ts, a, b, b, a),
        )
