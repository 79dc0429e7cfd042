"""VaultStore — aiosqlite persistence for vault items."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ephemera.config import settings
from ephemera.db import connect
from ephemera.vault.models import VaultItem

if TYPE_CHECKING:
    from pathlib import Path

    import aiosqlite

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS vault_items (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    source_media_ref TEXT NOT NULL,
    kind TEXT NOT NULL,
    file_name TEXT NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL
)
"""


class VaultStore:
    """Persists vault items in SQLite, next to the messages table.

    Pass an explicit *db_path* for test isolation.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False

    async def _connect(self) -> aiosqlite.Connection:
        db = await connect(self._db_path)
        if not self._initialised:
            await db.execute(_CREATE_TABLE)
            await db.commit()
            self._initialised = True
        return db

    async def add(self, item: VaultItem) -> VaultItem:
        """Insert a new vault item. Returns the same item object."""
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT INTO vault_items
                    (id, owner_id, source_media_ref, kind, file_name, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                item.to_row(),
            )
            await db.commit()
            logger.info("Added vault item %s for owner %s", item.id, item.owner_id)
            return item
        finally:
            await db.close()

    async def list_items(self, owner_id: str) -> list[VaultItem]:
        """Return the owner's vault items, newest first."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT * FROM vault_items WHERE owner_id = ? ORDER BY created_at DESC",
                (owner_id,),
            )
            rows = await cursor.fetchall()
            return [VaultItem.from_row(row) for row in rows]
        finally:
            await db.close()
