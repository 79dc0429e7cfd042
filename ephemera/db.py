"""Async SQLite connections shared by the message and vault stores.

Every store opens a short-lived ``aiosqlite`` connection per operation.
WAL mode lets the reaper read candidates while request handlers write.
"""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING

import aiosqlite

from ephemera.errors import Unavailable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path


async def connect(path: Path) -> aiosqlite.Connection:
    """Open a connection with WAL mode and a busy timeout."""
    path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(path))
    await db.execute("PRAGMA journal_mode=WAL")
    await db.execute("PRAGMA busy_timeout=5000")
    return db


@contextlib.asynccontextmanager
async def storage_errors(operation: str) -> AsyncIterator[None]:
    """Translate driver failures into :class:`Unavailable`."""
    try:
        yield
    except (aiosqlite.Error, OSError) as exc:
        msg = f"Storage unavailable during {operation}"
        raise Unavailable(msg) from exc
