"""Async SQLite connection helper over aiosqlite.

Every store opens a short-lived connection per logical operation.  The
connection is configured for the single-user local case:

- WAL journal so readers are not blocked by the writer
- a busy timeout instead of immediate ``database is locked`` failures
- foreign keys enforced (SQLite leaves them off by default)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite

if TYPE_CHECKING:
    from pathlib import Path


async def get_connection(path: Path) -> aiosqlite.Connection:
    """Open a configured connection to the database at *path*.

    Parent directories are created on demand.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(str(path))
    try:
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA busy_timeout=5000")
        await conn.execute("PRAGMA foreign_keys=ON")
    except aiosqlite.Error:
        await conn.close()
        raise
    return conn
