"""SQLite-based key-value store.

Mirrors how mobile platforms back their async key-value storage with a
single SQLite table. Uses aiosqlite so reads and writes never block the
event loop.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from quippix.core.errors import StorageError
from quippix.core.logging import get_logger
from quippix.state.base import KeyValueStore
from quippix.utils.time import utc_now

_logger = get_logger("state.sqlite")

SCHEMA_VERSION = 1


class SQLiteKeyValueStore(KeyValueStore):
    """Key-value storage in a SQLite database.

    Schema: ``kv(key TEXT PRIMARY KEY, value TEXT NOT NULL, updated_at TEXT)``.
    """

    def __init__(self, db_path: str | Path) -> None:
        """Initialize SQLite store.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        await self._ensure_initialized()
        try:
            async with aiosqlite.connect(self.db_path) as db:
                yield db
        except aiosqlite.Error as e:
            raise StorageError(f"SQLite store {self.db_path} failed: {e}") from e

    async def _ensure_initialized(self) -> None:
        if self._initialized:
            return

        async with self._init_lock:
            # Another coroutine may have finished while we waited
            if self._initialized:
                return
            try:
                async with aiosqlite.connect(self.db_path) as db:
                    await db.execute("""
                        CREATE TABLE IF NOT EXISTS kv (
                            key TEXT PRIMARY KEY,
                            value TEXT NOT NULL,
                            updated_at TEXT NOT NULL
                        )
                    """)
                    await db.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
                    await db.commit()
            except aiosqlite.Error as e:
                raise StorageError(f"Cannot initialize {self.db_path}: {e}") from e
            self._initialized = True
            _logger.debug("store_initialized", path=str(self.db_path))

    async def get(self, key: str) -> str | None:
        async with self._connect() as db:
            cursor = await db.execute("SELECT value FROM kv WHERE key = ?", (key,))
            row = await cursor.fetchone()
            return row[0] if row else None

    async def set(self, key: str, value: str) -> None:
        async with self._connect() as db:
            await db.execute(
                """
                INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value, utc_now().isoformat()),
            )
            await db.commit()

    async def remove(self, key: str) -> None:
        async with self._connect() as db:
            await db.execute("DELETE FROM kv WHERE key = ?", (key,))
            await db.commit()
