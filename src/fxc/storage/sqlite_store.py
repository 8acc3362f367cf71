"""
Structured, transactional key-value store backed by SQLite.

One table per domain (currencies, rates, settings). Values are serialized
with orjson. Each write runs in its own transaction so record replacement
is atomic per key.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import aiosqlite
import orjson

from fxc.exceptions import StoreUnavailableError, StoreWriteError
from fxc.logging import get_logger
from fxc.storage.base import KeepPredicate, KeyValueBackend
from fxc.types import Backend, StoreDomain

logger = get_logger(__name__)


class SQLiteStore(KeyValueBackend):
    """Durable store with one table per domain.

    The database lives at ``{cache_dir}/store.db``.
    """

    kind = Backend.STRUCTURED

    def __init__(self, db_path: str | Path) -> None:
        """Initialize SQLite store.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None

    @property
    def is_open(self) -> bool:
        return self._db is not None

    async def open(self) -> None:
        """Open the database and create the domain tables.

        Raises:
            StoreUnavailableError: If the database cannot be opened.
        """
        if self._db is not None:
            return

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            db = await aiosqlite.connect(self.db_path)
        except (OSError, aiosqlite.Error) as e:
            raise StoreUnavailableError(
                "Failed to open structured store",
                context={"path": str(self.db_path), "error": str(e)},
            ) from e

        try:
            for domain in StoreDomain:
                await db.execute(f"""
                    CREATE TABLE IF NOT EXISTS {domain.value} (
                        key TEXT PRIMARY KEY,
                        value BLOB NOT NULL
                    )
                """)
            await db.commit()
        except aiosqlite.Error as e:
            await db.close()
            raise StoreUnavailableError(
                "Failed to create structured store schema",
                context={"path": str(self.db_path), "error": str(e)},
            ) from e

        self._db = db
        logger.debug("Structured store opened", path=str(self.db_path))

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if not self._db:
            raise RuntimeError("SQLiteStore not opened. Call open() first.")
        return self._db

    async def get(self, domain: StoreDomain, key: str) -> Any | None:
        """Get a value, or None when the key is missing."""
        async with self._conn().execute(
            f"SELECT value FROM {StoreDomain(domain).value} WHERE key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()

        if row is None:
            return None
        return orjson.loads(row[0])

    async def set(self, domain: StoreDomain, key: str, value: Any) -> None:
        """Store a value in a single transaction."""
        db = self._conn()
        try:
            payload = orjson.dumps(value)
            await db.execute(
                f"INSERT OR REPLACE INTO {StoreDomain(domain).value} (key, value) VALUES (?, ?)",
                (key, payload),
            )
            await db.commit()
        except (aiosqlite.Error, TypeError, orjson.JSONEncodeError) as e:
            await db.rollback()
            raise StoreWriteError(
                "Structured store write failed",
                context={"domain": StoreDomain(domain).value, "key": key, "error": str(e)},
            ) from e

    async def delete(self, domain: StoreDomain, key: str) -> None:
        """Delete a value."""
        db = self._conn()
        try:
            await db.execute(
                f"DELETE FROM {StoreDomain(domain).value} WHERE key = ?", (key,)
            )
            await db.commit()
        except aiosqlite.Error as e:
            await db.rollback()
            raise StoreWriteError(
                "Structured store delete failed",
                context={"domain": StoreDomain(domain).value, "key": key, "error": str(e)},
            ) from e

    async def keys(self, domain: StoreDomain) -> list[str]:
        """List keys held in a domain."""
        async with self._conn().execute(
            f"SELECT key FROM {StoreDomain(domain).value} ORDER BY key"
        ) as cursor:
            rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def clear(self, keep: KeepPredicate | None = None) -> int:
        """Delete every entry not matched by ``keep``."""
        removed = 0
        for domain in StoreDomain:
            for key in await self.keys(domain):
                if keep is not None and keep(domain, key):
                    continue
                await self.delete(domain, key)
                removed += 1
        return removed
