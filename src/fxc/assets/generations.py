"""
Durable storage for asset cache generations.

A generation is a named container of request-identity -> response pairs.
Generations live in SQLite at ``{cache_dir}/assets.db``: one row per
generation and one row per cached response.
"""

from __future__ import annotations

from pathlib import Path

import aiosqlite
import orjson

from fxc.assets.models import AssetRequest, AssetResponse, search_free_key
from fxc.exceptions import StoreUnavailableError
from fxc.logging import get_logger
from fxc.types import utc_now

logger = get_logger(__name__)


class GenerationStore:
    """SQLite-backed container of named generations."""

    def __init__(self, db_path: str | Path) -> None:
        """Initialize generation store.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None

    async def open(self) -> None:
        """Open the database and create the schema.

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
                "Failed to open asset generation store",
                context={"path": str(self.db_path), "error": str(e)},
            ) from e

        try:
            await db.execute("PRAGMA foreign_keys = ON")
            await db.execute("""
                CREATE TABLE IF NOT EXISTS generations (
                    name TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS entries (
                    generation TEXT NOT NULL
                        REFERENCES generations(name) ON DELETE CASCADE,
                    request_key TEXT NOT NULL,
                    search_free_key TEXT NOT NULL,
                    status INTEGER NOT NULL,
                    headers BLOB NOT NULL,
                    body BLOB NOT NULL,
                    stored_at TEXT NOT NULL,
                    PRIMARY KEY (generation, request_key)
                )
            """)
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_entries_search_free "
                "ON entries(generation, search_free_key)"
            )
            await db.commit()
        except aiosqlite.Error as e:
            await db.close()
            raise StoreUnavailableError(
                "Failed to create asset generation schema",
                context={"path": str(self.db_path), "error": str(e)},
            ) from e
        self._db = db

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if not self._db:
            raise RuntimeError("GenerationStore not opened. Call open() first.")
        return self._db

    async def names(self) -> list[str]:
        """Names of every stored generation."""
        async with self._conn().execute(
            "SELECT name FROM generations ORDER BY created_at, name"
        ) as cursor:
            rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def open_generation(self, name: str) -> Generation:
        """Return the named generation, creating it if needed."""
        db = self._conn()
        await db.execute(
            "INSERT OR IGNORE INTO generations (name, created_at) VALUES (?, ?)",
            (name, utc_now().isoformat()),
        )
        await db.commit()
        return Generation(self, name)

    async def delete(self, name: str) -> bool:
        """Delete a generation and all of its entries."""
        db = self._conn()
        cursor = await db.execute("DELETE FROM generations WHERE name = ?", (name,))
        await db.commit()
        return cursor.rowcount > 0


class Generation:
    """Handle on one named generation."""

    def __init__(self, store: GenerationStore, name: str) -> None:
        self.store = store
        self.name = name

    async def put(self, request: AssetRequest, response: AssetResponse) -> None:
        """Store a response, replacing any previous one for the same request."""
        db = self.store._conn()
        await db.execute(
            """
            INSERT OR REPLACE INTO entries (
                generation, request_key, search_free_key, status, headers, body, stored_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                self.name,
                request.key,
                search_free_key(request.url),
                response.status,
                orjson.dumps(response.headers),
                response.body,
                utc_now().isoformat(),
            ),
        )
        await db.commit()

    async def match(
        self, request: AssetRequest | str, ignore_search: bool = False
    ) -> AssetResponse | None:
        """Find the cached response for a request.

        With ``ignore_search`` the query string is disregarded when no exact
        match exists.
        """
        if isinstance(request, str):
            request = AssetRequest(url=request)
        db = self.store._conn()

        async with db.execute(
            "SELECT request_key, status, headers, body FROM entries "
            "WHERE generation = ? AND request_key = ?",
            (self.name, request.key),
        ) as cursor:
            row = await cursor.fetchone()

        if row is None and ignore_search:
            async with db.execute(
                "SELECT request_key, status, headers, body FROM entries "
                "WHERE generation = ? AND search_free_key = ? ORDER BY stored_at DESC",
                (self.name, search_free_key(request.url)),
            ) as cursor:
                row = await cursor.fetchone()

        if row is None:
            return None
        return AssetResponse(
            url=row[0],
            status=row[1],
            headers=orjson.loads(row[2]),
            body=row[3],
            from_cache=True,
        )

    async def keys(self) -> list[str]:
        """Request identities held in this generation."""
        async with self.store._conn().execute(
            "SELECT request_key FROM entries WHERE generation = ? ORDER BY request_key",
            (self.name,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [row[0] for row in rows]
