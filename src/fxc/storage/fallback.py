"""
Key-value store abstraction with automatic backend fallback.

Tries the structured SQLite store first and transparently redirects to the
flat JSON store when the structured store cannot be opened or a transaction
fails. The decision is made per call, never cached as a permanent mode
switch: a later call may succeed against the structured store even if an
earlier one fell back. Every read reports which backend served it.
"""

from __future__ import annotations

from typing import Any

import aiosqlite

from fxc.exceptions import StoreUnavailableError, StoreWriteError
from fxc.logging import get_logger
from fxc.storage.base import KeepPredicate
from fxc.storage.flat_store import FlatStore
from fxc.storage.sqlite_store import SQLiteStore
from fxc.types import Backend, StoreDomain, StoreResult

logger = get_logger(__name__)

# Faults of the structured store that trigger a redirect to the flat store
_STRUCTURED_FAULTS = (aiosqlite.Error, StoreWriteError, StoreUnavailableError, OSError)


class FallbackStore:
    """Uniform get/set/remove over a preferred and a fallback backend."""

    def __init__(self, structured: SQLiteStore, flat: FlatStore) -> None:
        """Initialize the store.

        Args:
            structured: Preferred durable, transactional backend.
            flat: Simpler backend used whenever the preferred one is unavailable.
        """
        self.structured = structured
        self.flat = flat

    async def init(self) -> SQLiteStore | None:
        """Open the structured store.

        Returns:
            The structured store handle, or None if it could not be opened.
        """
        if self.structured.is_open:
            return self.structured
        try:
            await self.structured.open()
        except StoreUnavailableError as e:
            logger.warning("Structured store unavailable, using flat store", error=str(e))
            return None
        return self.structured

    async def close(self) -> None:
        await self.structured.close()

    async def get(self, domain: StoreDomain, key: str) -> StoreResult:
        """Read a value; a missing key yields ``StoreResult(None, ...)``, never an error."""
        handle = await self.init()
        if handle is not None:
            try:
                value = await handle.get(domain, key)
            except _STRUCTURED_FAULTS as e:
                logger.warning("Structured read failed, using flat store", key=key, error=str(e))
            else:
                if value is not None:
                    return StoreResult(value, Backend.STRUCTURED)
                # Values written while the structured store was failing live in the flat store
                flat_value = await self.flat.get(domain, key)
                if flat_value is not None:
                    return StoreResult(flat_value, Backend.FLAT)
                return StoreResult(None, Backend.STRUCTURED)

        return StoreResult(await self.flat.get(domain, key), Backend.FLAT)

    async def set(self, domain: StoreDomain, key: str, value: Any) -> Backend:
        """Write a value and return the backend that accepted it.

        Raises:
            StoreWriteError: If both backends fail.
        """
        handle = await self.init()
        if handle is not None:
            try:
                await handle.set(domain, key, value)
                return Backend.STRUCTURED
            except _STRUCTURED_FAULTS as e:
                logger.warning("Structured write failed, using flat store", key=key, error=str(e))

        await self.flat.set(domain, key, value)
        return Backend.FLAT

    async def remove(self, domain: StoreDomain, key: str) -> None:
        """Delete a key from both backends so a fallback copy cannot resurface."""
        handle = await self.init()
        if handle is not None:
            try:
                await handle.delete(domain, key)
            except _STRUCTURED_FAULTS as e:
                logger.warning("Structured delete failed", key=key, error=str(e))
        self.flat.remove_item(key)

    async def keys(self, domain: StoreDomain) -> list[str]:
        """Union of keys held by both backends in a domain."""
        keys = set(await self.flat.keys(domain))
        handle = await self.init()
        if handle is not None:
            try:
                keys.update(await handle.keys(domain))
            except _STRUCTURED_FAULTS as e:
                logger.warning("Structured key listing failed", error=str(e))
        return sorted(keys)

    async def clear(self, keep: KeepPredicate | None = None) -> int:
        """Full-cache clear across both backends, sparing entries matched by ``keep``."""
        removed = await self.flat.clear(keep)
        handle = await self.init()
        if handle is not None:
            try:
                removed += await handle.clear(keep)
            except _STRUCTURED_FAULTS as e:
                logger.warning("Structured clear failed", error=str(e))
        logger.info("Cleared cached data", removed=removed)
        return removed
