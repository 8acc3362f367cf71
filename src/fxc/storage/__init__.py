"""
Storage package for cached data persistence.

This package provides:
- SQLiteStore (sqlite_store.py): Structured, transactional store with one table per domain
- FlatStore (flat_store.py): Flat string-keyed JSON document used as a fallback
- FallbackStore (fallback.py): Tries the structured store and falls back per call
"""

from pathlib import Path

from fxc.storage.fallback import FallbackStore
from fxc.storage.flat_store import FlatStore
from fxc.storage.sqlite_store import SQLiteStore

__all__ = ["FallbackStore", "FlatStore", "SQLiteStore", "open_store"]


def open_store(cache_dir: Path) -> FallbackStore:
    """Build the standard store layout under ``cache_dir``."""
    return FallbackStore(
        structured=SQLiteStore(cache_dir / "store.db"),
        flat=FlatStore(cache_dir / "store.json"),
    )
