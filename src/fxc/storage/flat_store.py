"""
Flat, synchronous string-keyed fallback store.

A single JSON document on disk mapping key -> JSON text. Keys are used
directly without a domain prefix, so the persisted layout matches the
structured store's keys. Writes replace the file atomically.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import orjson

from fxc.exceptions import StoreWriteError
from fxc.logging import get_logger
from fxc.storage.base import KeepPredicate, KeyValueBackend
from fxc.types import Backend, StoreDomain

logger = get_logger(__name__)


def domain_for_key(key: str) -> StoreDomain:
    """Infer the domain a flat key belongs to from its layout."""
    if key.startswith("credential-") or key.startswith("selected-"):
        return StoreDomain.SETTINGS
    if key.count(":") == 2:
        return StoreDomain.RATES
    return StoreDomain.CURRENCIES


class FlatStore(KeyValueBackend):
    """String-keyed store persisted as one JSON file.

    The synchronous ``*_item`` methods mirror a plain string key-value API;
    the async methods adapt them to the backend interface and serialize
    values as JSON text.
    """

    kind = Backend.FLAT

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    # ------------------------------------------------------------------ #
    # Synchronous string API
    # ------------------------------------------------------------------ #

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = orjson.loads(self.path.read_bytes())
        except (OSError, orjson.JSONDecodeError) as e:
            logger.warning("Flat store unreadable, starting empty", error=str(e))
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _save(self, items: dict[str, str]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(orjson.dumps(items, option=orjson.OPT_SORT_KEYS))
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StoreWriteError(
                "Flat store write failed",
                context={"path": str(self.path), "error": str(e)},
            ) from e

    def get_item(self, key: str) -> str | None:
        return self._load().get(key)

    def set_item(self, key: str, text: str) -> None:
        items = self._load()
        items[key] = text
        self._save(items)

    def remove_item(self, key: str) -> None:
        items = self._load()
        if items.pop(key, None) is not None:
            self._save(items)

    def item_keys(self) -> list[str]:
        return sorted(self._load())

    # ------------------------------------------------------------------ #
    # Backend interface
    # ------------------------------------------------------------------ #

    async def get(self, domain: StoreDomain, key: str) -> Any | None:
        text = self.get_item(key)
        if text is None:
            return None
        try:
            return orjson.loads(text)
        except orjson.JSONDecodeError:
            logger.warning("Discarding unparseable flat store value", key=key)
            return None

    async def set(self, domain: StoreDomain, key: str, value: Any) -> None:
        try:
            text = orjson.dumps(value).decode("utf-8")
        except TypeError as e:
            raise StoreWriteError(
                "Value is not serializable", context={"key": key, "error": str(e)}
            ) from e
        self.set_item(key, text)

    async def delete(self, domain: StoreDomain, key: str) -> None:
        self.remove_item(key)

    async def keys(self, domain: StoreDomain) -> list[str]:
        return [k for k in self.item_keys() if domain_for_key(k) == StoreDomain(domain)]

    async def clear(self, keep: KeepPredicate | None = None) -> int:
        items = self._load()
        kept = {
            k: v for k, v in items.items()
            if keep is not None and keep(domain_for_key(k), k)
        }
        removed = len(items) - len(kept)
        if removed:
            self._save(kept)
        return removed
