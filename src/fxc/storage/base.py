"""
Base classes for key-value storage.

Backends store JSON-compatible values under (domain, key) and share one
async interface so the fallback wrapper can treat them uniformly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable

from fxc.types import Backend, StoreDomain

# Predicate deciding which (domain, key) pairs survive a clear
KeepPredicate = Callable[[StoreDomain, str], bool]


class KeyValueBackend(ABC):
    """Abstract interface for key-value storage backends."""

    kind: Backend

    @abstractmethod
    async def get(self, domain: StoreDomain, key: str) -> Any | None:
        """Get a value, or None when the key is missing."""
        ...

    @abstractmethod
    async def set(self, domain: StoreDomain, key: str, value: Any) -> None:
        """Store a value, replacing any existing one.

        Raises:
            StoreWriteError: On a backend fault.
        """
        ...

    @abstractmethod
    async def delete(self, domain: StoreDomain, key: str) -> None:
        """Delete a value; deleting a missing key is a no-op."""
        ...

    @abstractmethod
    async def keys(self, domain: StoreDomain) -> list[str]:
        """List keys held in a domain."""
        ...

    @abstractmethod
    async def clear(self, keep: KeepPredicate | None = None) -> int:
        """Delete every entry not matched by ``keep``; returns the number removed."""
        ...
