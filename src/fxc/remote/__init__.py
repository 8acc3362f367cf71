"""
Remote data cache package.

- cache.py: Network-first currency list and rate loading with cache fallback
- selection.py: Currency pair reconciliation and persistence
"""

from fxc.remote.cache import RemoteDataCache
from fxc.remote.selection import load_selection, reconcile_selection, save_selection

__all__ = [
    "RemoteDataCache",
    "load_selection",
    "reconcile_selection",
    "save_selection",
]
