"""Named-collection persistence for abilitybot.

Provides the Store ABC, an in-process MemoryStore, and the
file-backed SQLiteStore, plus the snapshot codec used for backups.
"""

from .base import Store, group_key
from .memory import MemoryStore
from .sqlite import SQLiteStore

__all__ = [
    "Store",
    "MemoryStore",
    "SQLiteStore",
    "group_key",
]
