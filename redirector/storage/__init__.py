"""Persisted configuration store package.

Re-exports the public API for ergonomic imports:

    from redirector.storage import ConfigStore, StorageChange, MemoryStore

Layout:
    protocol.py     — ConfigStore Protocol + StorageChange + ChangeNotifier
    memory.py       — MemoryStore (process-local, used by tests and "memory" backend)
    sqlite_store.py — SQLiteStore (aiosqlite, WAL mode, survives restarts)
    factory.py      — create_store() — backend selection from Config
"""

from redirector.storage.memory import MemoryStore
from redirector.storage.protocol import (
    ChangeListener,
    ChangeNotifier,
    ConfigStore,
    StorageChange,
)

__all__ = [
    "ChangeListener",
    "ChangeNotifier",
    "ConfigStore",
    "MemoryStore",
    "StorageChange",
]
