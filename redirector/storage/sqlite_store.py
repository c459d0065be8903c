"""SQLiteStore — aiosqlite-based persisted configuration store.

Uses aiosqlite EXCLUSIVELY. The stdlib sqlite3 synchronous module is never
used on the event loop.

Features:
  - WAL mode: PRAGMA journal_mode=WAL
  - Schema version guard: PRAGMA user_version=1 — RuntimeError on mismatch, refuse startup
  - Long-lived connection: opened in initialize(), closed in close()
  - One row per key in ``settings``; values stored as JSON text
  - Writes are serialized and committed before listeners are notified
"""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Iterable, Mapping, Optional

import aiosqlite

from redirector.errors import StorageError
from redirector.storage.protocol import ChangeListener, ChangeNotifier, StorageChange
from redirector.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Schema DDL ───────────────────────────────────────────────────────────────

_CREATE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS settings (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
"""

_UPSERT_SQL = """
INSERT INTO settings(key, value) VALUES(?, ?)
ON CONFLICT(key) DO UPDATE SET
    value = excluded.value,
    updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now')
"""

_SCHEMA_VERSION = 1


class SQLiteStore:
    """Async SQLite key-value store.

    Usage:
        store = SQLiteStore("~/.redirector/state.db")
        await store.initialize()     # raises RuntimeError on schema version mismatch
        store.add_listener(on_changed)
        await store.set({"globalEnabled": False})
        values = await store.get(["globalEnabled"])
        await store.close()

    ``created`` is True when initialize() had to create the schema (fresh install).
    """

    def __init__(self, db_path: str = "~/.redirector/state.db") -> None:
        self._db_path: str = os.path.expanduser(db_path)
        self._db: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()
        self._notifier = ChangeNotifier()
        self.created = False

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Open the connection, enable WAL mode, and create/verify the schema.

        Raises:
            RuntimeError: If PRAGMA user_version is neither 0 nor 1.
                          The service lifespan lets this propagate and refuses startup.
        """
        parent_dir = os.path.dirname(self._db_path)
        if parent_dir:
            os.makedirs(parent_dir, exist_ok=True)

        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL;")

        cursor = await self._db.execute("PRAGMA user_version;")
        row = await cursor.fetchone()
        current_version: int = row[0] if row else 0

        if current_version == 0:
            await self._db.executescript(_CREATE_SCHEMA_SQL)
            await self._db.execute(f"PRAGMA user_version = {_SCHEMA_VERSION};")
            await self._db.commit()
            self.created = True
            logger.info(
                "state_db_schema_created",
                db_path=self._db_path,
                schema_version=_SCHEMA_VERSION,
            )
        elif current_version == _SCHEMA_VERSION:
            logger.info(
                "state_db_schema_ok",
                db_path=self._db_path,
                schema_version=current_version,
            )
        else:
            await self._db.close()
            self._db = None
            raise RuntimeError(
                f"Unsupported state database schema version: {current_version}. "
                f"Delete {self._db_path} to reset."
            )

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._db is not None:
            await self._db.close()
            self._db = None
            logger.info("state_db_closed", db_path=self._db_path)

    # ── ConfigStore ───────────────────────────────────────────────────────────

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        wanted = list(keys)
        if not wanted:
            return {}
        db = self._require_db()
        placeholders = ",".join("?" for _ in wanted)
        try:
            cursor = await db.execute(
                f"SELECT key, value FROM settings WHERE key IN ({placeholders})",
                wanted,
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StorageError(f"Settings read failed: {exc}") from exc
        return {row["key"]: _decode(row["key"], row["value"]) for row in rows}

    async def set(self, items: Mapping[str, Any]) -> None:
        if not items:
            return
        db = self._require_db()
        try:
            encoded = {key: json.dumps(value) for key, value in items.items()}
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Value is not JSON-serialisable: {exc}") from exc

        async with self._write_lock:
            previous = await self.get(items.keys())
            try:
                await db.executemany(_UPSERT_SQL, list(encoded.items()))
                await db.commit()
            except aiosqlite.Error as exc:
                await db.rollback()
                raise StorageError(f"Settings write failed: {exc}") from exc

        changes: dict[str, StorageChange] = {}
        for key, value in items.items():
            old = previous.get(key)
            if key in previous and old == value:
                continue
            changes[key] = StorageChange(old_value=old, new_value=value)
        logger.debug("state_db_write", keys=sorted(items), changed=sorted(changes))
        self._notifier.notify(changes)

    def add_listener(self, listener: ChangeListener) -> None:
        self._notifier.add_listener(listener)

    # ── Internals ─────────────────────────────────────────────────────────────

    def _require_db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError("SQLiteStore is not initialized")
        return self._db


def _decode(key: str, raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Stored value is not valid JSON — treating as absent", key=key)
        return None
