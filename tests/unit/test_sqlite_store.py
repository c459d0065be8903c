"""Unit tests for SQLiteStore and create_store() — redirector/storage/.

Covers:
  - schema creation, WAL mode, user_version guard
  - fresh install detection (created)
  - JSON round trip of stored values, persistence across reopen
  - change notifications after commit
  - StorageError on unusable state, corrupt rows read as absent
  - create_store() backend selection
"""

from __future__ import annotations

import asyncio
from typing import Any

import aiosqlite
import pytest

from redirector.config import Config, StorageConfig
from redirector.errors import StorageError
from redirector.storage import ConfigStore, MemoryStore, StorageChange
from redirector.storage.factory import create_store
from redirector.storage.sqlite_store import SQLiteStore

# ─── Schema + WAL ─────────────────────────────────────────────────────────────


class TestSQLiteStoreSchema:
    async def test_fresh_db_creates_schema_and_reports_created(self, tmp_path: Any) -> None:
        db_path = str(tmp_path / "state.db")
        store = SQLiteStore(db_path=db_path)
        await store.initialize()
        assert store.created is True
        await store.close()

        async with aiosqlite.connect(db_path) as db:
            cursor = await db.execute("PRAGMA user_version;")
            assert (await cursor.fetchone())[0] == 1
            cursor = await db.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name='settings'"
            )
            assert await cursor.fetchone() is not None

    async def test_wal_mode_enabled(self, tmp_path: Any) -> None:
        db_path = str(tmp_path / "state.db")
        store = SQLiteStore(db_path=db_path)
        await store.initialize()
        await store.close()

        async with aiosqlite.connect(db_path) as db:
            cursor = await db.execute("PRAGMA journal_mode;")
            assert (await cursor.fetchone())[0] == "wal"

    async def test_reopen_is_not_a_fresh_install(self, tmp_path: Any) -> None:
        db_path = str(tmp_path / "state.db")
        first = SQLiteStore(db_path=db_path)
        await first.initialize()
        await first.close()

        second = SQLiteStore(db_path=db_path)
        await second.initialize()
        assert second.created is False
        await second.close()

    async def test_unknown_schema_version_refuses_startup(self, tmp_path: Any) -> None:
        db_path = str(tmp_path / "state.db")
        async with aiosqlite.connect(db_path) as db:
            await db.execute("PRAGMA user_version = 7;")
            await db.commit()

        store = SQLiteStore(db_path=db_path)
        with pytest.raises(RuntimeError, match="schema version"):
            await store.initialize()

    async def test_parent_directory_is_created(self, tmp_path: Any) -> None:
        db_path = tmp_path / "nested" / "dir" / "state.db"
        store = SQLiteStore(db_path=str(db_path))
        await store.initialize()
        await store.close()
        assert db_path.exists()


# ─── Reads / writes ───────────────────────────────────────────────────────────


class TestSQLiteStoreReadWrite:
    async def test_satisfies_protocol(self, tmp_path: Any) -> None:
        assert isinstance(SQLiteStore(str(tmp_path / "s.db")), ConfigStore)

    async def test_values_round_trip_and_persist(self, tmp_path: Any) -> None:
        db_path = str(tmp_path / "state.db")
        rules = [{"source": "old.site.com/*", "target": "https://new.site.com", "enabled": True}]

        store = SQLiteStore(db_path=db_path)
        await store.initialize()
        await store.set({"redirectRules": rules, "globalEnabled": False})
        await store.close()

        reopened = SQLiteStore(db_path=db_path)
        await reopened.initialize()
        values = await reopened.get(["redirectRules", "globalEnabled", "allowlistRules"])
        await reopened.close()

        assert values == {"redirectRules": rules, "globalEnabled": False}

    async def test_set_notifies_changed_keys_only(self, tmp_path: Any) -> None:
        store = SQLiteStore(db_path=str(tmp_path / "state.db"))
        await store.initialize()
        received: list[dict[str, StorageChange]] = []
        store.add_listener(received.append)

        await store.set({"globalEnabled": True})
        await store.set({"globalEnabled": True, "allowlistRules": ["a.com"]})
        await asyncio.sleep(0)
        await store.close()

        assert received == [
            {"globalEnabled": StorageChange(old_value=None, new_value=True)},
            {"allowlistRules": StorageChange(old_value=None, new_value=["a.com"])},
        ]

    async def test_unserialisable_value_raises_storage_error(self, tmp_path: Any) -> None:
        store = SQLiteStore(db_path=str(tmp_path / "state.db"))
        await store.initialize()
        with pytest.raises(StorageError):
            await store.set({"globalEnabled": object()})
        await store.close()

    async def test_use_before_initialize_raises_storage_error(self, tmp_path: Any) -> None:
        store = SQLiteStore(db_path=str(tmp_path / "state.db"))
        with pytest.raises(StorageError):
            await store.get(["globalEnabled"])

    async def test_corrupt_row_is_read_as_absent_value(self, tmp_path: Any) -> None:
        db_path = str(tmp_path / "state.db")
        store = SQLiteStore(db_path=db_path)
        await store.initialize()
        await store.close()
        async with aiosqlite.connect(db_path) as db:
            await db.execute(
                "INSERT INTO settings(key, value) VALUES('globalEnabled', '{not json')"
            )
            await db.commit()

        reopened = SQLiteStore(db_path=db_path)
        await reopened.initialize()
        assert await reopened.get(["globalEnabled"]) == {"globalEnabled": None}
        await reopened.close()

    async def test_close_is_idempotent(self, tmp_path: Any) -> None:
        store = SQLiteStore(db_path=str(tmp_path / "state.db"))
        await store.initialize()
        await store.close()
        await store.close()


# ─── create_store() ───────────────────────────────────────────────────────────


class TestCreateStore:
    async def test_memory_backend(self) -> None:
        store = await create_store(Config(storage=StorageConfig(backend="memory")))
        assert isinstance(store, MemoryStore)
        await store.close()

    async def test_sqlite_backend_is_initialized(self, tmp_path: Any) -> None:
        config = Config(storage=StorageConfig(backend="sqlite", path=str(tmp_path / "s.db")))
        store = await create_store(config)
        assert isinstance(store, SQLiteStore)
        assert store.created is True
        assert await store.get(["globalEnabled"]) == {}
        await store.close()
