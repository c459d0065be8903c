"""Unit tests for MemoryStore and ChangeNotifier — redirector/storage/."""

from __future__ import annotations

import asyncio

from redirector.storage import ChangeNotifier, ConfigStore, MemoryStore, StorageChange


class TestMemoryStore:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(MemoryStore(), ConfigStore)

    def test_created_reflects_empty_initial_state(self) -> None:
        assert MemoryStore().created is True
        assert MemoryStore({"globalEnabled": False}).created is False

    async def test_get_omits_absent_keys(self) -> None:
        store = MemoryStore({"globalEnabled": False})
        assert await store.get(["globalEnabled", "redirectRules"]) == {"globalEnabled": False}

    async def test_returned_values_are_copies(self) -> None:
        store = MemoryStore({"allowlistRules": ["a.com"]})
        values = await store.get(["allowlistRules"])
        values["allowlistRules"].append("mutated.com")
        assert await store.get(["allowlistRules"]) == {"allowlistRules": ["a.com"]}

    async def test_notification_is_delivered_after_the_write_returns(self) -> None:
        store = MemoryStore()
        received: list[dict[str, StorageChange]] = []
        store.add_listener(received.append)

        await store.set({"globalEnabled": False})
        assert received == []  # not inside the writer's call stack

        await asyncio.sleep(0)
        assert received == [{"globalEnabled": StorageChange(old_value=None, new_value=False)}]

    async def test_unchanged_values_are_not_notified(self) -> None:
        store = MemoryStore({"globalEnabled": True})
        received: list[dict[str, StorageChange]] = []
        store.add_listener(received.append)

        await store.set({"globalEnabled": True, "allowlistRules": ["a.com"]})
        await asyncio.sleep(0)

        assert len(received) == 1
        assert set(received[0]) == {"allowlistRules"}


class TestChangeNotifier:
    async def test_failing_listener_does_not_stop_delivery(self) -> None:
        notifier = ChangeNotifier()
        received: list[dict[str, StorageChange]] = []

        def broken(changes: dict[str, StorageChange]) -> None:
            raise RuntimeError("listener bug")

        notifier.add_listener(broken)
        notifier.add_listener(received.append)
        notifier.notify({"globalEnabled": StorageChange(True, False)})
        await asyncio.sleep(0)

        assert received == [{"globalEnabled": StorageChange(True, False)}]

    async def test_empty_changes_are_not_dispatched(self) -> None:
        notifier = ChangeNotifier()
        received: list[dict[str, StorageChange]] = []
        notifier.add_listener(received.append)
        notifier.notify({})
        await asyncio.sleep(0)
        assert received == []
