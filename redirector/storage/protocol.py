"""ConfigStore Protocol + StorageChange + ChangeNotifier.

The store is an external key-value collaborator consumed through three calls:
get-by-keys, set, and change notification. Change notifications are delivered
asynchronously (on a later event-loop iteration than the write that caused
them); callers must not assume a write's notification has arrived when the
write returns.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Protocol, runtime_checkable

from redirector.utils.logger import get_logger

logger = get_logger(__name__)


# ─── StorageChange ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class StorageChange:
    """Old and new value of one key in a change notification."""

    old_value: Any = None
    new_value: Any = None


ChangeListener = Callable[[dict[str, StorageChange]], None]


# ─── ConfigStore Protocol ─────────────────────────────────────────────────────


@runtime_checkable
class ConfigStore(Protocol):
    """Pluggable persisted-configuration interface.

    Implementations: MemoryStore, SQLiteStore.
    Selection via create_store() factory (storage/factory.py).

    ``created`` is True when the store had no prior state when opened — the
    service treats that as a fresh install.
    """

    created: bool

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        """Return the stored values for ``keys``. Absent keys are omitted.

        Raises:
            StorageError: the read failed.
        """
        ...

    async def set(self, items: Mapping[str, Any]) -> None:
        """Persist ``items``; notify listeners of keys whose value changed.

        Raises:
            StorageError: the write failed; nothing was persisted.
        """
        ...

    def add_listener(self, listener: ChangeListener) -> None:
        """Register a change-notification callback."""
        ...

    async def close(self) -> None:
        """Release resources. Called during graceful shutdown."""
        ...


# ─── ChangeNotifier ───────────────────────────────────────────────────────────


class ChangeNotifier:
    """Listener registry shared by the store implementations.

    notify() schedules delivery with loop.call_soon — listeners never run
    inside the writer's call stack. A failing listener is logged and does not
    stop delivery to the others.
    """

    def __init__(self) -> None:
        self._listeners: list[ChangeListener] = []

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def notify(self, changes: dict[str, StorageChange]) -> None:
        if not changes or not self._listeners:
            return
        asyncio.get_running_loop().call_soon(self._dispatch, dict(changes))

    def _dispatch(self, changes: dict[str, StorageChange]) -> None:
        for listener in list(self._listeners):
            try:
                listener(changes)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "Storage change listener failed (non-fatal)",
                    keys=sorted(changes),
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
