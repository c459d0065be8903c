"""MemoryStore — process-local ConfigStore.

Values are deep-copied on the way in and out so callers can never mutate
stored state by holding on to a returned list.
"""

from __future__ import annotations

import copy
from typing import Any, Iterable, Mapping, Optional

from redirector.storage.protocol import ChangeListener, ChangeNotifier, StorageChange
from redirector.utils.logger import get_logger

logger = get_logger(__name__)


class MemoryStore:
    """In-memory key-value store with asynchronous change notifications."""

    def __init__(self, initial: Optional[Mapping[str, Any]] = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(dict(initial or {}))
        self._notifier = ChangeNotifier()
        self.created = not self._data

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        return {key: copy.deepcopy(self._data[key]) for key in keys if key in self._data}

    async def set(self, items: Mapping[str, Any]) -> None:
        changes: dict[str, StorageChange] = {}
        for key, value in items.items():
            old = self._data.get(key)
            if key in self._data and old == value:
                continue
            changes[key] = StorageChange(old_value=copy.deepcopy(old), new_value=copy.deepcopy(value))
            self._data[key] = copy.deepcopy(value)
        logger.debug("MemoryStore write", keys=sorted(items), changed=sorted(changes))
        self._notifier.notify(changes)

    def add_listener(self, listener: ChangeListener) -> None:
        self._notifier.add_listener(listener)

    async def close(self) -> None:
        logger.debug("MemoryStore.close")
