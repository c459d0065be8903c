"""State cache — process-resident mirror of the persisted configuration.

The fallback matcher has to decide inside a navigation handler without a
storage round trip, so it reads this cache synchronously. The cache is
process-scoped state with an explicit initialization barrier:

  hydrate()     — one store read at process start; idempotent
  wait_ready()  — every consumer awaits this at least once before read()
  read()        — synchronous Configuration snapshot

Writers (one at a time, all on the event loop):
  hydration                 — replaces the whole snapshot once
  refresh()                 — replaces it again after a failed hydration read
  apply_changes()           — change-notification handler
  set_global_enabled()      — optimistic local update from the toggle action

Echo suppression: apply_changes() compares each incoming value with the value
already applied and reports only keys that actually changed. A toggle applies
its value locally first, so the notification for its own write reports
nothing and triggers no second sync.

Notifications that arrive while hydration is still reading are buffered and
replayed on top of the hydrated snapshot.

A failed hydration read still opens the gate, on defaults, and marks the cache
stale. Every later wait_ready() re-reads the store until one read succeeds;
the on_refresh callback then receives the keys that changed. Notifications
applied while that read is in flight are replayed over its result.
"""

from __future__ import annotations

import asyncio
import dataclasses
from typing import Callable, Mapping, Optional

from redirector.constants import (
    ALL_STORAGE_KEYS,
    STORAGE_KEY_ALLOWLIST,
    STORAGE_KEY_GLOBAL_ENABLED,
    STORAGE_KEY_RULES,
)
from redirector.models import (
    Configuration,
    parse_allowlist,
    parse_global_enabled,
    parse_rules,
)
from redirector.storage.protocol import ConfigStore, StorageChange
from redirector.utils.logger import get_logger

logger = get_logger(__name__)

RefreshListener = Callable[[set[str]], None]


class StateCache:
    """Hydrated, notification-driven Configuration mirror."""

    def __init__(self, store: ConfigStore, on_refresh: Optional[RefreshListener] = None) -> None:
        self._store = store
        self._on_refresh = on_refresh
        self._config = Configuration.defaults()
        self._ready = asyncio.Event()
        self._hydration: Optional[asyncio.Task[None]] = None
        self._pending: list[Mapping[str, StorageChange]] = []
        self._stale = False
        self._refresh: Optional[asyncio.Task[set[str]]] = None
        self._replay: Optional[list[Mapping[str, StorageChange]]] = None

    # ── Hydration gate ────────────────────────────────────────────────────────

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    @property
    def stale(self) -> bool:
        """True while the snapshot is defaults standing in for an unread store."""
        return self._stale

    async def hydrate(self) -> None:
        """Read the persisted configuration once. Later calls await the same read."""
        if self._hydration is None:
            self._hydration = asyncio.ensure_future(self._hydrate_once())
        await asyncio.shield(self._hydration)

    async def wait_ready(self) -> None:
        await self._ready.wait()
        if self._stale:
            await self.refresh()

    async def refresh(self) -> set[str]:
        """Re-read the store if the hydration read failed. Returns the changed keys.

        Concurrent callers share one read. A no-op once the cache is not stale.
        """
        if not self._stale:
            return set()
        if self._refresh is None:
            self._refresh = asyncio.ensure_future(self._refresh_once())
        return await asyncio.shield(self._refresh)

    async def _hydrate_once(self) -> None:
        try:
            raw = await self._store.get(ALL_STORAGE_KEYS)
            config = Configuration.from_storage(raw)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Cache hydration read failed — starting from defaults",
                error=str(exc),
            )
            config = Configuration.defaults()
            self._stale = True

        self._config = config
        pending, self._pending = self._pending, []
        for changes in pending:
            self._apply(changes)
        self._ready.set()
        logger.info(
            "State cache hydrated",
            rules=len(self._config.rules),
            allowlist=len(self._config.allowlist),
            global_enabled=self._config.global_enabled,
            replayed_notifications=len(pending),
            stale=self._stale,
        )

    async def _refresh_once(self) -> set[str]:
        self._replay = []
        try:
            raw = await self._store.get(ALL_STORAGE_KEYS)
            config = Configuration.from_storage(raw)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Cache refresh read failed — still on defaults", error=str(exc))
            return set()
        else:
            previous = self._config
            self._config = config
            for changes in self._replay:
                self._apply(changes)
            self._stale = False
        finally:
            self._replay = None
            self._refresh = None

        changed = _changed_keys(previous, self._config)
        logger.info(
            "State cache refreshed",
            rules=len(self._config.rules),
            allowlist=len(self._config.allowlist),
            global_enabled=self._config.global_enabled,
            changed=sorted(changed),
        )
        if changed and self._on_refresh is not None:
            self._on_refresh(changed)
        return changed

    # ── Reads ─────────────────────────────────────────────────────────────────

    def read(self) -> Configuration:
        """Synchronous snapshot. Call only after wait_ready() has returned once."""
        return self._config

    # ── Writes ────────────────────────────────────────────────────────────────

    def apply_changes(self, changes: Mapping[str, StorageChange]) -> set[str]:
        """Apply a change notification; return the keys whose value changed.

        Before hydration completes the notification is buffered and an empty
        set is returned — hydration itself triggers the first sync.
        """
        if not self.ready:
            self._pending.append(dict(changes))
            return set()
        if self._replay is not None:
            self._replay.append(dict(changes))
        return self._apply(changes)

    def set_global_enabled(self, enabled: bool) -> bool:
        """Optimistically set the global switch. Returns True if it changed."""
        if self._config.global_enabled == enabled:
            return False
        self._config = dataclasses.replace(self._config, global_enabled=enabled)
        return True

    def _apply(self, changes: Mapping[str, StorageChange]) -> set[str]:
        current = self._config
        updates: dict[str, object] = {}

        if STORAGE_KEY_RULES in changes:
            rules = parse_rules(changes[STORAGE_KEY_RULES].new_value)
            if rules != current.rules:
                updates["rules"] = rules
        if STORAGE_KEY_ALLOWLIST in changes:
            allowlist = parse_allowlist(changes[STORAGE_KEY_ALLOWLIST].new_value)
            if allowlist != current.allowlist:
                updates["allowlist"] = allowlist
        if STORAGE_KEY_GLOBAL_ENABLED in changes:
            enabled = parse_global_enabled(changes[STORAGE_KEY_GLOBAL_ENABLED].new_value)
            if enabled != current.global_enabled:
                updates["global_enabled"] = enabled

        if not updates:
            logger.debug("Change notification already applied — skipping", keys=sorted(changes))
            return set()

        self._config = dataclasses.replace(current, **updates)
        changed = {_FIELD_TO_KEY[name] for name in updates}
        logger.debug("Change notification applied", changed=sorted(changed))
        return changed


_FIELD_TO_KEY = {
    "rules": STORAGE_KEY_RULES,
    "allowlist": STORAGE_KEY_ALLOWLIST,
    "global_enabled": STORAGE_KEY_GLOBAL_ENABLED,
}


def _changed_keys(before: Configuration, after: Configuration) -> set[str]:
    return {
        key
        for name, key in _FIELD_TO_KEY.items()
        if getattr(before, name) != getattr(after, name)
    }
