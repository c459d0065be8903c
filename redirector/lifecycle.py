"""Lifecycle coordinator — wires external signals into the core.

Signals handled:
    on_installed / on_startup  — hydrate the cache (once), set the indicator,
                                 full rule sync
    on_toggle                  — flip the global switch
    on_storage_changed         — apply a change notification, re-sync if needed
    on_navigation              — fallback matcher

Data flow:
    store ──get──▶ StateCache ──snapshot──▶ RuleSyncQueue ──replace──▶ engine
                        │
                        └──read──▶ FallbackMatcher ──navigate──▶ tab

Configuration edits never touch the cache or the engine directly: they write
the store, the store notifies, the notification updates the cache and
enqueues a sync. The toggle is the one exception — it updates the cache
optimistically so the indicator and fallback decisions flip immediately; its
own notification then arrives as an already-applied value and is skipped.

The rule sync reads the hydrated cache, so the declarative table and the
fallback matcher always enforce the same Configuration. While the cache is
stale (its hydration read failed) a sync that would install redirect rules is
refused and the previous table stays; the refresh that finally reads the store
queues the sync that catches up.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from redirector.cache import StateCache
from redirector.constants import STORAGE_KEY_GLOBAL_ENABLED
from redirector.engine.protocol import DeclarativeEngine
from redirector.errors import StorageError
from redirector.fallback import FallbackMatcher, Navigator
from redirector.indicator import Indicator
from redirector.models import Configuration
from redirector.storage.protocol import ConfigStore, StorageChange
from redirector.sync import RuleSyncQueue, SyncResult
from redirector.utils.logger import get_logger, log_trigger

logger = get_logger(__name__)


class RedirectCoordinator:
    """Process-wide owner of the cache, sync queue and fallback matcher.

    Usage:
        coordinator = RedirectCoordinator(store, engine, indicator, navigator)
        await coordinator.on_startup()
        ...
        await coordinator.close()
    """

    def __init__(
        self,
        store: ConfigStore,
        engine: DeclarativeEngine,
        indicator: Indicator,
        navigator: Navigator,
    ) -> None:
        self.store = store
        self.engine = engine
        self.indicator = indicator
        self.cache = StateCache(store, on_refresh=self._on_cache_refreshed)
        self.sync_queue = RuleSyncQueue(engine, snapshot=self._snapshot)
        self.fallback = FallbackMatcher(self.cache, navigator)
        store.add_listener(self.on_storage_changed)

    # ── Startup / install ─────────────────────────────────────────────────────

    async def on_installed(self) -> SyncResult:
        return await self._initialize("install")

    async def on_startup(self) -> SyncResult:
        return await self._initialize("startup")

    async def _initialize(self, reason: str) -> SyncResult:
        with log_trigger(reason):
            await self.cache.hydrate()
            config = self.cache.read()
            self.indicator.set_indicator(config.global_enabled)
            result = await self.sync_queue.request_sync()
            logger.info(
                "Coordinator initialized",
                reason=reason,
                applied=result.applied,
                installed=result.installed,
            )
            return result

    # ── Toggle action ─────────────────────────────────────────────────────────

    async def on_toggle(self) -> bool:
        """Flip the global switch. Returns the new value."""
        with log_trigger("toggle"):
            await self.cache.wait_ready()
            enabled = not self.cache.read().global_enabled

            # Optimistic: cache + indicator first, persistence second.
            self.cache.set_global_enabled(enabled)
            self.indicator.set_indicator(enabled)
            sync = self.sync_queue.request_sync()

            try:
                await self.store.set({STORAGE_KEY_GLOBAL_ENABLED: enabled})
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Toggle could not be persisted — keeping in-memory state",
                    enabled=enabled,
                    error=str(exc),
                )

            await sync
            logger.info("Global switch toggled", enabled=enabled)
            return enabled

    # ── Storage change notifications ──────────────────────────────────────────

    def on_storage_changed(self, changes: dict[str, StorageChange]) -> Optional[asyncio.Future[SyncResult]]:
        """Apply a change notification. Returns the sync future when one was queued."""
        changed = self.cache.apply_changes(changes)
        if not changed:
            return None

        if STORAGE_KEY_GLOBAL_ENABLED in changed:
            self.indicator.set_indicator(self.cache.read().global_enabled)

        logger.info("Configuration changed — re-syncing", keys=sorted(changed))
        return self.sync_queue.request_sync()

    # ── Navigation events ─────────────────────────────────────────────────────

    async def on_navigation(self, tab_id: int, url: Optional[str]) -> Optional[str]:
        return await self.fallback.on_navigation(tab_id, url)

    # ── Shutdown ──────────────────────────────────────────────────────────────

    async def close(self) -> None:
        await self.sync_queue.close()

    async def _snapshot(self) -> Configuration:
        await self.cache.wait_ready()
        config = self.cache.read()
        # Paused projects to the pause rule alone, whatever the stored rules are.
        if self.cache.stale and config.global_enabled:
            raise StorageError("Persisted configuration could not be read yet")
        return config

    def _on_cache_refreshed(self, changed: set[str]) -> None:
        if STORAGE_KEY_GLOBAL_ENABLED in changed:
            self.indicator.set_indicator(self.cache.read().global_enabled)
        logger.info("Configuration recovered from store — re-syncing", keys=sorted(changed))
        self.sync_queue.request_sync()
