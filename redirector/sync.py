"""Rule sync serializer — single-flight replacement of the declarative table.

Every configuration change ends in a full replacement of the engine's rule
table: read the installed ids, project the current Configuration, issue ONE
atomic "remove these ids, add these rules" call. Two such calls in flight at
once both compute their remove list from the same installed table and both
try to add id 1 — the engine rejects the loser with a duplicate-id error.

RuleSyncQueue removes that race with an explicit task queue and one worker:

  request_sync()  — enqueue a request, get an asyncio.Future[SyncResult]
  worker          — takes the next request plus every request already
                    waiting behind it, runs one replacement, resolves them all

Coalescing is safe because each replacement reads the Configuration when it
runs, not when it was requested: the result always reflects the newest state,
which is at least as new as every coalesced request.

Failure policy:
  - Engine rejection → ERROR log, prior table stays installed, future resolves
    with applied=False. No retry loop; the next edit retries implicitly.
  - Snapshot unavailable (StorageError) → WARNING, prior table stays installed.
  - Futures never raise. A sync failure is never fatal to the process.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from redirector.engine.protocol import DeclarativeEngine
from redirector.errors import RuleEngineError, StorageError
from redirector.models import Configuration
from redirector.projector import project
from redirector.utils.logger import PerformanceLogger, get_logger

logger = get_logger(__name__)

SnapshotProvider = Callable[[], Awaitable[Configuration]]


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one rule-table replacement."""

    applied: bool
    installed: int = 0
    removed: int = 0
    error: Optional[str] = None


class RuleSyncQueue:
    """Serializes rule-table replacements against one DeclarativeEngine.

    Usage:
        queue = RuleSyncQueue(engine, snapshot=read_config)
        result = await queue.request_sync()
        ...
        await queue.close()
    """

    def __init__(self, engine: DeclarativeEngine, snapshot: SnapshotProvider) -> None:
        self._engine = engine
        self._snapshot = snapshot
        self._queue: asyncio.Queue[asyncio.Future[SyncResult]] = asyncio.Queue()
        self._worker: Optional[asyncio.Task[None]] = None
        self._closed = False
        self.replacements = 0

    # ── Public API ────────────────────────────────────────────────────────────

    def request_sync(self) -> asyncio.Future[SyncResult]:
        """Enqueue a full replacement. Must be called from the event loop."""
        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[SyncResult] = loop.create_future()
        if self._closed:
            waiter.set_result(SyncResult(applied=False, error="sync queue closed"))
            return waiter
        self._queue.put_nowait(waiter)
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._run(), name="rule-sync-worker")
        return waiter

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        """Stop the worker. Requests still waiting resolve as not applied."""
        self._closed = True
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        while not self._queue.empty():
            waiter = self._queue.get_nowait()
            if not waiter.done():
                waiter.set_result(SyncResult(applied=False, error="sync queue closed"))

    # ── Worker ────────────────────────────────────────────────────────────────

    async def _run(self) -> None:
        while not self._queue.empty():
            batch = [self._queue.get_nowait()]
            while not self._queue.empty():
                batch.append(self._queue.get_nowait())

            try:
                result = await self._replace_once()
            except asyncio.CancelledError:
                for waiter in batch:
                    if not waiter.done():
                        waiter.set_result(SyncResult(applied=False, error="sync cancelled"))
                raise

            for waiter in batch:
                if not waiter.done():
                    waiter.set_result(result)
            if len(batch) > 1:
                logger.debug("Coalesced sync requests", requests=len(batch))

    async def _replace_once(self) -> SyncResult:
        try:
            config = await self._snapshot()
            installed = await self._engine.get_current_rules()
            remove_ids = [rule.id for rule in installed]
            add_rules = project(config)

            with PerformanceLogger("rule_sync", logger):
                await self._engine.replace(remove_ids, add_rules)
        except RuleEngineError as exc:
            logger.error(
                "Rule table replacement rejected — keeping previous rules",
                error=str(exc),
            )
            return SyncResult(applied=False, error=str(exc))
        except StorageError as exc:
            logger.warning(
                "Configuration unavailable — keeping previous rules",
                error=str(exc),
            )
            return SyncResult(applied=False, error=str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Rule sync failed (non-fatal)",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return SyncResult(applied=False, error=str(exc))

        self.replacements += 1
        logger.info(
            "Rule table synced",
            installed=len(add_rules),
            removed=len(remove_ids),
            global_enabled=config.global_enabled,
        )
        return SyncResult(applied=True, installed=len(add_rules), removed=len(remove_ids))
