"""Unit tests for RuleSyncQueue — redirector/sync.py.

Covers:
  - a request installs project(snapshot) as one full replacement
  - requests waiting behind the worker coalesce into one replacement
  - at most one replace() in flight, even under bursty requests
  - the final table always reflects the newest snapshot
  - engine rejection / snapshot failure → applied=False, prior table kept
  - close() resolves everything, never raises
"""

from __future__ import annotations

import asyncio
from typing import Sequence

from redirector.engine.memory import InMemoryRuleEngine
from redirector.errors import RuleEngineError
from redirector.models import Configuration, DeclarativeRule, RedirectRule
from redirector.projector import project
from redirector.sync import RuleSyncQueue, SyncResult

# ─── Helpers ──────────────────────────────────────────────────────────────────


class Holder:
    """Mutable snapshot source."""

    def __init__(self, config: Configuration) -> None:
        self.config = config

    async def snapshot(self) -> Configuration:
        return self.config


class SlowEngine(InMemoryRuleEngine):
    """Engine whose replace() suspends for a while and records overlap."""

    def __init__(self) -> None:
        super().__init__()
        self.active = 0
        self.max_active = 0

    async def replace(self, remove_ids: Sequence[int], add_rules: Sequence[DeclarativeRule]) -> None:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0.01)
            await super().replace(remove_ids, add_rules)
        finally:
            self.active -= 1


class RejectingEngine(InMemoryRuleEngine):
    async def replace(self, remove_ids: Sequence[int], add_rules: Sequence[DeclarativeRule]) -> None:
        raise RuleEngineError("quota exceeded")


def _config(*sources: str, enabled: bool = True) -> Configuration:
    return Configuration(
        rules=tuple(RedirectRule(s, f"https://{i}.target.com") for i, s in enumerate(sources)),
        global_enabled=enabled,
    )


# ─── Tests ────────────────────────────────────────────────────────────────────


class TestRequestSync:
    async def test_sync_installs_projection(self) -> None:
        engine = InMemoryRuleEngine()
        holder = Holder(_config("a.com", "b.com"))
        queue = RuleSyncQueue(engine, holder.snapshot)

        result = await queue.request_sync()

        assert result == SyncResult(applied=True, installed=2, removed=0)
        assert await engine.get_current_rules() == project(holder.config)
        await queue.close()

    async def test_second_sync_removes_previous_ids(self) -> None:
        engine = InMemoryRuleEngine()
        holder = Holder(_config("a.com", "b.com"))
        queue = RuleSyncQueue(engine, holder.snapshot)
        await queue.request_sync()

        holder.config = _config("c.com")
        result = await queue.request_sync()

        assert result.removed == 2
        assert result.installed == 1
        assert await engine.get_current_rules() == project(holder.config)
        await queue.close()

    async def test_waiting_requests_are_coalesced(self) -> None:
        engine = InMemoryRuleEngine()
        queue = RuleSyncQueue(engine, Holder(_config("a.com")).snapshot)

        futures = [queue.request_sync() for _ in range(5)]
        results = await asyncio.gather(*futures)

        assert all(r.applied for r in results)
        assert engine.replace_calls == 1
        assert queue.replacements == 1
        await queue.close()

    async def test_at_most_one_replacement_in_flight(self) -> None:
        engine = SlowEngine()
        holder = Holder(_config("a.com"))
        queue = RuleSyncQueue(engine, holder.snapshot)

        futures = []
        for i in range(6):
            holder.config = _config(*[f"s{j}.com" for j in range(i + 1)])
            futures.append(queue.request_sync())
            await asyncio.sleep(0.004)
        results = await asyncio.gather(*futures)

        assert engine.max_active == 1
        assert all(r.applied for r in results)
        assert await engine.get_current_rules() == project(holder.config)
        await queue.close()

    async def test_pause_then_resume_restores_projection(self) -> None:
        engine = InMemoryRuleEngine()
        holder = Holder(_config("a.com/x", "b.com"))
        queue = RuleSyncQueue(engine, holder.snapshot)
        await queue.request_sync()
        before = await engine.get_current_rules()

        holder.config = _config("a.com/x", "b.com", enabled=False)
        await queue.request_sync()
        assert len(await engine.get_current_rules()) == 1

        holder.config = _config("a.com/x", "b.com")
        await queue.request_sync()
        assert await engine.get_current_rules() == before
        await queue.close()


class TestFailures:
    async def test_engine_rejection_resolves_not_applied(self) -> None:
        engine = RejectingEngine()
        queue = RuleSyncQueue(engine, Holder(_config("a.com")).snapshot)

        result = await queue.request_sync()

        assert result.applied is False
        assert result.error == "quota exceeded"
        assert queue.replacements == 0
        await queue.close()

    async def test_rejected_table_leaves_prior_rules_installed(self) -> None:
        engine = InMemoryRuleEngine(max_rules=1)
        holder = Holder(_config("a.com"))
        queue = RuleSyncQueue(engine, holder.snapshot)
        await queue.request_sync()
        before = await engine.get_current_rules()

        holder.config = _config("a.com", "b.com")
        result = await queue.request_sync()

        assert result.applied is False
        assert await engine.get_current_rules() == before
        await queue.close()

    async def test_snapshot_failure_resolves_not_applied(self) -> None:
        async def broken() -> Configuration:
            raise RuntimeError("cache exploded")

        queue = RuleSyncQueue(InMemoryRuleEngine(), broken)
        result = await queue.request_sync()
        assert result.applied is False
        assert "cache exploded" in (result.error or "")
        await queue.close()

    async def test_queue_keeps_working_after_a_failure(self) -> None:
        engine = InMemoryRuleEngine(max_rules=1)
        holder = Holder(_config("a.com", "b.com"))
        queue = RuleSyncQueue(engine, holder.snapshot)
        assert (await queue.request_sync()).applied is False

        holder.config = _config("a.com")
        assert (await queue.request_sync()).applied is True
        await queue.close()


class TestClose:
    async def test_requests_after_close_resolve_not_applied(self) -> None:
        queue = RuleSyncQueue(InMemoryRuleEngine(), Holder(_config()).snapshot)
        await queue.close()
        result = await queue.request_sync()
        assert result.applied is False

    async def test_close_resolves_in_flight_requests(self) -> None:
        engine = SlowEngine()
        queue = RuleSyncQueue(engine, Holder(_config("a.com")).snapshot)
        pending = queue.request_sync()
        await asyncio.sleep(0)

        await queue.close()

        assert pending.done()
        assert pending.result().applied is False
