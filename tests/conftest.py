"""Root test configuration for Simple Redirect.

Every test runs with the REDIRECTOR_* environment variables cleared and with
the default config search paths emptied, so a developer's own
``~/.redirector/config.yaml`` can never leak into a test run. Tests that
exercise config discovery set their own paths explicitly.
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncGenerator, Awaitable, Callable, Optional

import pytest

from redirector.engine.memory import InMemoryRuleEngine
from redirector.fallback import LogNavigator
from redirector.indicator import LogIndicator
from redirector.lifecycle import RedirectCoordinator
from redirector.storage.memory import MemoryStore


@pytest.fixture(autouse=True)
def isolate_config_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("REDIRECTOR_CONFIG", "REDIRECTOR_PORT", "REDIRECTOR_STORAGE_PATH"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("redirector.config.DEFAULT_CONFIG_PATHS", [])


# ─── Coordinator fixtures ─────────────────────────────────────────────────────


@pytest.fixture
async def coordinator_factory() -> AsyncGenerator[Callable[..., RedirectCoordinator], None]:
    """Build coordinators over a MemoryStore with recording collaborators.

    Every coordinator created through the factory is closed on teardown.
    """
    created: list[RedirectCoordinator] = []

    def factory(
        initial: Optional[dict[str, Any]] = None,
        max_rules: int = 5000,
    ) -> RedirectCoordinator:
        coordinator = RedirectCoordinator(
            store=MemoryStore(initial),
            engine=InMemoryRuleEngine(max_rules=max_rules),
            indicator=LogIndicator(),
            navigator=LogNavigator(),
        )
        created.append(coordinator)
        return coordinator

    yield factory

    for coordinator in created:
        await coordinator.close()


@pytest.fixture
def settle() -> Callable[[RedirectCoordinator], Awaitable[None]]:
    """Deliver pending change notifications, then wait for every queued sync.

    The request issued here is queued behind any sync a notification started,
    so once it resolves the engine reflects the latest cached configuration.
    """

    async def _settle(coordinator: RedirectCoordinator) -> None:
        await asyncio.sleep(0)
        await coordinator.sync_queue.request_sync()

    return _settle
