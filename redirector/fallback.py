"""Fallback matcher — direct per-navigation redirect.

The declarative engine only sees network-level requests. A page served from
a site's own cache layer (e.g. a service worker) never produces one, so the
engine never gets to redirect it. This matcher runs on every tab URL change
and commands the tab itself when the engine did not act.

Decision (decide_redirect, pure):
  1. no URL on the event         → nothing
  2. global switch off           → nothing
  3. first matching redirect     → candidate (same order as the engine, see
                                   projector.rank_redirects)
  4. any allowlist entry matches → nothing (allow beats redirect)
  5. URL already is the target   → nothing (no loop on the destination page)
  6. otherwise                   → navigate the tab to the target

Matching goes through patterns.url_matches — the same predicates the
declarative engine evaluates — so the two paths cannot drift apart.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable
from urllib.parse import urlsplit, urlunsplit

from redirector.cache import StateCache
from redirector.constants import NAVIGATION_HISTORY_SIZE, TAB_ID_NONE
from redirector.errors import NavigationError
from redirector.models import Configuration, RedirectRule
from redirector.patterns import url_matches
from redirector.projector import rank_redirects
from redirector.utils.logger import get_logger

logger = get_logger(__name__)


# ─── Navigator collaborator ───────────────────────────────────────────────────


@runtime_checkable
class Navigator(Protocol):
    """Issues a direct navigation override for one tab."""

    async def navigate(self, tab_id: int, url: str) -> None:
        ...


class LogNavigator:
    """Navigator that records the most recent commanded navigations."""

    def __init__(self, history: int = NAVIGATION_HISTORY_SIZE) -> None:
        self.commands: deque[tuple[int, str]] = deque(maxlen=history)

    async def navigate(self, tab_id: int, url: str) -> None:
        if tab_id == TAB_ID_NONE:
            raise NavigationError(f"Navigation {url!r} is not attached to a tab")
        self.commands.append((tab_id, url))
        logger.info("Tab navigation commanded", tab_id=tab_id, url=url)


# ─── Decision ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RedirectDecision:
    rule: RedirectRule
    target: str


def decide_redirect(config: Configuration, url: Optional[str]) -> Optional[RedirectDecision]:
    """Return the redirect to apply to a navigation, or None."""
    if not url:
        return None
    if not config.global_enabled:
        return None

    matched: Optional[RedirectRule] = None
    for rule, compiled in rank_redirects(config.rules):
        if url_matches(compiled, url):
            matched = rule
            break
    if matched is None:
        return None

    if any(url_matches(entry, url) for entry in config.allowlist):
        return None

    if same_destination(url, matched.target):
        return None

    return RedirectDecision(rule=matched, target=matched.target)


def same_destination(a: str, b: str) -> bool:
    """Compare two URLs ignoring scheme/host case and an empty vs "/" path."""
    return _canonical(a) == _canonical(b)


def _canonical(url: str) -> str:
    try:
        parts = urlsplit(url.strip())
        return urlunsplit((
            parts.scheme.lower(),
            parts.netloc.lower(),
            parts.path or "/",
            parts.query,
            parts.fragment,
        ))
    except ValueError:
        return url


# ─── Matcher ──────────────────────────────────────────────────────────────────


class FallbackMatcher:
    """Reacts to tab URL changes against the hydrated state cache."""

    def __init__(self, cache: StateCache, navigator: Navigator) -> None:
        self._cache = cache
        self._navigator = navigator

    async def on_navigation(self, tab_id: int, url: Optional[str]) -> Optional[str]:
        """Handle one navigation event. Returns the target navigated to, if any."""
        if not url:
            return None
        await self._cache.wait_ready()

        decision = decide_redirect(self._cache.read(), url)
        if decision is None:
            return None

        logger.info(
            "Fallback redirect",
            tab_id=tab_id,
            url=url,
            source=decision.rule.source,
            target=decision.target,
        )
        try:
            await self._navigator.navigate(tab_id, decision.target)
        except NavigationError as exc:
            logger.warning(
                "Fallback navigation refused",
                tab_id=tab_id,
                target=decision.target,
                error=str(exc),
            )
            return None
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Fallback navigation failed (non-fatal)",
                tab_id=tab_id,
                target=decision.target,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None
        return decision.target
