"""Configuration edits — the write side of the options surface.

Every edit is read-modify-write against the store and nothing else. The
store's change notification carries the edit to the state cache and the rule
sync; the editor never talks to the engine.

Validation (RuleValidationError, a ValueError — safe to show to the user):
  - source and target are required (surrounding whitespace ignored)
  - target must be an absolute http(s) URL
  - source must compile as a pattern and be unique among rules
  - allowlist entries must compile and be unique after normalisation
  - rule indexes must be in range
"""

from __future__ import annotations

import asyncio
import dataclasses

from redirector.constants import (
    ALL_STORAGE_KEYS,
    STORAGE_KEY_ALLOWLIST,
    STORAGE_KEY_GLOBAL_ENABLED,
    STORAGE_KEY_RULES,
)
from redirector.errors import InvalidPatternError, RuleValidationError
from redirector.models import Configuration, RedirectRule, is_absolute_web_url
from redirector.patterns import normalize_pattern
from redirector.storage.protocol import ConfigStore
from redirector.utils.logger import get_logger

logger = get_logger(__name__)


class ConfigEditor:
    """Validated edits of the persisted Configuration."""

    def __init__(self, store: ConfigStore) -> None:
        self._store = store
        self._lock = asyncio.Lock()

    async def read(self) -> Configuration:
        return Configuration.from_storage(await self._store.get(ALL_STORAGE_KEYS))

    # ── Redirect rules ────────────────────────────────────────────────────────

    async def add_rule(self, source: str, target: str) -> RedirectRule:
        source = (source or "").strip()
        target = (target or "").strip()
        if not source or not target:
            raise RuleValidationError("Both source and target are required")
        _require_absolute_url(target)
        normalized = _require_pattern(source)

        async with self._lock:
            config = await self.read()
            if any(_same_pattern(rule.source, normalized) for rule in config.rules):
                raise RuleValidationError(f"A redirect for {source!r} already exists")
            rule = RedirectRule(source=source, target=target, enabled=True)
            await self._write_rules(config.rules + (rule,))

        logger.info("Redirect added", source=source, target=target)
        return rule

    async def toggle_rule(self, index: int) -> RedirectRule:
        async with self._lock:
            config = await self.read()
            _require_index(index, len(config.rules))
            rules = list(config.rules)
            rules[index] = dataclasses.replace(rules[index], enabled=not rules[index].enabled)
            await self._write_rules(tuple(rules))

        logger.info(
            "Redirect enabled" if rules[index].enabled else "Redirect paused",
            source=rules[index].source,
        )
        return rules[index]

    async def delete_rule(self, index: int) -> RedirectRule:
        async with self._lock:
            config = await self.read()
            _require_index(index, len(config.rules))
            rules = list(config.rules)
            removed = rules.pop(index)
            await self._write_rules(tuple(rules))

        logger.info("Redirect removed", source=removed.source)
        return removed

    # ── Global switch ─────────────────────────────────────────────────────────

    async def set_global_enabled(self, enabled: bool) -> bool:
        await self._store.set({STORAGE_KEY_GLOBAL_ENABLED: bool(enabled)})
        logger.info("All redirects active" if enabled else "All redirects paused")
        return bool(enabled)

    # ── Allowlist ─────────────────────────────────────────────────────────────

    async def add_allowlist_entry(self, pattern: str) -> str:
        pattern = (pattern or "").strip()
        if not pattern:
            raise RuleValidationError("Allowlist pattern is required")
        normalized = _require_pattern(pattern)

        async with self._lock:
            config = await self.read()
            if any(_same_pattern(entry, normalized) for entry in config.allowlist):
                raise RuleValidationError(f"{pattern!r} is already allowlisted")
            await self._store.set({STORAGE_KEY_ALLOWLIST: [*config.allowlist, pattern]})

        logger.info("Allowlist entry added", pattern=pattern)
        return pattern

    async def remove_allowlist_entry(self, pattern: str) -> str:
        pattern = (pattern or "").strip()
        async with self._lock:
            config = await self.read()
            remaining = [entry for entry in config.allowlist if entry != pattern]
            if len(remaining) == len(config.allowlist):
                raise RuleValidationError(f"{pattern!r} is not allowlisted")
            await self._store.set({STORAGE_KEY_ALLOWLIST: remaining})

        logger.info("Allowlist entry removed", pattern=pattern)
        return pattern

    async def _write_rules(self, rules: tuple[RedirectRule, ...]) -> None:
        await self._store.set({STORAGE_KEY_RULES: [rule.to_dict() for rule in rules]})


# ─── Validation helpers ───────────────────────────────────────────────────────


def _require_absolute_url(target: str) -> None:
    if not is_absolute_web_url(target):
        raise RuleValidationError("Target must be a valid URL")


def _require_pattern(pattern: str) -> str:
    try:
        return normalize_pattern(pattern)
    except InvalidPatternError as exc:
        raise RuleValidationError(f"Invalid pattern: {exc.reason}") from exc


def _same_pattern(existing: str, normalized: str) -> bool:
    try:
        return normalize_pattern(existing) == normalized
    except InvalidPatternError:
        return False


def _require_index(index: int, length: int) -> None:
    if not 0 <= index < length:
        raise RuleValidationError(f"No redirect at index {index}")
