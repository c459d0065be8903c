"""InMemoryRuleEngine — process-resident declarative engine.

Enforces the same contract a browser engine does:
  - replace() validates the complete resulting table before committing it;
    any rejection raises RuleEngineError and leaves the prior table in place
  - rule ids are positive and unique across the resulting table
  - the table size is capped (quota)
  - only top-level navigations are evaluated

evaluate() applies the winning rule for a navigation: highest priority first,
lowest id among equal priorities.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Sequence

from redirector.constants import DEFAULT_MAX_RULES, RESOURCE_TYPE_MAIN_FRAME
from redirector.errors import RuleEngineError
from redirector.models import DeclarativeRule, RuleActionType, is_absolute_web_url
from redirector.patterns import condition_matches
from redirector.utils.logger import get_logger

logger = get_logger(__name__)


class InMemoryRuleEngine:
    """Async in-memory declarative engine.

    Usage:
        engine = InMemoryRuleEngine(max_rules=5000)
        await engine.replace(remove_ids=[], add_rules=rules)
        winner = engine.evaluate("https://old.site.com/page")

    ``replace_calls`` counts committed replacements (observability / tests).
    """

    def __init__(self, max_rules: int = DEFAULT_MAX_RULES) -> None:
        self._max_rules = max_rules
        self._rules: dict[int, DeclarativeRule] = {}
        self._in_flight = False
        self.replace_calls = 0

    # ── Protocol ──────────────────────────────────────────────────────────────

    async def get_current_rules(self) -> list[DeclarativeRule]:
        return [self._rules[rule_id] for rule_id in sorted(self._rules)]

    async def replace(
        self,
        remove_ids: Sequence[int],
        add_rules: Sequence[DeclarativeRule],
    ) -> None:
        if self._in_flight:
            # Overlapping mutation calls are a caller bug.
            raise RuleEngineError("Concurrent rule table replacement rejected")
        self._in_flight = True
        try:
            # Yield once so overlapping callers would be observable.
            await asyncio.sleep(0)
            removing = set(remove_ids)
            staged = {k: v for k, v in self._rules.items() if k not in removing}
            for rule in add_rules:
                self._validate(rule)
                if rule.id in staged:
                    raise RuleEngineError(f"Duplicate rule id {rule.id}")
                staged[rule.id] = rule
            if len(staged) > self._max_rules:
                raise RuleEngineError(
                    f"Rule quota exceeded: {len(staged)} rules > max {self._max_rules}"
                )
            self._rules = staged
            self.replace_calls += 1
        finally:
            self._in_flight = False

        logger.debug(
            "Rule table replaced",
            removed=len(remove_ids),
            added=len(add_rules),
            installed=len(self._rules),
        )

    # ── Enforcement ───────────────────────────────────────────────────────────

    def evaluate(
        self,
        url: str,
        resource_type: str = RESOURCE_TYPE_MAIN_FRAME,
    ) -> Optional[DeclarativeRule]:
        """Return the rule the engine applies to a navigation, or None."""
        candidates = [
            rule
            for rule in self._rules.values()
            if resource_type in rule.condition.resource_types
            and condition_matches(rule.condition, url)
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda rule: (-rule.priority, rule.id))

    def redirect_target(self, url: str) -> Optional[str]:
        """URL the engine would redirect a top-level navigation to, if any."""
        winner = self.evaluate(url)
        if winner is None or winner.action is not RuleActionType.REDIRECT:
            return None
        return winner.redirect_url

    # ── Validation ────────────────────────────────────────────────────────────

    @staticmethod
    def _validate(rule: DeclarativeRule) -> None:
        if not isinstance(rule.id, int) or rule.id < 1:
            raise RuleEngineError(f"Rule id must be a positive integer, got {rule.id!r}")
        if not isinstance(rule.action, RuleActionType):
            raise RuleEngineError(f"Rule {rule.id}: unknown action {rule.action!r}")
        if not rule.condition.resource_types:
            raise RuleEngineError(f"Rule {rule.id}: condition has no resource types")
        if rule.action is RuleActionType.REDIRECT:
            if not is_absolute_web_url(rule.redirect_url):
                raise RuleEngineError(
                    f"Rule {rule.id}: redirect url {rule.redirect_url!r} is not an absolute URL"
                )
