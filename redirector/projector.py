"""Rule projector — Configuration → ordered declarative rule table.

project() is a pure function: the same Configuration always yields the same
rule list, ids included (ids are assigned sequentially from FIRST_RULE_ID in
emission order). The installed table is fully replaced on every sync, so ids
carry no identity beyond one projection.

Priority bands (highest matching rule wins in the engine):
    GLOBAL_PAUSE_PRIORITY  — single allow-all rule, emitted alone when paused
    ALLOW_PRIORITY         — one rule per allowlist entry
    REDIRECT_PRIORITY      — one rule per enabled redirect

Same-band tie-break: redirect rules are emitted most-specific first (see
rank_redirects()). The engine resolves equal-priority matches by lowest id and
the fallback matcher walks rank_redirects() in the same order, so the two
enforcement paths pick the same rule for overlapping patterns.
"""

from __future__ import annotations

from typing import Iterable

from redirector.constants import (
    ALLOW_PRIORITY,
    FIRST_RULE_ID,
    GLOBAL_PAUSE_PRIORITY,
    GLOBAL_PAUSE_RULE_ID,
    REDIRECT_PRIORITY,
)
from redirector.errors import InvalidPatternError
from redirector.models import (
    Configuration,
    DeclarativeRule,
    RedirectRule,
    RuleActionType,
    RuleCondition,
    is_absolute_web_url,
)
from redirector.patterns import CompiledPattern, build_condition, compile_pattern
from redirector.utils.logger import get_logger

logger = get_logger(__name__)


def global_pause_rule() -> DeclarativeRule:
    """Maximum-priority rule allowing every top-level navigation."""
    return DeclarativeRule(
        id=GLOBAL_PAUSE_RULE_ID,
        priority=GLOBAL_PAUSE_PRIORITY,
        action=RuleActionType.ALLOW,
        condition=RuleCondition(),
    )


def rank_redirects(rules: Iterable[RedirectRule]) -> list[tuple[RedirectRule, CompiledPattern]]:
    """Return enabled, compilable redirect rules, most specific first.

    Order: path-filtered before domain-only, longer path first, exact domain
    before "*." domain, longer host suffix first, then insertion order.
    Rules whose source does not compile, or whose target is not an absolute
    http(s) URL, are dropped with a WARNING.
    """
    ranked: list[tuple[int, RedirectRule, CompiledPattern]] = []
    for position, rule in enumerate(rules):
        if not rule.enabled:
            continue
        try:
            compiled = compile_pattern(rule.source)
        except InvalidPatternError as exc:
            logger.warning(
                "Skipping redirect rule with invalid source pattern",
                source=rule.source,
                reason=exc.reason,
            )
            continue
        if not is_absolute_web_url(rule.target):
            logger.warning(
                "Skipping redirect rule with invalid target URL",
                source=rule.source,
                target=rule.target,
            )
            continue
        ranked.append((position, rule, compiled))

    ranked.sort(key=lambda item: _specificity_key(item[2], item[0]))
    return [(rule, compiled) for _, rule, compiled in ranked]


def project(config: Configuration) -> list[DeclarativeRule]:
    """Project a Configuration onto the declarative rule table.

    Paused → exactly one global-pause rule. Otherwise redirect rules
    (enabled only) followed by allow rules, ids ascending from 1.
    """
    if not config.global_enabled:
        return [global_pause_rule()]

    out: list[DeclarativeRule] = []
    next_id = FIRST_RULE_ID

    for rule, compiled in rank_redirects(config.rules):
        out.append(
            DeclarativeRule(
                id=next_id,
                priority=REDIRECT_PRIORITY,
                action=RuleActionType.REDIRECT,
                condition=build_condition(compiled),
                redirect_url=rule.target,
            )
        )
        next_id += 1

    for entry in config.allowlist:
        try:
            compiled = compile_pattern(entry)
        except InvalidPatternError as exc:
            logger.warning(
                "Skipping allowlist entry with invalid pattern",
                pattern=entry,
                reason=exc.reason,
            )
            continue
        out.append(
            DeclarativeRule(
                id=next_id,
                priority=ALLOW_PRIORITY,
                action=RuleActionType.ALLOW,
                condition=build_condition(compiled),
            )
        )
        next_id += 1

    return out


def _specificity_key(compiled: CompiledPattern, position: int) -> tuple[int, int, int, int, int]:
    path_filter = compiled.path_filter or ""
    return (
        0 if path_filter else 1,
        -len(path_filter),
        1 if compiled.include_subdomains else 0,
        -len(compiled.host_suffix),
        position,
    )
