"""Data model for Simple Redirect.

Layout:
    RedirectRule     — one user-defined source pattern → target URL mapping
    Configuration    — the persisted aggregate (rules, allowlist, global switch)
    RuleActionType   — declarative action kinds (redirect / allow)
    RuleCondition    — declarative match condition (domains, path filter, scope)
    DeclarativeRule  — one row of the installed declarative rule table

Configuration.from_storage() is the ONLY place raw persisted values are turned
into typed objects. Malformed entries are skipped with a WARNING, never raised:
a broken entry must not take the whole rule set down with it.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional
from urllib.parse import urlsplit

from redirector.constants import (
    DEFAULT_GLOBAL_ENABLED,
    RESOURCE_TYPE_MAIN_FRAME,
    STORAGE_KEY_ALLOWLIST,
    STORAGE_KEY_GLOBAL_ENABLED,
    STORAGE_KEY_RULES,
)
from redirector.utils.logger import get_logger

logger = get_logger(__name__)


# ─── Configuration ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RedirectRule:
    """A single redirect mapping.

    Fields:
        source:  Pattern string (domain-anchored, optional scheme and path).
        target:  Absolute URL navigations are sent to.
        enabled: Disabled rules stay in the configuration but are never enforced.
    """

    source: str
    target: str
    enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"source": self.source, "target": self.target, "enabled": self.enabled}


def is_absolute_web_url(url: object) -> bool:
    """True for an absolute http(s) URL with a host: the only valid redirect target."""
    if not isinstance(url, str):
        return False
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


@dataclass(frozen=True)
class Configuration:
    """Snapshot of the persisted configuration.

    Insertion order of ``rules`` and ``allowlist`` is preserved for display but
    has no effect on matching precedence (allow always beats redirect).
    """

    rules: tuple[RedirectRule, ...] = ()
    allowlist: tuple[str, ...] = ()
    global_enabled: bool = DEFAULT_GLOBAL_ENABLED

    @classmethod
    def defaults(cls) -> "Configuration":
        """Configuration used when nothing has been persisted yet."""
        return cls()

    @classmethod
    def from_storage(cls, raw: Mapping[str, Any]) -> "Configuration":
        """Build a Configuration from a key-value store read.

        Absent keys take their defaults (no rules, empty allowlist, enabled).
        """
        return cls(
            rules=parse_rules(raw.get(STORAGE_KEY_RULES)),
            allowlist=parse_allowlist(raw.get(STORAGE_KEY_ALLOWLIST)),
            global_enabled=parse_global_enabled(raw.get(STORAGE_KEY_GLOBAL_ENABLED)),
        )

    def to_storage(self) -> dict[str, Any]:
        """Render the configuration as the raw values written to the store."""
        return {
            STORAGE_KEY_RULES: [rule.to_dict() for rule in self.rules],
            STORAGE_KEY_GLOBAL_ENABLED: self.global_enabled,
            STORAGE_KEY_ALLOWLIST: list(self.allowlist),
        }


# ─── Parsing helpers ──────────────────────────────────────────────────────────


def parse_rules(raw: object) -> tuple[RedirectRule, ...]:
    """Parse a raw ``redirectRules`` value into RedirectRule objects.

    Skips invalid entries with a WARNING (never crashes).
    """
    if raw is None:
        return ()
    if not isinstance(raw, (list, tuple)):
        logger.warning(
            "redirectRules is not a list — ignoring",
            actual_type=type(raw).__name__,
        )
        return ()

    rules: list[RedirectRule] = []
    for i, item in enumerate(raw):
        if isinstance(item, RedirectRule):
            rules.append(item)
            continue
        if not isinstance(item, Mapping):
            logger.warning(
                "Redirect rule is not a mapping — skipping",
                index=i,
                actual_type=type(item).__name__,
            )
            continue

        source = item.get("source")
        target = item.get("target")
        if not isinstance(source, str) or not source.strip():
            logger.warning("Redirect rule missing source — skipping", index=i)
            continue
        if not isinstance(target, str) or not target.strip():
            logger.warning("Redirect rule missing target — skipping", index=i, source=source)
            continue

        enabled = item.get("enabled", True)
        if not isinstance(enabled, bool):
            logger.warning(
                "Redirect rule 'enabled' is not a boolean — treating as enabled",
                index=i,
                source=source,
            )
            enabled = True

        rules.append(RedirectRule(source=source.strip(), target=target.strip(), enabled=enabled))

    return tuple(rules)


def parse_allowlist(raw: object) -> tuple[str, ...]:
    """Parse a raw ``allowlistRules`` value into pattern strings."""
    if raw is None:
        return ()
    if not isinstance(raw, (list, tuple)):
        logger.warning(
            "allowlistRules is not a list — ignoring",
            actual_type=type(raw).__name__,
        )
        return ()

    entries: list[str] = []
    for i, item in enumerate(raw):
        if not isinstance(item, str) or not item.strip():
            logger.warning("Allowlist entry is not a pattern string — skipping", index=i)
            continue
        entries.append(item.strip())
    return tuple(entries)


def parse_global_enabled(raw: object) -> bool:
    if raw is None:
        return DEFAULT_GLOBAL_ENABLED
    if not isinstance(raw, bool):
        logger.warning(
            "globalEnabled is not a boolean — using default",
            actual_type=type(raw).__name__,
        )
        return DEFAULT_GLOBAL_ENABLED
    return raw


# ─── Declarative rule table ───────────────────────────────────────────────────


class RuleActionType(str, enum.Enum):
    """Action a declarative rule applies to a matching navigation."""

    REDIRECT = "redirect"
    ALLOW = "allow"


@dataclass(frozen=True)
class RuleCondition:
    """Match condition of a declarative rule.

    An empty ``request_domains`` means "every domain" (used by the global-pause
    rule). ``url_filter`` is a path pattern; None means every path.
    """

    request_domains: tuple[str, ...] = ()
    url_filter: Optional[str] = None
    resource_types: tuple[str, ...] = (RESOURCE_TYPE_MAIN_FRAME,)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"resourceTypes": list(self.resource_types)}
        if self.request_domains:
            out["requestDomains"] = list(self.request_domains)
        if self.url_filter is not None:
            out["urlFilter"] = self.url_filter
        return out


@dataclass(frozen=True)
class DeclarativeRule:
    """One entry of the declarative engine's rule table.

    ``redirect_url`` is required for REDIRECT actions and ignored otherwise.
    """

    id: int
    priority: int
    action: RuleActionType
    condition: RuleCondition = field(default_factory=RuleCondition)
    redirect_url: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Render the rule in the engine's wire shape."""
        action: dict[str, Any] = {"type": self.action.value}
        if self.action is RuleActionType.REDIRECT:
            action["redirect"] = {"url": self.redirect_url}
        return {
            "id": self.id,
            "priority": self.priority,
            "action": action,
            "condition": self.condition.to_dict(),
        }
