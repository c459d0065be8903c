"""Shared constants for Simple Redirect.

Storage keys, priority tiers and rule identifiers used across modules are
defined here. No magic numbers in other modules — import from here.
"""

# ─── Persisted configuration keys ────────────────────────────────────────────

# Ordered sequence of {source, target, enabled} mappings.
STORAGE_KEY_RULES: str = "redirectRules"

# Global enable switch. Absent key means enabled.
STORAGE_KEY_GLOBAL_ENABLED: str = "globalEnabled"

# Ordered sequence of allowlisted pattern strings.
STORAGE_KEY_ALLOWLIST: str = "allowlistRules"

ALL_STORAGE_KEYS: tuple[str, ...] = (
    STORAGE_KEY_RULES,
    STORAGE_KEY_GLOBAL_ENABLED,
    STORAGE_KEY_ALLOWLIST,
)

DEFAULT_GLOBAL_ENABLED: bool = True

# ─── Declarative rule priorities ─────────────────────────────────────────────
# The engine applies the highest-priority matching rule. Each band must stay
# strictly above the one before it.

REDIRECT_PRIORITY: int = 1
ALLOW_PRIORITY: int = 2
GLOBAL_PAUSE_PRIORITY: int = 3

# ─── Rule identifiers ────────────────────────────────────────────────────────

# Projected redirect/allow rules are numbered from here upwards.
FIRST_RULE_ID: int = 1

# Reserved for the global-pause rule. Must stay above DEFAULT_MAX_RULES so a
# projected id can never collide with it.
GLOBAL_PAUSE_RULE_ID: int = 999_999

# Reference engine quota (dynamic rule table size).
DEFAULT_MAX_RULES: int = 5_000

# ─── Condition scope ─────────────────────────────────────────────────────────

# Top-level navigations only. Sub-resources are never redirected.
RESOURCE_TYPE_MAIN_FRAME: str = "main_frame"

# Navigation event not attached to any tab (pre-render, background fetch).
TAB_ID_NONE: int = -1

# Commanded navigations LogNavigator keeps for inspection.
NAVIGATION_HISTORY_SIZE: int = 100

# Path suffix meaning "every path on the domain".
CATCH_ALL_PATH: str = "/*"

# Scheme tokens stripped from the front of a pattern.
SCHEME_PREFIXES: tuple[str, ...] = ("*://", "http://", "https://")

# ─── Indicator presentation ──────────────────────────────────────────────────

TITLE_ACTIVE: str = "Simple Redirect — Active (click to pause)"
TITLE_PAUSED: str = "Simple Redirect — Paused (click to resume)"

ICON_SIZES: tuple[int, ...] = (16, 32, 48, 128)
