"""Exception hierarchy for Simple Redirect.

Validation errors subclass ValueError so API handlers can return their
message to the caller; every other error stays internal and is logged.
"""

from __future__ import annotations


class RedirectorError(Exception):
    """Base class for all Simple Redirect errors."""


class InvalidPatternError(RedirectorError, ValueError):
    """A stored pattern string could not be compiled."""

    def __init__(self, pattern: object, reason: str) -> None:
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"Invalid pattern {pattern!r}: {reason}")


class RuleValidationError(RedirectorError, ValueError):
    """A configuration edit was rejected before reaching storage."""


class RuleEngineError(RedirectorError):
    """The declarative engine rejected a rule-table replacement."""


class StorageError(RedirectorError):
    """A persisted configuration read or write failed."""


class NavigationError(RedirectorError):
    """A direct tab navigation command failed."""
