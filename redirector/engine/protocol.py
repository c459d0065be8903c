"""DeclarativeEngine Protocol.

The engine enforces a rule table against network-level navigation requests
without calling back into this process per request. Simple Redirect only
reads the installed table and replaces it wholesale; it never patches rules
in place.
"""

from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable

from redirector.models import DeclarativeRule


@runtime_checkable
class DeclarativeEngine(Protocol):
    """Pluggable declarative engine interface.

    Implementations: InMemoryRuleEngine (reference / tests). A browser-backed
    engine satisfies the same two calls.

    All methods are async. replace() MUST only be called through the
    RuleSyncQueue — concurrent replacements race on rule ids.
    """

    async def get_current_rules(self) -> list[DeclarativeRule]:
        """Return the installed rule table."""
        ...

    async def replace(
        self,
        remove_ids: Sequence[int],
        add_rules: Sequence[DeclarativeRule],
    ) -> None:
        """Atomically remove ``remove_ids`` then add ``add_rules``.

        Raises:
            RuleEngineError: the whole call was rejected; the prior table is
                             left untouched.
        """
        ...
