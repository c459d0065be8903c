"""Declarative rule engine package.

Re-exports the public API for ergonomic imports:

    from redirector.engine import DeclarativeEngine, InMemoryRuleEngine

Layout:
    protocol.py — DeclarativeEngine Protocol (the consumed contract)
    memory.py   — InMemoryRuleEngine (reference engine: atomic replace, quota,
                  top-level navigation evaluation)
"""

from redirector.engine.memory import InMemoryRuleEngine
from redirector.engine.protocol import DeclarativeEngine

__all__ = [
    "DeclarativeEngine",
    "InMemoryRuleEngine",
]
