"""Simple Redirect — pattern-based URL redirection rule engine."""

__version__ = "1.0.0"
