"""Structured logging utilities for Simple Redirect.

This module provides async-safe structured logging using structlog.
Event handlers run inside ``log_trigger(name)`` (install, startup, toggle) so
every log line emitted while handling one external event carries a
``trigger`` field.
"""

import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator, Optional

import structlog
from structlog.types import EventDict, Processor

# External event currently being handled
trigger_var: ContextVar[Optional[str]] = ContextVar("trigger", default=None)


def add_trigger(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add the active trigger to log context if available."""
    trigger = trigger_var.get()
    if trigger:
        event_dict["trigger"] = trigger
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True
) -> None:
    """Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output JSON format. If False, use console format.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_trigger,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "redirector") -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance."""
    return structlog.get_logger(name)


@contextmanager
def log_trigger(trigger: str) -> Iterator[None]:
    """Tag every log line emitted inside the block with ``trigger``."""
    token = trigger_var.set(trigger)
    try:
        yield
    finally:
        trigger_var.reset(token)


class PerformanceLogger:
    """Context manager that logs how long an operation took.

    Slow operations (above ``warn_after_ms``) log at WARNING, others at DEBUG.
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
        warn_after_ms: float = 250.0,
    ):
        self.operation = operation
        self.logger = logger or get_logger()
        self.warn_after_ms = warn_after_ms
        self.start_time: float = 0

    def __enter__(self) -> "PerformanceLogger":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        duration_ms = (time.perf_counter() - self.start_time) * 1000

        if exc_type is not None:
            self.logger.error(
                f"{self.operation} failed",
                operation=self.operation,
                duration_ms=duration_ms,
                error=str(exc_val),
            )
        else:
            log_method = self.logger.warning if duration_ms > self.warn_after_ms else self.logger.debug
            log_method(
                f"{self.operation} completed",
                operation=self.operation,
                duration_ms=duration_ms,
            )


# Defaults until main.py reconfigures from the environment / config file
configure_logging()
