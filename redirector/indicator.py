"""Enabled-state indicator (toolbar icon + title).

The coordinator calls set_indicator(enabled) whenever the global switch
changes; nothing is read back. LogIndicator is the service implementation:
it records the icon set and title it would render and logs the change.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from redirector.constants import ICON_SIZES, TITLE_ACTIVE, TITLE_PAUSED
from redirector.utils.logger import get_logger

logger = get_logger(__name__)


@runtime_checkable
class Indicator(Protocol):
    def set_indicator(self, enabled: bool) -> None:
        ...


def icon_paths(enabled: bool) -> dict[int, str]:
    suffix = "" if enabled else "-off"
    return {size: f"icons/icon-{size}{suffix}.png" for size in ICON_SIZES}


def indicator_title(enabled: bool) -> str:
    return TITLE_ACTIVE if enabled else TITLE_PAUSED


class LogIndicator:
    """Indicator that keeps the last rendered state and logs transitions."""

    def __init__(self) -> None:
        self.enabled: Optional[bool] = None
        self.title: Optional[str] = None
        self.icons: dict[int, str] = {}

    def set_indicator(self, enabled: bool) -> None:
        self.enabled = enabled
        self.title = indicator_title(enabled)
        self.icons = icon_paths(enabled)
        logger.info("Indicator updated", enabled=enabled, title=self.title)
