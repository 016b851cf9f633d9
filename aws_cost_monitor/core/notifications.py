"""
Refresh and credits-toggle notifications.

Fans completion events out to subscribers registered by the front end.
"""

from typing import Callable, List

import structlog

logger = structlog.get_logger()


class NotificationCenter:
    """Holds subscriber callbacks for data refreshes and credit toggles."""

    def __init__(self):
        self._refreshed: List[Callable] = []
        self._credits_toggled: List[Callable[[bool], None]] = []

    def subscribe_data_refreshed(self, callback: Callable) -> None:
        """Register a callback taking the completed sync's result."""
        self._refreshed.append(callback)

    def subscribe_credits_toggled(self, callback: Callable[[bool], None]) -> None:
        """Register a callback taking the new include-credits value."""
        self._credits_toggled.append(callback)

    def notify_data_refreshed(self, result=None) -> None:
        logger.debug("data_refreshed", subscribers=len(self._refreshed))
        for callback in list(self._refreshed):
            callback(result)

    def notify_credits_toggled(self, include_credits: bool) -> None:
        logger.debug("credits_toggled", include_credits=include_credits)
        for callback in list(self._credits_toggled):
            callback(include_credits)
