"""
Notification Capability

DESIGN DECISION: Delivering notifications (push, email) is out of scope for
the sync core, so the importer only talks to this narrow interface. When
notifications are switched off the NullNotifier swallows every call, and
callers never need to check whether the capability exists.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

import structlog

from finsync.config import NotificationSettings


class Notifier(ABC):
    """Sends a short user-facing message about a finished operation."""

    @abstractmethod
    async def notify(
        self,
        user_id: str,
        title: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
    ) -> None:
        pass


class NullNotifier(Notifier):
    """No-op notifier used when notifications are disabled."""

    async def notify(
        self,
        user_id: str,
        title: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
    ) -> None:
        return None


class LoggingNotifier(Notifier):
    """Writes notifications to the structured log instead of delivering them."""

    def __init__(self):
        self._logger = structlog.get_logger(__name__)
        self.sent: list[dict[str, Any]] = []

    async def notify(
        self,
        user_id: str,
        title: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
    ) -> None:
        notification = {
            "user_id": user_id,
            "title": title,
            "message": message,
            "data": data or {},
        }
        self.sent.append(notification)
        self._logger.info("notification", **notification)


def build_notifier(settings: Optional[NotificationSettings] = None) -> Notifier:
    """Pick a notifier from the feature flag."""
    if settings is not None and settings.enabled:
        return LoggingNotifier()
    return NullNotifier()
