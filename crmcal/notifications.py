"""Notification contract consumed by the reminder scheduler."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationOptions:
    body: str = ""
    icon: Optional[str] = None
    dedupe_key: Optional[str] = None


class Notifier(Protocol):
    """Fire-and-forget local notification sink."""

    def show(self, title: str, options: NotificationOptions) -> None:
        """Display a notification; no delivery confirmation is expected."""
        ...


class LoggingNotifier:
    """Notifier writing reminders to the log; the default for hosts without a display.

    Repeated notifications with the same dedupe key replace the earlier one,
    mirroring the tag semantics of desktop notifications.
    """

    def __init__(self, level: int = logging.INFO) -> None:
        self._level = level
        self.shown: dict[str, tuple[str, NotificationOptions]] = {}

    def show(self, title: str, options: NotificationOptions) -> None:
        key = options.dedupe_key or title
        self.shown[key] = (title, options)
        logger.log(self._level, "Reminder: %s - %s", title, options.body)
