"""Best-effort, in-memory reminder timers for materialized occurrences.

Every change of the occurrence set cancels all timers before scheduling the
new ones. Nothing survives a restart and nothing is queued while
notification permission is missing.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from collections.abc import Callable, Iterable
from typing import Any, Optional

from ..core.config import SchedulerSettings
from ..core.timezone_utils import now_utc
from ..exceptions import ReminderError
from ..models import Occurrence
from ..notifications import LoggingNotifier, NotificationOptions, Notifier

logger = logging.getLogger(__name__)

PermissionCheck = Callable[[], bool]


def reminder_body(occurrence: Occurrence, tz: Optional[datetime.tzinfo] = None) -> str:
    """Human-readable notification body for ``occurrence``."""
    start = occurrence.start.astimezone(tz) if tz is not None else occurrence.start
    if occurrence.all_day:
        body = f"All day on {start.strftime('%Y-%m-%d')}"
    else:
        body = f"Starts at {start.strftime('%H:%M')} on {start.strftime('%Y-%m-%d')}"
    location = occurrence.master.location
    if location:
        body += f" ({location})"
    return body


class ReminderScheduler:
    """Schedules one-shot reminder timers on an asyncio loop.

    Args:
        notifier: Notification sink
        permission_check: Returns True when notifications may be shown
        clock: Returns the current aware time
        icon: Icon passed with every notification
        permission_hint: Called once when scheduling is skipped for lack of permission
        loop: Event loop for the timers; defaults to the running loop
        display_tz: Zone used to format start times in notification bodies
    """

    def __init__(
        self,
        notifier: Notifier,
        permission_check: PermissionCheck = lambda: True,
        clock: Callable[[], datetime.datetime] = now_utc,
        icon: Optional[str] = None,
        permission_hint: Optional[Callable[[], None]] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        display_tz: Optional[datetime.tzinfo] = None,
    ) -> None:
        self._notifier = notifier
        self._permission_check = permission_check
        self._clock = clock
        self._icon = icon
        self._permission_hint = permission_hint
        self._hint_given = False
        self._loop = loop
        self._display_tz = display_tz

        self._handles: dict[str, asyncio.TimerHandle] = {}
        self._fire_times: dict[str, datetime.datetime] = {}
        self._closed = False
        self._unbind: Optional[Callable[[], None]] = None

    @classmethod
    def from_settings(
        cls,
        settings: SchedulerSettings,
        notifier: Optional[Notifier] = None,
        **kwargs: Any,
    ) -> "ReminderScheduler":
        """Build a scheduler using the configured icon and display zone.

        Without a notifier, reminders go to the log through ``LoggingNotifier``.
        """
        kwargs.setdefault("icon", settings.notification_icon)
        kwargs.setdefault("display_tz", settings.timezone)
        return cls(notifier or LoggingNotifier(), **kwargs)

    @property
    def active_count(self) -> int:
        return len(self._handles)

    @property
    def scheduled(self) -> dict[str, datetime.datetime]:
        """Occurrence id -> fire time of every pending reminder."""
        return dict(self._fire_times)

    def _has_permission(self) -> bool:
        try:
            return bool(self._permission_check())
        except Exception as e:
            logger.warning("Notification permission check failed: %s", e)
            return False

    def _give_hint(self) -> None:
        if self._hint_given or self._permission_hint is None:
            return
        self._hint_given = True
        try:
            self._permission_hint()
        except Exception:
            logger.exception("Permission hint callback failed")

    def reschedule(self, occurrences: Iterable[Occurrence]) -> int:
        """Replace all pending timers with timers for ``occurrences``.

        Returns:
            Number of timers scheduled
        """
        if self._closed:
            raise ReminderError("Reminder scheduler is closed")
        self.cancel_all()

        if not self._has_permission():
            logger.info("Notification permission not granted; reminders not scheduled")
            self._give_hint()
            return 0

        try:
            loop = self._loop or asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; reminders not scheduled")
            return 0

        now = self._clock()
        for occurrence in occurrences:
            offset = occurrence.reminder_offset_minutes
            if offset is None or occurrence.id in self._handles:
                continue
            fire_at = occurrence.start - datetime.timedelta(minutes=offset)
            delay = (fire_at - now).total_seconds()
            if delay <= 0:
                continue
            self._handles[occurrence.id] = loop.call_later(delay, self._fire, occurrence)
            self._fire_times[occurrence.id] = fire_at

        if self._handles:
            logger.debug("Scheduled %d reminders", len(self._handles))
        return len(self._handles)

    def cancel_all(self) -> int:
        """Cancel every pending timer; returns how many were cancelled."""
        count = len(self._handles)
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        self._fire_times.clear()
        return count

    def close(self) -> None:
        """Tear down: cancel all timers and refuse further scheduling."""
        if self._unbind is not None:
            self._unbind()
            self._unbind = None
        cancelled = self.cancel_all()
        self._closed = True
        logger.debug("Reminder scheduler closed (%d timers cancelled)", cancelled)

    def bind(self, controller: Any) -> Callable[[], None]:
        """Reschedule on every occurrence list published by ``controller``."""
        self._unbind = controller.add_listener(self.reschedule)
        return self._unbind

    def _fire(self, occurrence: Occurrence) -> None:
        self._handles.pop(occurrence.id, None)
        self._fire_times.pop(occurrence.id, None)
        options = NotificationOptions(
            body=reminder_body(occurrence, self._display_tz),
            icon=self._icon,
            dedupe_key=occurrence.id,
        )
        try:
            self._notifier.show(occurrence.title, options)
        except Exception:
            logger.exception("Failed to show reminder for %s", occurrence.id)

    async def __aenter__(self) -> ReminderScheduler:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
