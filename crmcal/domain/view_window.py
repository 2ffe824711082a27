"""View windows for the calendar views (day, week, month grid, agenda)."""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from enum import Enum

from dateutil.relativedelta import relativedelta

from ..core.timezone_utils import end_of_day, start_of_day

logger = logging.getLogger(__name__)

DEFAULT_AGENDA_DAYS = 30
DEFAULT_BUFFER_DAYS = 7


class ViewMode(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    AGENDA = "agenda"


class Direction(str, Enum):
    PREV = "prev"
    NEXT = "next"
    TODAY = "today"


@dataclass(frozen=True)
class ViewWindow:
    """Inclusive [start, end] span of a rendered view."""

    start: datetime.datetime
    end: datetime.datetime

    def contains(self, moment: datetime.datetime) -> bool:
        return self.start <= moment <= self.end

    def days(self) -> list[datetime.date]:
        """Calendar dates covered by the window, in its start's zone."""
        first = self.start.date()
        last = self.end.astimezone(self.start.tzinfo).date()
        return [first + datetime.timedelta(days=i) for i in range((last - first).days + 1)]


def _monday_on_or_before(day: datetime.date) -> datetime.date:
    return day - datetime.timedelta(days=day.weekday())


def compute_window(
    view: ViewMode,
    ref_date: datetime.date,
    tz: datetime.tzinfo,
    agenda_days: int = DEFAULT_AGENDA_DAYS,
) -> ViewWindow:
    """Span of dates visibly rendered by ``view`` around ``ref_date``.

    Args:
        view: Active view mode
        ref_date: Reference date the view is focused on
        tz: Zone in which day boundaries are taken
        agenda_days: Forward-looking length of the agenda view

    Returns:
        Un-buffered window; the month view spans the whole Monday-start grid
    """
    if view == ViewMode.DAY:
        first = last = ref_date
    elif view == ViewMode.WEEK:
        first = _monday_on_or_before(ref_date)
        last = first + datetime.timedelta(days=6)
    elif view == ViewMode.MONTH:
        month_start = ref_date.replace(day=1)
        month_end = month_start + relativedelta(months=1, days=-1)
        first = _monday_on_or_before(month_start)
        last = month_end + datetime.timedelta(days=6 - month_end.weekday())
    elif view == ViewMode.AGENDA:
        first = ref_date
        last = ref_date + datetime.timedelta(days=agenda_days)
    else:
        raise ValueError(f"Unknown view mode: {view!r}")

    return ViewWindow(start=start_of_day(first, tz), end=end_of_day(last, tz))


def buffered(window: ViewWindow, buffer_days: int = DEFAULT_BUFFER_DAYS) -> ViewWindow:
    """Window widened symmetrically by ``buffer_days`` for expansion."""
    margin = datetime.timedelta(days=buffer_days)
    return ViewWindow(start=window.start - margin, end=window.end + margin)


def step(
    view: ViewMode,
    ref_date: datetime.date,
    direction: Direction,
    today: datetime.date,
    agenda_days: int = DEFAULT_AGENDA_DAYS,
) -> datetime.date:
    """New reference date after a prev/next/today navigation."""
    if direction == Direction.TODAY:
        return today

    sign = 1 if direction == Direction.NEXT else -1
    if view == ViewMode.DAY:
        delta = relativedelta(days=sign)
    elif view == ViewMode.WEEK:
        delta = relativedelta(weeks=sign)
    elif view == ViewMode.MONTH:
        delta = relativedelta(months=sign)
    else:
        delta = relativedelta(days=sign * agenda_days)
    return ref_date + delta
