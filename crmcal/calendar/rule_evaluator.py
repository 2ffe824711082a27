"""Self-contained evaluator producing the candidate dates of a recurrence rule.

Works on calendar dates only; the expander re-applies the series time of day.
Dates are yielded in ascending order. COUNT is honoured by counting every
generated date from the anchor, so the evaluator only fast-forwards to the
requested start date when the rule has no COUNT.
"""

import calendar
import datetime
import logging
from collections.abc import Iterator
from typing import Optional

from dateutil.relativedelta import relativedelta

from ..models import Frequency, RecurrenceRule

logger = logging.getLogger(__name__)


def _skip_periods(elapsed_periods: int, interval: int) -> int:
    """Index of the last period boundary at or before ``elapsed_periods``."""
    return max(elapsed_periods, 0) // interval


def _daily(rule: RecurrenceRule, anchor: datetime.date, start_from: Optional[datetime.date]) -> Iterator[datetime.date]:
    k = _skip_periods((start_from - anchor).days, rule.interval) if start_from else 0
    while True:
        yield anchor + datetime.timedelta(days=k * rule.interval)
        k += 1


def _weekly(rule: RecurrenceRule, anchor: datetime.date, start_from: Optional[datetime.date]) -> Iterator[datetime.date]:
    if not rule.by_weekday:
        # No valid days: never fall back to the anchor's weekday
        return
    first_monday = anchor - datetime.timedelta(days=anchor.weekday())
    k = _skip_periods((start_from - first_monday).days // 7, rule.interval) if start_from else 0
    while True:
        monday = first_monday + datetime.timedelta(weeks=k * rule.interval)
        for day in rule.by_weekday:
            candidate = monday + datetime.timedelta(days=day.day_index)
            if candidate >= anchor:
                yield candidate
        k += 1


def _monthly(rule: RecurrenceRule, anchor: datetime.date, start_from: Optional[datetime.date]) -> Iterator[datetime.date]:
    first_month = anchor.replace(day=1)
    k = 0
    if start_from:
        delta = relativedelta(start_from.replace(day=1), first_month)
        k = _skip_periods(delta.years * 12 + delta.months, rule.interval)
    while True:
        month = first_month + relativedelta(months=k * rule.interval)
        # Months without the anchor's day are skipped, not clamped
        if anchor.day <= calendar.monthrange(month.year, month.month)[1]:
            yield month.replace(day=anchor.day)
        k += 1


def _yearly(rule: RecurrenceRule, anchor: datetime.date, start_from: Optional[datetime.date]) -> Iterator[datetime.date]:
    k = _skip_periods(start_from.year - anchor.year, rule.interval) if start_from else 0
    while True:
        year = anchor.year + k * rule.interval
        if anchor.month != 2 or anchor.day != 29 or calendar.isleap(year):
            yield anchor.replace(year=year)
        k += 1


_GENERATORS = {
    Frequency.DAILY: _daily,
    Frequency.WEEKLY: _weekly,
    Frequency.MONTHLY: _monthly,
    Frequency.YEARLY: _yearly,
}


def iter_rule_dates(
    rule: RecurrenceRule,
    anchor: datetime.date,
    start_from: Optional[datetime.date] = None,
) -> Iterator[datetime.date]:
    """Yield candidate dates of ``rule`` in ascending order.

    Args:
        rule: Rule to evaluate
        anchor: Date of the first occurrence (DTSTART date)
        start_from: Optional hint; periods wholly before it may be skipped.
            Ignored for COUNT-terminated rules.

    Yields:
        Candidate dates, never before ``anchor``; finite only for COUNT rules
        or when the calendar runs out (year 9999)
    """
    count = rule.count
    if count is not None or (start_from is not None and start_from <= anchor):
        start_from = None

    generated = 0
    try:
        for candidate in _GENERATORS[rule.frequency](rule, anchor, start_from):
            yield candidate
            generated += 1
            if count is not None and generated >= count:
                return
    except (OverflowError, ValueError):
        logger.debug("Rule evaluation reached the end of the calendar after %d dates", generated)
