"""Tests for the recurrence rule evaluator."""

import datetime
import itertools

import pytest

from crmcal.calendar.rule_evaluator import iter_rule_dates
from crmcal.models import EndsAfterCount, Frequency, RecurrenceRule, Weekday

pytestmark = [pytest.mark.unit, pytest.mark.fast]

D = datetime.date


def first(rule, anchor, n, start_from=None):
    return list(itertools.islice(iter_rule_dates(rule, anchor, start_from), n))


class TestFrequencies:
    def test_daily_interval(self):
        rule = RecurrenceRule(frequency=Frequency.DAILY, interval=3)
        assert first(rule, D(2024, 1, 1), 4) == [D(2024, 1, 1), D(2024, 1, 4), D(2024, 1, 7), D(2024, 1, 10)]

    def test_weekly_never_before_anchor(self):
        rule = RecurrenceRule(frequency=Frequency.WEEKLY, by_weekday=(Weekday.MO, Weekday.WE))
        assert first(rule, D(2024, 1, 3), 3) == [D(2024, 1, 3), D(2024, 1, 8), D(2024, 1, 10)]

    def test_weekly_without_weekdays_yields_nothing(self):
        rule = RecurrenceRule(frequency=Frequency.WEEKLY)
        assert list(iter_rule_dates(rule, D(2024, 1, 1))) == []

    def test_monthly_skips_short_months(self):
        rule = RecurrenceRule(frequency=Frequency.MONTHLY)
        assert first(rule, D(2024, 1, 31), 4) == [D(2024, 1, 31), D(2024, 3, 31), D(2024, 5, 31), D(2024, 7, 31)]

    def test_yearly_leap_day(self):
        rule = RecurrenceRule(frequency=Frequency.YEARLY)
        assert first(rule, D(2024, 2, 29), 3) == [D(2024, 2, 29), D(2028, 2, 29), D(2032, 2, 29)]

    def test_yearly_interval(self):
        rule = RecurrenceRule(frequency=Frequency.YEARLY, interval=2)
        assert first(rule, D(2024, 6, 1), 3) == [D(2024, 6, 1), D(2026, 6, 1), D(2028, 6, 1)]


class TestTermination:
    def test_count_stops_generation(self):
        rule = RecurrenceRule(frequency=Frequency.DAILY, termination=EndsAfterCount(count=3))
        assert list(iter_rule_dates(rule, D(2024, 1, 1))) == [D(2024, 1, 1), D(2024, 1, 2), D(2024, 1, 3)]

    def test_count_ignores_start_hint(self):
        rule = RecurrenceRule(frequency=Frequency.DAILY, termination=EndsAfterCount(count=2))
        assert list(iter_rule_dates(rule, D(2024, 1, 1), start_from=D(2024, 1, 10))) == [
            D(2024, 1, 1),
            D(2024, 1, 2),
        ]

    def test_generation_ends_at_calendar_limit(self):
        rule = RecurrenceRule(frequency=Frequency.YEARLY, interval=1000)
        assert list(iter_rule_dates(rule, D(2024, 1, 1))) == [
            D(2024, 1, 1),
            D(3024, 1, 1),
            D(4024, 1, 1),
            D(5024, 1, 1),
            D(6024, 1, 1),
            D(7024, 1, 1),
            D(8024, 1, 1),
            D(9024, 1, 1),
        ]


class TestFastForward:
    def test_daily_keeps_phase(self):
        rule = RecurrenceRule(frequency=Frequency.DAILY, interval=2)
        assert first(rule, D(2024, 1, 1), 2, start_from=D(2024, 1, 10)) == [D(2024, 1, 9), D(2024, 1, 11)]

    def test_weekly_keeps_phase(self):
        rule = RecurrenceRule(frequency=Frequency.WEEKLY, interval=2, by_weekday=(Weekday.MO,))
        assert first(rule, D(2024, 1, 1), 2, start_from=D(2024, 2, 14)) == [D(2024, 2, 12), D(2024, 2, 26)]

    def test_monthly_keeps_phase(self):
        rule = RecurrenceRule(frequency=Frequency.MONTHLY, interval=2)
        assert first(rule, D(2024, 1, 15), 2, start_from=D(2024, 6, 20)) == [D(2024, 5, 15), D(2024, 7, 15)]

    def test_hint_before_anchor_is_ignored(self):
        rule = RecurrenceRule(frequency=Frequency.DAILY)
        assert first(rule, D(2024, 1, 5), 1, start_from=D(2023, 12, 1)) == [D(2024, 1, 5)]
