"""Tests for the duration policy state machine."""

import datetime

import pytest

from crmcal.domain.duration_policy import DurationPolicyResolver, DurationPolicyState
from crmcal.models import EventType

pytestmark = [pytest.mark.unit, pytest.mark.fast]

UTC = datetime.UTC
START = datetime.datetime(2024, 1, 8, 10, 0, tzinfo=UTC)


def minutes(n):
    return datetime.timedelta(minutes=n)


class TestInitialState:
    def test_click_uses_type_default(self):
        session = DurationPolicyResolver.for_click(START, EventType.CALL)
        assert session.state == DurationPolicyState.NO_EXPLICIT_END
        assert session.end == START + minutes(15)

    def test_click_without_type_default_ends_at_start(self):
        session = DurationPolicyResolver.for_click(START, EventType.TASK)
        assert session.end == START

    def test_drag_select_is_explicit(self):
        session = DurationPolicyResolver.for_drag_select(START, START + minutes(45), EventType.CALL)
        assert session.state == DurationPolicyState.EXPLICIT_END
        assert session.end == START + minutes(45)

    def test_zero_length_drag_behaves_like_click(self):
        session = DurationPolicyResolver.for_drag_select(START, START, EventType.MEETING)
        assert session.state == DurationPolicyState.NO_EXPLICIT_END
        assert session.end == START + minutes(30)

    def test_edit_is_always_explicit(self, make_master):
        master = make_master(type=EventType.CALL, end=datetime.datetime(2024, 1, 1, 11, tzinfo=UTC))
        session = DurationPolicyResolver.for_edit(master)
        assert session.is_end_explicit
        assert session.change_type(EventType.ONSITE_APPOINTMENT) is None
        assert session.end == master.end


class TestTransitions:
    def test_call_then_meeting_then_frozen(self):
        emitted = []
        session = DurationPolicyResolver.for_click(START, EventType.CALL, on_end_changed=emitted.append)
        assert session.end == START + minutes(15)

        assert session.change_type(EventType.MEETING) == START + minutes(30)
        assert session.state == DurationPolicyState.NO_EXPLICIT_END
        assert emitted == [START + minutes(30)]

        manual_end = START + minutes(50)
        session.edit_end(manual_end)
        assert session.state == DurationPolicyState.EXPLICIT_END

        assert session.change_type(EventType.ONSITE_APPOINTMENT) is None
        session.change_start_time(datetime.time(11, 0))
        assert session.end == manual_end
        assert emitted == [START + minutes(30)]

    def test_start_date_change_recomputes(self):
        session = DurationPolicyResolver.for_click(START, EventType.FOLLOW_UP)
        new_end = session.change_start_date(datetime.date(2024, 1, 9))
        assert new_end == datetime.datetime(2024, 1, 9, 10, 30, tzinfo=UTC)
        assert session.start == datetime.datetime(2024, 1, 9, 10, 0, tzinfo=UTC)

    def test_start_time_change_recomputes(self):
        session = DurationPolicyResolver.for_click(START, EventType.ONSITE_APPOINTMENT)
        assert session.change_start_time(datetime.time(14, 15)) == datetime.datetime(
            2024, 1, 8, 15, 15, tzinfo=UTC
        )

    def test_type_without_default_collapses_end(self):
        session = DurationPolicyResolver.for_click(START, EventType.MEETING)
        assert session.change_type(EventType.DEADLINE) == START

    def test_all_day_suspends_recomputation(self):
        session = DurationPolicyResolver.for_click(START, EventType.CALL)
        session.set_all_day(True)
        assert session.change_type(EventType.MEETING) is None
        assert session.end == START + minutes(15)
        assert session.set_all_day(False) == START + minutes(30)

    def test_end_date_and_time_edits_freeze(self):
        session = DurationPolicyResolver.for_click(START, EventType.CALL)
        session.edit_end_time(datetime.time(9, 0))
        assert session.is_end_explicit
        assert session.end_before_start
        session.edit_end_date(datetime.date(2024, 1, 10))
        assert session.end == datetime.datetime(2024, 1, 10, 9, 0, tzinfo=UTC)
