"""Tests for the calendar view controller."""

import datetime

import pytest

from crmcal.calendar.rule_builder import apply_recurrence
from crmcal.domain.view_controller import CalendarViewController
from crmcal.domain.view_window import ViewMode
from crmcal.exceptions import (
    PersistenceError,
    RecurrenceValidationError,
    SchedulingError,
    UnsupportedOperationError,
)
from crmcal.models import EventType, RecurrenceConfig
from crmcal.store import JsonSchedulingStore

pytestmark = [pytest.mark.unit]

UTC = datetime.UTC
NOW = datetime.datetime(2024, 1, 10, 12, 0, tzinfo=UTC)
SERIES_START = datetime.datetime(2024, 1, 1, 9, 0, tzinfo=UTC)


class FlakyStore(JsonSchedulingStore):
    """In-memory store whose writes can be switched to fail."""

    def __init__(self):
        super().__init__()
        self.error = None

    async def update_master_time(self, master_id, start, end, all_day):
        if self.error is not None:
            raise self.error
        await super().update_master_time(master_id, start, end, all_day)

    async def update_master(self, master_id, patch):
        if self.error is not None:
            raise self.error
        await super().update_master(master_id, patch)


def series_config(**overrides):
    fields = {
        "enabled": True,
        "frequency": "weekly",
        "interval": 2,
        "by_weekday": ["MO", "WE"],
        "end_type": "onDate",
        "end_date": datetime.date(2024, 2, 1),
        "start": SERIES_START,
    }
    fields.update(overrides)
    return RecurrenceConfig(**fields)


@pytest.fixture
def errors():
    return []


@pytest.fixture
def controller(settings, errors):
    return CalendarViewController(settings=settings, error_notifier=errors.append, clock=lambda: NOW)


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def series(make_master):
    master = make_master(title="Pipeline review", start=SERIES_START, end=SERIES_START + datetime.timedelta(hours=1))
    return apply_recurrence(master, series_config())


class TestRecompute:
    @pytest.mark.asyncio
    async def test_attach_expands_current_week(self, controller, store, series):
        series_id = await store.create_master(series)
        controller.attach(store)

        assert controller.view == ViewMode.WEEK
        assert controller.ref_date == datetime.date(2024, 1, 10)
        # The week of 2024-01-08 is an off-week of the bi-weekly series
        assert controller.occurrences == []

        occurrences = controller.navigate("next")
        assert [o.id for o in occurrences] == [f"{series_id}_2024-01-15", f"{series_id}_2024-01-17"]

    @pytest.mark.asyncio
    async def test_buffer_does_not_leak_into_rendering(self, controller, store, make_master):
        sunday = datetime.datetime(2024, 1, 7, 10, 0, tzinfo=UTC)
        overnight = datetime.datetime(2024, 1, 7, 23, 0, tzinfo=UTC)
        await store.create_master(make_master(title="Sunday", start=sunday))
        await store.create_master(
            make_master(title="Overnight", start=overnight, end=overnight + datetime.timedelta(hours=2))
        )
        controller.attach(store)
        assert [o.title for o in controller.occurrences] == ["Overnight"]

    @pytest.mark.asyncio
    async def test_listeners_receive_every_recomputation(self, controller, store, series):
        received = []
        remove = controller.add_listener(received.append)
        await store.create_master(series)
        controller.attach(store)
        controller.set_view("month")
        assert len(received) == 2
        assert len(received[-1]) == 6

        remove()
        controller.navigate("prev")
        assert len(received) == 2

    @pytest.mark.asyncio
    async def test_store_changes_trigger_recompute(self, controller, store, make_master):
        controller.attach(store)
        assert controller.occurrences == []
        await store.create_master(make_master(start=datetime.datetime(2024, 1, 9, 8, tzinfo=UTC)))
        assert len(controller.occurrences) == 1

        controller.detach()
        await store.create_master(make_master(start=datetime.datetime(2024, 1, 9, 9, tzinfo=UTC)))
        assert len(controller.occurrences) == 1

    def test_navigate_today(self, controller):
        controller.go_to(datetime.date(2023, 5, 5))
        controller.navigate("today")
        assert controller.ref_date == datetime.date(2024, 1, 10)

    def test_subscription_errors_are_reported(self, controller, errors):
        class BrokenStore(JsonSchedulingStore):
            def subscribe(self, callback, on_error=None, user_id=None):
                on_error(PersistenceError("subscribe", "permission denied"))
                return lambda: None

        controller.attach(BrokenStore())
        assert len(errors) == 1
        assert "permission denied" in errors[0]


class TestFilters:
    @pytest.mark.asyncio
    async def test_type_contact_and_deal_filters(self, controller, store, make_master):
        day = datetime.datetime(2024, 1, 9, 9, tzinfo=UTC)
        await store.create_master(make_master(title="Call A", type=EventType.CALL, start=day, contact_id="c1"))
        await store.create_master(
            make_master(title="Meeting B", type=EventType.MEETING, start=day, contact_id="c2", deal_id="d1")
        )
        controller.attach(store)
        assert len(controller.occurrences) == 2

        assert [o.title for o in controller.set_filters(types=["Call"])] == ["Call A"]
        assert [o.title for o in controller.set_filters(contact_id="c2")] == ["Meeting B"]
        assert [o.title for o in controller.set_filters(deal_id="d1", types=[EventType.CALL])] == []
        assert controller.filters.active
        assert len(controller.set_filters()) == 2


class TestInteractions:
    @pytest.mark.asyncio
    async def test_move_event_persists(self, controller, store, make_master):
        event_id = await store.create_master(make_master(start=datetime.datetime(2024, 1, 9, 9, tzinfo=UTC)))
        controller.attach(store)
        new_start = datetime.datetime(2024, 1, 11, 14, tzinfo=UTC)

        assert await controller.move_event(event_id, new_start, new_start + datetime.timedelta(hours=1))
        assert store.get_master(event_id).start == new_start
        assert controller.occurrences[0].start == new_start

    @pytest.mark.asyncio
    async def test_move_event_rolls_back_on_failure(self, controller, store, errors, make_master):
        original_start = datetime.datetime(2024, 1, 9, 9, tzinfo=UTC)
        event_id = await store.create_master(make_master(start=original_start))
        controller.attach(store)
        seen = []
        controller.add_listener(lambda occs: seen.append([o.start for o in occs]))

        store.error = PersistenceError("update", "offline")
        new_start = datetime.datetime(2024, 1, 12, 9, tzinfo=UTC)
        ok = await controller.move_event(event_id, new_start, new_start + datetime.timedelta(minutes=30))

        assert ok is False
        assert seen == [[new_start], [original_start]]
        assert controller.occurrences[0].start == original_start
        assert store.get_master(event_id).start == original_start
        assert len(errors) == 1
        assert "offline" in errors[0]

    @pytest.mark.asyncio
    async def test_unexpected_store_errors_are_reported(self, controller, store, errors, make_master):
        event_id = await store.create_master(make_master(start=datetime.datetime(2024, 1, 9, 9, tzinfo=UTC)))
        controller.attach(store)
        store.error = RuntimeError("socket closed")
        start = datetime.datetime(2024, 1, 9, 10, tzinfo=UTC)
        assert await controller.move_event(event_id, start, start) is False
        assert "socket closed" in errors[0]

    @pytest.mark.asyncio
    async def test_move_recurring_is_unsupported(self, controller, store, series):
        series_id = await store.create_master(series)
        controller.attach(store)
        controller.navigate("next")
        occurrence = controller.occurrences[0]
        with pytest.raises(UnsupportedOperationError):
            await controller.move_event(occurrence.id, occurrence.start, occurrence.end)
        with pytest.raises(UnsupportedOperationError):
            await controller.move_event(series_id, occurrence.start, occurrence.end)

    @pytest.mark.asyncio
    async def test_create_event_with_recurrence(self, controller, store, make_master):
        controller.attach(store)
        master = make_master(start=SERIES_START, end=SERIES_START + datetime.timedelta(minutes=30))
        new_id = await controller.create_event(master, series_config())
        assert new_id is not None
        stored = store.get_master(new_id)
        assert stored.is_recurring
        assert "BYDAY=MO,WE" in stored.rrule_string

    @pytest.mark.asyncio
    async def test_create_event_rejects_invalid_recurrence(self, controller, store, make_master):
        controller.attach(store)
        with pytest.raises(RecurrenceValidationError):
            await controller.create_event(make_master(), series_config(by_weekday=[]))
        assert store.list_masters() == []

    @pytest.mark.asyncio
    async def test_update_event_replaces_master(self, controller, store, make_master):
        event_id = await store.create_master(make_master(start=datetime.datetime(2024, 1, 9, 9, tzinfo=UTC)))
        controller.attach(store)
        edited = store.get_master(event_id).model_copy(update={"title": "Renamed", "location": "HQ"})
        assert await controller.update_event(edited)
        assert store.get_master(event_id).title == "Renamed"
        assert controller.occurrences[0].title == "Renamed"

    @pytest.mark.asyncio
    async def test_update_event_moves_series_anchor(self, controller, store, make_master):
        daily = apply_recurrence(
            make_master(start=SERIES_START, end=SERIES_START + datetime.timedelta(minutes=30)),
            series_config(frequency="daily", by_weekday=[], end_type="never", end_date=None),
        )
        series_id = await store.create_master(daily)
        controller.attach(store)

        new_start = datetime.datetime(2024, 1, 10, 10, 0, tzinfo=UTC)
        edited = store.get_master(series_id).with_times(new_start, new_start + datetime.timedelta(minutes=30))
        assert await controller.update_event(edited)

        stored = store.get_master(series_id)
        assert stored.rrule_string == "DTSTART:20240110T100000Z\nRRULE:FREQ=DAILY;INTERVAL=1"
        assert [o.id for o in controller.occurrences][0] == f"{series_id}_2024-01-10"
        assert all(o.start >= new_start for o in controller.occurrences)
        assert {o.start.time() for o in controller.occurrences} == {datetime.time(10, 0)}

    @pytest.mark.asyncio
    async def test_delete_event(self, controller, store, errors, make_master):
        event_id = await store.create_master(make_master(start=datetime.datetime(2024, 1, 9, 9, tzinfo=UTC)))
        controller.attach(store)
        assert await controller.delete_event(event_id)
        assert controller.occurrences == []
        assert await controller.delete_event(event_id) is False
        assert len(errors) == 1

    @pytest.mark.asyncio
    async def test_exclude_and_restore_occurrence(self, controller, store, series):
        series_id = await store.create_master(series)
        controller.attach(store)
        controller.navigate("next")
        first, second = controller.occurrences

        assert await controller.exclude_occurrence(first)
        assert [o.id for o in controller.occurrences] == [second.id]
        assert store.get_master(series_id).excluded_dates == [datetime.date(2024, 1, 15)]

        assert await controller.restore_occurrence(series_id, datetime.date(2024, 1, 15))
        assert [o.id for o in controller.occurrences] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_interactions_need_a_store(self, controller, make_master):
        with pytest.raises(SchedulingError):
            await controller.create_event(make_master())


class TestQueries:
    @pytest.mark.asyncio
    async def test_upcoming(self, controller, store, series):
        series_id = await store.create_master(series)
        controller.attach(store)
        assert [o.id for o in controller.upcoming(3)] == [
            f"{series_id}_2024-01-15",
            f"{series_id}_2024-01-17",
            f"{series_id}_2024-01-29",
        ]
        assert len(controller.upcoming()) == 4
        assert controller.upcoming(0) == []

    @pytest.mark.asyncio
    async def test_days_with_events(self, controller, store, series, make_master):
        await store.create_master(series)
        await store.create_master(
            make_master(
                title="Offsite",
                all_day=True,
                start=datetime.datetime(2024, 1, 20, tzinfo=UTC),
                end=datetime.datetime(2024, 1, 21, 23, 59, tzinfo=UTC),
            )
        )
        controller.attach(store)
        assert controller.days_with_events(2024, 1) == {
            datetime.date(2024, 1, d) for d in (1, 3, 15, 17, 20, 21, 29, 31)
        }
        assert controller.days_with_events(2024, 3) == set()

    @pytest.mark.asyncio
    async def test_events_on(self, controller, store, series):
        series_id = await store.create_master(series)
        controller.attach(store)
        assert [o.id for o in controller.events_on(datetime.date(2024, 1, 17))] == [f"{series_id}_2024-01-17"]
        assert controller.events_on(datetime.date(2024, 1, 16)) == []
