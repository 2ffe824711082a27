"""Calendar view controller: windows, filters, store binding and user interactions."""

from __future__ import annotations

import datetime
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Optional

from dateutil.relativedelta import relativedelta

from ..calendar.occurrence_expander import expand_masters
from ..calendar.rrule_codec import reanchor_rrule
from ..calendar.rule_builder import apply_recurrence
from ..core.config import SchedulerSettings
from ..core.timezone_utils import end_of_day, local_date, now_utc, start_of_day
from ..exceptions import PersistenceError, SchedulingError, UnsupportedOperationError
from ..models import EventType, MasterEvent, Occurrence, RecurrenceConfig
from ..store import SchedulingStore, Unsubscribe
from .view_window import Direction, ViewMode, ViewWindow, buffered, compute_window, step

logger = logging.getLogger(__name__)

OccurrenceListener = Callable[[list[Occurrence]], None]
ErrorNotifier = Callable[[str], None]

# Fields owned by the store, never sent back in an edit
_STORE_MANAGED_FIELDS = {"id", "created_at", "updated_at"}


@dataclass(frozen=True)
class OccurrenceFilters:
    """Toolbar filters; empty values match everything."""

    types: frozenset[EventType] = field(default_factory=frozenset)
    contact_id: Optional[str] = None
    deal_id: Optional[str] = None

    def matches(self, occurrence: Occurrence) -> bool:
        if self.types and occurrence.type not in self.types:
            return False
        if self.contact_id and occurrence.master.contact_id != self.contact_id:
            return False
        if self.deal_id and occurrence.master.deal_id != self.deal_id:
            return False
        return True

    @property
    def active(self) -> bool:
        return bool(self.types or self.contact_id or self.deal_id)


class CalendarViewController:
    """Owns the active view and the materialized occurrence list.

    Every recomputation expands the loaded masters over the buffered window,
    keeps only occurrences intersecting the precise window, applies the
    filters and hands the ordered result to all listeners.

    Store interactions report failures through ``error_notifier`` and return
    a falsy value instead of raising; see each method for details.
    """

    def __init__(
        self,
        settings: Optional[SchedulerSettings] = None,
        error_notifier: Optional[ErrorNotifier] = None,
        clock: Callable[[], datetime.datetime] = now_utc,
        view: ViewMode = ViewMode.WEEK,
        ref_date: Optional[datetime.date] = None,
    ) -> None:
        self._settings = settings or SchedulerSettings()
        self._tz = self._settings.timezone
        self._error_notifier = error_notifier
        self._clock = clock

        self._view = view
        self._ref_date = ref_date or self._today()
        self._filters = OccurrenceFilters()

        self._masters: dict[str, MasterEvent] = {}
        self._occurrences: list[Occurrence] = []
        self._window = compute_window(self._view, self._ref_date, self._tz, self._settings.agenda_days)

        self._listeners: list[OccurrenceListener] = []
        self._store: Optional[SchedulingStore] = None
        self._unsubscribe: Optional[Unsubscribe] = None

    # State

    @property
    def view(self) -> ViewMode:
        return self._view

    @property
    def ref_date(self) -> datetime.date:
        return self._ref_date

    @property
    def window(self) -> ViewWindow:
        return self._window

    @property
    def filters(self) -> OccurrenceFilters:
        return self._filters

    @property
    def occurrences(self) -> list[Occurrence]:
        return list(self._occurrences)

    @property
    def masters(self) -> list[MasterEvent]:
        return list(self._masters.values())

    def _today(self) -> datetime.date:
        return local_date(self._clock(), self._tz)

    # Listeners

    def add_listener(self, listener: OccurrenceListener) -> Callable[[], None]:
        """Register ``listener`` for every recomputed occurrence list."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify_listeners(self) -> None:
        snapshot = list(self._occurrences)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Occurrence listener failed")

    def _report_error(self, message: str) -> None:
        logger.warning(message)
        if self._error_notifier is not None:
            self._error_notifier(message)

    # Recomputation

    def recompute(self) -> list[Occurrence]:
        """Rebuild the occurrence list for the current window and notify listeners."""
        self._window = compute_window(self._view, self._ref_date, self._tz, self._settings.agenda_days)
        expansion = buffered(self._window, self._settings.window_buffer_days)

        expanded = expand_masters(
            self._masters.values(),
            expansion.start,
            expansion.end,
            self._settings.max_occurrences_per_rule,
        )
        self._occurrences = [
            occ
            for occ in expanded
            if occ.intersects(self._window.start, self._window.end) and self._filters.matches(occ)
        ]
        logger.debug(
            "Recomputed %s view for %s: %d occurrences from %d masters",
            self._view.value,
            self._ref_date.isoformat(),
            len(self._occurrences),
            len(self._masters),
        )
        self._notify_listeners()
        return self.occurrences

    def navigate(self, direction: Direction | str) -> list[Occurrence]:
        """Move one view period back/forward, or jump to today."""
        direction = Direction(direction)
        self._ref_date = step(
            self._view, self._ref_date, direction, self._today(), self._settings.agenda_days
        )
        return self.recompute()

    def set_view(self, view: ViewMode | str, ref_date: Optional[datetime.date] = None) -> list[Occurrence]:
        self._view = ViewMode(view)
        if ref_date is not None:
            self._ref_date = ref_date
        return self.recompute()

    def go_to(self, ref_date: datetime.date) -> list[Occurrence]:
        self._ref_date = ref_date
        return self.recompute()

    def set_filters(
        self,
        types: Optional[Iterable[EventType | str]] = None,
        contact_id: Optional[str] = None,
        deal_id: Optional[str] = None,
    ) -> list[Occurrence]:
        """Replace all filters; omitted values clear that filter."""
        self._filters = OccurrenceFilters(
            types=frozenset(EventType(t) for t in types or ()),
            contact_id=contact_id or None,
            deal_id=deal_id or None,
        )
        return self.recompute()

    def on_masters(self, masters: Iterable[MasterEvent]) -> list[Occurrence]:
        """Replace the loaded masters (fresh store data) and recompute."""
        self._masters = {m.id: m for m in masters if m.id}
        return self.recompute()

    # Store binding

    def attach(self, store: SchedulingStore) -> None:
        """Subscribe to ``store``; every snapshot triggers a recomputation."""
        self.detach()
        self._store = store
        self._unsubscribe = store.subscribe(self.on_masters, self._on_store_error)
        logger.debug("Attached view controller to %s", type(store).__name__)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
        self._unsubscribe = None
        self._store = None

    def _on_store_error(self, exc: Exception) -> None:
        self._report_error(f"Could not load calendar events: {exc}")

    def _require_store(self) -> SchedulingStore:
        if self._store is None:
            raise SchedulingError("No scheduling store attached")
        return self._store

    async def _call_store(self, operation: str, call: Awaitable[Any]) -> tuple[bool, Any]:
        try:
            return True, await call
        except Exception as exc:
            error = exc if isinstance(exc, PersistenceError) else PersistenceError(operation, str(exc))
            self._report_error(f"Could not {operation} event: {error}")
            return False, None

    def _resolve_master(self, event_id: str) -> MasterEvent:
        master = self._masters.get(event_id)
        if master is not None:
            return master
        for occ in self._occurrences:
            if occ.id == event_id:
                return self._masters.get(occ.master_id, occ.master)
        raise SchedulingError(f"Unknown event id {event_id!r}")

    # Interactions

    async def create_event(
        self, master: MasterEvent, recurrence: Optional[RecurrenceConfig] = None
    ) -> Optional[str]:
        """Persist a new master, building its rule from ``recurrence``.

        Returns:
            The new id, or None when the store rejected the call

        Raises:
            RecurrenceValidationError: If recurrence is enabled but invalid
        """
        store = self._require_store()
        if recurrence is not None:
            master = apply_recurrence(master, recurrence)
        ok, master_id = await self._call_store("create", store.create_master(master))
        return master_id if ok else None

    async def update_event(
        self, master: MasterEvent, recurrence: Optional[RecurrenceConfig] = None
    ) -> bool:
        """Send ``master`` as a full replacement of the stored master.

        Without ``recurrence`` an existing series keeps its rule, re-anchored
        at the edited start.

        Raises:
            RecurrenceValidationError: If recurrence is enabled but invalid
            RecurrenceParseError: If the kept rule text cannot be decoded
        """
        store = self._require_store()
        if not master.id:
            raise SchedulingError("Cannot update a master without an id")
        if recurrence is not None:
            master = apply_recurrence(master, recurrence)
        elif master.is_recurring and master.rrule_string:
            master = master.model_copy(
                update={"rrule_string": reanchor_rrule(master.rrule_string, master.start)}
            )
        patch = master.model_dump(exclude=_STORE_MANAGED_FIELDS)
        ok, _ = await self._call_store("update", store.update_master(master.id, patch))
        return ok

    async def delete_event(self, master_id: str) -> bool:
        """Delete a master; for a series this removes every occurrence."""
        store = self._require_store()
        ok, _ = await self._call_store("delete", store.delete_master(master_id))
        return ok

    async def move_event(
        self,
        event_id: str,
        start: datetime.datetime,
        end: datetime.datetime,
        all_day: Optional[bool] = None,
    ) -> bool:
        """Drag/resize a non-recurring event with optimistic update and rollback.

        The new times are visible immediately. When the store rejects the
        update, the previous master is restored and the error is reported.

        Raises:
            UnsupportedOperationError: If the target belongs to a recurring series
        """
        store = self._require_store()
        previous = self._resolve_master(event_id)
        if previous.is_recurring:
            raise UnsupportedOperationError(
                f"Cannot drag or resize occurrences of recurring series {previous.id}"
            )

        optimistic = previous.with_times(start, end, all_day)
        self._masters[previous.id] = optimistic
        self.recompute()

        ok, _ = await self._call_store(
            "move",
            store.update_master_time(previous.id, optimistic.start, optimistic.end, optimistic.all_day),
        )
        if not ok:
            # A newer store snapshot wins over the rollback
            if self._masters.get(previous.id) is optimistic:
                self._masters[previous.id] = previous
                self.recompute()
            logger.info("Rolled back move of %s", previous.id)
        return ok

    async def exclude_occurrence(self, occurrence: Occurrence) -> bool:
        """Suppress one occurrence of a series by excluding its date."""
        store = self._require_store()
        master = self._masters.get(occurrence.master_id, occurrence.master)
        if not master.is_recurring:
            raise UnsupportedOperationError("Only occurrences of recurring series can be excluded")
        updated = master.with_excluded_date(occurrence.occurrence_date)
        ok, _ = await self._call_store(
            "exclude",
            store.update_master(master.id, {"excluded_dates": updated.excluded_dates}),
        )
        return ok

    async def restore_occurrence(self, master_id: str, day: datetime.date) -> bool:
        """Undo an exclusion for ``day``."""
        store = self._require_store()
        master = self._resolve_master(master_id)
        updated = master.without_excluded_date(day)
        ok, _ = await self._call_store(
            "restore",
            store.update_master(master.id, {"excluded_dates": updated.excluded_dates}),
        )
        return ok

    # Queries

    def upcoming(self, limit: Optional[int] = None) -> list[Occurrence]:
        """Next occurrences starting from now within the agenda horizon."""
        if limit is None:
            limit = self._settings.upcoming_limit
        now = self._clock()
        horizon = now + datetime.timedelta(days=self._settings.agenda_days)
        expanded = expand_masters(
            self._masters.values(), now, horizon, self._settings.max_occurrences_per_rule
        )
        return [occ for occ in expanded if occ.start >= now][:limit]

    def days_with_events(self, year: int, month: int) -> set[datetime.date]:
        """Dates of ``month`` on which at least one occurrence starts.

        Multi-day all-day occurrences mark every day they cover within the month.
        """
        first = datetime.date(year, month, 1)
        last = first + relativedelta(months=1, days=-1)
        window_start = start_of_day(first, self._tz)
        window_end = end_of_day(last, self._tz)

        days: set[datetime.date] = set()
        for occ in expand_masters(
            self._masters.values(), window_start, window_end, self._settings.max_occurrences_per_rule
        ):
            start_day = local_date(occ.start, self._tz)
            if first <= start_day <= last:
                days.add(start_day)
            if occ.all_day and occ.end > occ.start:
                day = start_day + datetime.timedelta(days=1)
                end_day = local_date(occ.end, self._tz)
                while day <= end_day:
                    if first <= day <= last:
                        days.add(day)
                    day += datetime.timedelta(days=1)
        return days

    def events_on(self, day: datetime.date) -> list[Occurrence]:
        """Occurrences intersecting ``day``, ordered by start."""
        day_start = start_of_day(day, self._tz)
        day_end = end_of_day(day, self._tz)
        margin = datetime.timedelta(days=self._settings.window_buffer_days)
        expanded = expand_masters(
            self._masters.values(),
            day_start - margin,
            day_end,
            self._settings.max_occurrences_per_rule,
        )
        return [occ for occ in expanded if occ.intersects(day_start, day_end)]
