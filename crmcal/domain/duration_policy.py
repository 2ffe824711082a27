"""Duration policy for an event creation/edit session.

A session is either ``NO_EXPLICIT_END`` (end follows start + the type's
default duration) or ``EXPLICIT_END`` (the user fixed the end; it is never
recomputed again in this session). The only transition is
NO_EXPLICIT_END -> EXPLICIT_END, triggered by a direct edit of the end.
"""

import datetime
import logging
from collections.abc import Callable
from enum import Enum
from typing import Optional

from ..core.timezone_utils import ensure_aware
from ..models import EventType, MasterEvent, type_default_duration

logger = logging.getLogger(__name__)

EndListener = Callable[[datetime.datetime], None]


class DurationPolicyState(str, Enum):
    NO_EXPLICIT_END = "no_explicit_end"
    EXPLICIT_END = "explicit_end"


def default_end(start: datetime.datetime, event_type: Optional[EventType]) -> datetime.datetime:
    """``start`` plus the type's default duration, or ``start`` when it has none."""
    duration = type_default_duration(event_type)
    return start + duration if duration is not None else start


class DurationPolicyResolver:
    """Tracks whether the end of an in-progress event is user-fixed or type-derived.

    Create one per form session through ``for_click``, ``for_drag_select`` or
    ``for_edit`` and discard it when the form closes.
    """

    def __init__(
        self,
        start: datetime.datetime,
        end: datetime.datetime,
        event_type: EventType = EventType.MEETING,
        state: DurationPolicyState = DurationPolicyState.EXPLICIT_END,
        all_day: bool = False,
        on_end_changed: Optional[EndListener] = None,
    ):
        self._start = ensure_aware(start)
        self._end = ensure_aware(end, self._start.tzinfo)
        self._event_type = event_type
        self._state = state
        self._all_day = all_day
        self._on_end_changed = on_end_changed

    @classmethod
    def for_click(
        cls,
        start: datetime.datetime,
        event_type: EventType = EventType.MEETING,
        on_end_changed: Optional[EndListener] = None,
    ) -> "DurationPolicyResolver":
        """Session opened by a single click: end derives from the type default."""
        start = ensure_aware(start)
        return cls(
            start=start,
            end=default_end(start, event_type),
            event_type=event_type,
            state=DurationPolicyState.NO_EXPLICIT_END,
            on_end_changed=on_end_changed,
        )

    @classmethod
    def for_drag_select(
        cls,
        start: datetime.datetime,
        end: datetime.datetime,
        event_type: EventType = EventType.MEETING,
        on_end_changed: Optional[EndListener] = None,
    ) -> "DurationPolicyResolver":
        """Session opened by a drag-select; a zero-length drag counts as a click."""
        start = ensure_aware(start)
        end = ensure_aware(end, start.tzinfo)
        if end == start:
            return cls.for_click(start, event_type, on_end_changed)
        return cls(
            start=start,
            end=end,
            event_type=event_type,
            state=DurationPolicyState.EXPLICIT_END,
            on_end_changed=on_end_changed,
        )

    @classmethod
    def for_edit(
        cls, master: MasterEvent, on_end_changed: Optional[EndListener] = None
    ) -> "DurationPolicyResolver":
        """Session editing an existing event: its duration is never recomputed."""
        return cls(
            start=master.start,
            end=master.end,
            event_type=master.type,
            state=DurationPolicyState.EXPLICIT_END,
            all_day=master.all_day,
            on_end_changed=on_end_changed,
        )

    @property
    def state(self) -> DurationPolicyState:
        return self._state

    @property
    def is_end_explicit(self) -> bool:
        return self._state == DurationPolicyState.EXPLICIT_END

    @property
    def event_type(self) -> EventType:
        return self._event_type

    @property
    def start(self) -> datetime.datetime:
        return self._start

    @property
    def end(self) -> datetime.datetime:
        return self._end

    @property
    def all_day(self) -> bool:
        return self._all_day

    @property
    def end_before_start(self) -> bool:
        """True when a user-fixed end lies before the start (warn before saving)."""
        return self._end < self._start

    # Inputs that may trigger recomputation

    def change_type(self, event_type: EventType) -> Optional[datetime.datetime]:
        self._event_type = event_type
        return self._recompute("type")

    def change_start_date(self, new_date: datetime.date) -> Optional[datetime.datetime]:
        self._start = datetime.datetime.combine(new_date, self._start.timetz())
        return self._recompute("start date")

    def change_start_time(self, new_time: datetime.time) -> Optional[datetime.datetime]:
        self._start = datetime.datetime.combine(
            self._start.date(), new_time.replace(tzinfo=None), tzinfo=self._start.tzinfo
        )
        return self._recompute("start time")

    def change_start(self, new_start: datetime.datetime) -> Optional[datetime.datetime]:
        self._start = ensure_aware(new_start, self._start.tzinfo)
        return self._recompute("start")

    def set_all_day(self, all_day: bool) -> Optional[datetime.datetime]:
        """All-day sessions are not recomputed; leaving all-day resumes defaults."""
        self._all_day = all_day
        return self._recompute("all-day flag")

    # Direct end edits freeze the end for the rest of the session

    def edit_end(self, new_end: datetime.datetime) -> None:
        self._end = ensure_aware(new_end, self._start.tzinfo)
        if self._state != DurationPolicyState.EXPLICIT_END:
            logger.debug("End edited by user; freezing end at %s", self._end.isoformat())
        self._state = DurationPolicyState.EXPLICIT_END

    def edit_end_date(self, new_date: datetime.date) -> None:
        self.edit_end(datetime.datetime.combine(new_date, self._end.timetz()))

    def edit_end_time(self, new_time: datetime.time) -> None:
        self.edit_end(
            datetime.datetime.combine(
                self._end.date(), new_time.replace(tzinfo=None), tzinfo=self._end.tzinfo
            )
        )

    def _recompute(self, trigger: str) -> Optional[datetime.datetime]:
        if self._state == DurationPolicyState.EXPLICIT_END or self._all_day:
            return None
        new_end = default_end(self._start, self._event_type)
        logger.debug(
            "Recomputed end after %s change: type=%s end=%s",
            trigger,
            self._event_type.value,
            new_end.isoformat(),
        )
        self._end = new_end
        if self._on_end_changed is not None:
            self._on_end_changed(new_end)
        return new_end
