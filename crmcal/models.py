"""Data models for the crmcal scheduling engine."""

from datetime import date, datetime, timedelta
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .core.timezone_utils import ensure_aware

DEFAULT_EVENT_COLOR = "#3174AD"


class EventType(str, Enum):
    """CRM event categories."""

    MEETING = "Meeting"
    CALL = "Call"
    EMAIL = "Email"
    TASK = "Task"
    NOTE = "Note"
    ONSITE_APPOINTMENT = "On-site appointment"
    FOLLOW_UP = "Follow-up"
    DEADLINE = "Deadline"


class EventTypeDetail(BaseModel):
    """Display color and default duration of an event type."""

    name: EventType
    color: str
    default_duration_minutes: Optional[int] = None

    model_config = ConfigDict(frozen=True)


EVENT_TYPE_DETAILS: dict[EventType, EventTypeDetail] = {
    EventType.MEETING: EventTypeDetail(name=EventType.MEETING, color="#8B5CF6", default_duration_minutes=30),
    EventType.CALL: EventTypeDetail(name=EventType.CALL, color="#10B981", default_duration_minutes=15),
    EventType.EMAIL: EventTypeDetail(name=EventType.EMAIL, color="#3B82F6", default_duration_minutes=15),
    EventType.TASK: EventTypeDetail(name=EventType.TASK, color="#6B7280"),
    EventType.NOTE: EventTypeDetail(name=EventType.NOTE, color="#78716C"),
    EventType.ONSITE_APPOINTMENT: EventTypeDetail(
        name=EventType.ONSITE_APPOINTMENT, color="#EC4899", default_duration_minutes=60
    ),
    EventType.FOLLOW_UP: EventTypeDetail(name=EventType.FOLLOW_UP, color="#F59E0B", default_duration_minutes=30),
    EventType.DEADLINE: EventTypeDetail(name=EventType.DEADLINE, color="#EF4444"),
}


def type_default_duration(event_type: Optional[EventType]) -> Optional[timedelta]:
    """Default duration configured for ``event_type``, None when it has none."""
    detail = EVENT_TYPE_DETAILS.get(event_type) if event_type is not None else None
    if detail is None or not detail.default_duration_minutes:
        return None
    return timedelta(minutes=detail.default_duration_minutes)


def type_color(event_type: Optional[EventType]) -> str:
    detail = EVENT_TYPE_DETAILS.get(event_type) if event_type is not None else None
    return detail.color if detail else DEFAULT_EVENT_COLOR


# Recurrence rule models


class Frequency(str, Enum):
    """Recurrence frequency."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @property
    def rrule_name(self) -> str:
        return self.value.upper()


class Weekday(str, Enum):
    """Two-letter iCalendar weekday codes."""

    MO = "MO"
    TU = "TU"
    WE = "WE"
    TH = "TH"
    FR = "FR"
    SA = "SA"
    SU = "SU"

    @property
    def day_index(self) -> int:
        """Monday-based index, matching ``date.weekday()``."""
        return list(Weekday).index(self)


class NeverEnds(BaseModel):
    kind: Literal["never"] = "never"

    model_config = ConfigDict(frozen=True)


class EndsOnDate(BaseModel):
    kind: Literal["on_date"] = "on_date"
    until: datetime

    model_config = ConfigDict(frozen=True)

    @field_validator("until")
    @classmethod
    def _aware_until(cls, value: datetime) -> datetime:
        return ensure_aware(value)


class EndsAfterCount(BaseModel):
    kind: Literal["after_count"] = "after_count"
    count: int = Field(..., ge=1)

    model_config = ConfigDict(frozen=True)


Termination = Annotated[Union[NeverEnds, EndsOnDate, EndsAfterCount], Field(discriminator="kind")]


class RecurrenceRule(BaseModel):
    """Canonical, serializable recurrence descriptor.

    Exactly one termination mode is active at a time; the weekday set is only
    populated for weekly rules.
    """

    frequency: Frequency
    interval: int = Field(default=1, ge=1)
    by_weekday: tuple[Weekday, ...] = ()
    termination: Termination = Field(default_factory=NeverEnds)
    dtstart: Optional[datetime] = Field(default=None, description="Series anchor")

    model_config = ConfigDict(frozen=True)

    @field_validator("by_weekday")
    @classmethod
    def _normalize_weekdays(cls, value: tuple[Weekday, ...]) -> tuple[Weekday, ...]:
        return tuple(sorted(set(value), key=lambda day: day.day_index))

    @field_validator("dtstart")
    @classmethod
    def _aware_dtstart(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(value) if value is not None else None

    @model_validator(mode="after")
    def _weekdays_only_for_weekly(self) -> "RecurrenceRule":
        if self.by_weekday and self.frequency != Frequency.WEEKLY:
            raise ValueError("by_weekday is only meaningful for weekly rules")
        return self

    @property
    def until(self) -> Optional[datetime]:
        return self.termination.until if isinstance(self.termination, EndsOnDate) else None

    @property
    def count(self) -> Optional[int]:
        return self.termination.count if isinstance(self.termination, EndsAfterCount) else None


class RecurrenceConfig(BaseModel):
    """Recurrence settings as entered in the event form.

    Fields are loosely typed; the rule builder validates and rejects bad input.
    """

    enabled: bool = False
    frequency: Optional[str] = "none"
    interval: Optional[int] = 1
    by_weekday: list[str] = Field(default_factory=list)
    end_type: str = "never"
    end_date: Optional[date] = None
    occurrences: Optional[int] = None
    start: datetime

    @field_validator("by_weekday", mode="before")
    @classmethod
    def _split_weekday_string(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [part for part in value.split(",") if part.strip()]
        return value


class BuiltRecurrence(BaseModel):
    """Result of building a rule from a form configuration."""

    rule: RecurrenceRule
    rrule_string: str
    recurrence_end_date: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)


# Calendar event models


def _coerce_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date_parser.isoparse(value.strip()).date()
    raise ValueError(f"Cannot interpret {value!r} as a calendar date")


class MasterEvent(BaseModel):
    """Persisted template for a single event or a whole recurring series."""

    id: Optional[str] = Field(default=None, description="Store document ID")
    user_id: Optional[str] = Field(default=None, description="Owning user")
    title: str = Field(..., description="Event title")
    type: EventType = Field(default=EventType.MEETING, description="Event category")

    start: datetime = Field(..., description="Start of the (first) occurrence")
    end: datetime = Field(..., description="End of the (first) occurrence")
    all_day: bool = Field(default=False, description="All-day event flag")

    is_recurring: bool = Field(default=False, description="Recurring series flag")
    rrule_string: Optional[str] = Field(default=None, description="Persisted RRULE text")
    recurrence_end_date: Optional[datetime] = Field(
        default=None, description="Cached upper bound of the series for range pruning"
    )
    excluded_dates: list[date] = Field(
        default_factory=list, description="Dates whose occurrence is suppressed"
    )

    reminder_offset_minutes: Optional[int] = Field(
        default=None, ge=0, description="Minutes before start, None for no reminder"
    )

    location: Optional[str] = None
    attendees: list[str] = Field(default_factory=list)
    notes: Optional[str] = None
    contact_id: Optional[str] = None
    deal_id: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("start", "end", "recurrence_end_date", "created_at", "updated_at")
    @classmethod
    def _aware_datetimes(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(value) if value is not None else None

    @field_validator("excluded_dates", mode="before")
    @classmethod
    def _coerce_excluded_dates(cls, value: Any) -> Any:
        # Time-of-day is ignored: stored exclusions may carry any time
        if value is None:
            return []
        if isinstance(value, (str, date)):
            value = [value]
        return sorted({_coerce_date(item) for item in value})

    @field_validator("attendees", mode="before")
    @classmethod
    def _split_attendees(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @model_validator(mode="after")
    def _check_invariants(self) -> "MasterEvent":
        if self.end < self.start:
            raise ValueError("end must not be before start")
        if self.is_recurring and not self.rrule_string:
            raise ValueError("recurring events require an rrule_string")
        if not self.is_recurring and self.rrule_string:
            raise ValueError("rrule_string is only allowed on recurring events")
        return self

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def color(self) -> str:
        return type_color(self.type)

    def with_times(self, start: datetime, end: datetime, all_day: Optional[bool] = None) -> "MasterEvent":
        """Replacement object with new times; the original is left untouched."""
        return self.model_copy(
            update={
                "start": ensure_aware(start),
                "end": ensure_aware(end),
                "all_day": self.all_day if all_day is None else all_day,
            }
        )

    def with_excluded_date(self, day: date) -> "MasterEvent":
        dates = sorted(set(self.excluded_dates) | {_coerce_date(day)})
        return self.model_copy(update={"excluded_dates": dates})

    def without_excluded_date(self, day: date) -> "MasterEvent":
        target = _coerce_date(day)
        return self.model_copy(update={"excluded_dates": [d for d in self.excluded_dates if d != target]})


class Occurrence(BaseModel):
    """One concrete, ephemeral instance of a master event."""

    id: str = Field(..., description="master id + ISO date of the start")
    master_id: str
    title: str
    type: EventType
    color: str = DEFAULT_EVENT_COLOR
    start: datetime
    end: datetime
    all_day: bool = False
    is_occurrence: bool = Field(default=False, description="True when generated from a series")
    master: MasterEvent = Field(..., description="Back-reference for edit/delete actions")

    model_config = ConfigDict(frozen=True)

    @property
    def occurrence_date(self) -> date:
        return self.start.date()

    @property
    def reminder_offset_minutes(self) -> Optional[int]:
        return self.master.reminder_offset_minutes

    def intersects(self, window_start: datetime, window_end: datetime) -> bool:
        return self.start <= window_end and self.end >= window_start
