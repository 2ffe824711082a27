"""Stateful scheduling components: duration policy, views and reminders."""

from .duration_policy import DurationPolicyResolver, DurationPolicyState
from .reminder_scheduler import ReminderScheduler
from .view_controller import CalendarViewController, OccurrenceFilters
from .view_window import Direction, ViewMode, ViewWindow, compute_window

__all__ = [
    "CalendarViewController",
    "Direction",
    "DurationPolicyResolver",
    "DurationPolicyState",
    "OccurrenceFilters",
    "ReminderScheduler",
    "ViewMode",
    "ViewWindow",
    "compute_window",
]
