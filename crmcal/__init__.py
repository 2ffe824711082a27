"""crmcal - recurring-event scheduling engine for a CRM calendar.

Builds RRULE-compatible recurrence rules from form input, expands master
events into occurrences for calendar views, derives default durations and
keeps in-memory reminder timers in sync with what is on screen.
"""

__version__ = "0.1.0"
