"""Custom exception hierarchy for the crmcal scheduling engine.

Pure components (rule builder, rule evaluator, occurrence expander) use these
internally and convert them to sentinel values at their boundary. I/O-facing
components (view controller, reminder scheduler) convert lower-level failures
from the store or the notification layer into the types below.
"""


class SchedulingError(Exception):
    """Base exception for all scheduling engine errors.

    All custom exceptions in crmcal inherit from this base class so callers
    can catch engine failures without swallowing unrelated errors.
    """


class RecurrenceValidationError(SchedulingError):
    """A recurrence configuration submitted from a form is invalid.

    Raised when:
    - The occurrence count is below 1
    - A weekly rule has no weekdays selected
    - A weekday token is not one of MO..SU
    - The interval is below 1

    Callers must surface this to the user and must not persist a recurring
    master without a rule.
    """


class RecurrenceParseError(SchedulingError):
    """A persisted RRULE string could not be decoded.

    Raised when:
    - FREQ is missing or unknown
    - INTERVAL or COUNT is not a positive integer
    - UNTIL cannot be parsed
    - UNTIL and COUNT are both present
    """


class PersistenceError(SchedulingError):
    """A call against the scheduling store failed.

    Carries the name of the store operation so the error notification shown
    to the user can say what did not happen.
    """

    def __init__(self, operation: str, message: str = "") -> None:
        self.operation = operation
        super().__init__(message or f"Store operation '{operation}' failed")


class UnsupportedOperationError(SchedulingError):
    """The requested interaction is not supported by the engine.

    Raised when a drag/resize targets an occurrence of a recurring series.
    Single-occurrence overrides are not modelled.
    """


class ReminderError(SchedulingError):
    """A reminder could not be scheduled or delivered."""
