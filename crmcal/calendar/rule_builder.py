"""Turn form-level recurrence settings into a canonical recurrence rule."""

import datetime
import logging
from typing import Optional

from pydantic import ValidationError

from ..core.timezone_utils import ensure_aware
from ..exceptions import RecurrenceValidationError
from ..models import (
    BuiltRecurrence,
    EndsAfterCount,
    EndsOnDate,
    Frequency,
    MasterEvent,
    NeverEnds,
    RecurrenceConfig,
    RecurrenceRule,
    Weekday,
)
from .rrule_codec import encode_rrule

logger = logging.getLogger(__name__)

# Last representable instant of the end date, as stored by the form layer
UNTIL_TIME_OF_DAY = datetime.time(23, 59, 59, 999000)

_END_TYPE_ALIASES = {
    "never": "never",
    "ondate": "on_date",
    "on_date": "on_date",
    "afteroccurrences": "after_count",
    "aftercount": "after_count",
    "after_count": "after_count",
}


def _frequency(config: RecurrenceConfig) -> Optional[Frequency]:
    name = (config.frequency or "").strip().lower()
    if not name or name == "none":
        return None
    try:
        return Frequency(name)
    except ValueError as e:
        raise RecurrenceValidationError(f"Unknown frequency: {config.frequency!r}") from e


def _weekdays(config: RecurrenceConfig) -> tuple[Weekday, ...]:
    days = []
    for token in config.by_weekday:
        try:
            days.append(Weekday(token.strip().upper()))
        except ValueError as e:
            raise RecurrenceValidationError(f"Unknown weekday token: {token!r}") from e
    if not days:
        raise RecurrenceValidationError("Weekly recurrence needs at least one weekday")
    return tuple(days)


def _termination(config: RecurrenceConfig, start: datetime.datetime):
    end_type = _END_TYPE_ALIASES.get(config.end_type.strip().lower())
    if end_type is None:
        raise RecurrenceValidationError(f"Unknown end type: {config.end_type!r}")

    if end_type == "on_date":
        if config.end_date is None:
            raise RecurrenceValidationError("An end date is required for 'onDate' recurrence")
        if config.end_date < start.date():
            raise RecurrenceValidationError("Recurrence end date is before the first occurrence")
        until = datetime.datetime.combine(config.end_date, UNTIL_TIME_OF_DAY, tzinfo=start.tzinfo)
        return EndsOnDate(until=until)

    if end_type == "after_count":
        if config.occurrences is None or config.occurrences < 1:
            raise RecurrenceValidationError(
                f"Occurrence count must be >= 1, got {config.occurrences!r}"
            )
        return EndsAfterCount(count=config.occurrences)

    return NeverEnds()


def check_recurrence_config(config: RecurrenceConfig) -> Optional[BuiltRecurrence]:
    """Build a rule, raising on invalid input.

    Returns:
        The built recurrence, or None when recurrence is disabled or unset

    Raises:
        RecurrenceValidationError: If the configuration cannot form a valid rule
    """
    if not config.enabled:
        return None
    frequency = _frequency(config)
    if frequency is None:
        return None

    start = ensure_aware(config.start)
    interval = 1 if config.interval is None else config.interval
    if interval < 1:
        raise RecurrenceValidationError(f"Interval must be >= 1, got {interval}")

    by_weekday = _weekdays(config) if frequency == Frequency.WEEKLY else ()
    termination = _termination(config, start)

    try:
        rule = RecurrenceRule(
            frequency=frequency,
            interval=interval,
            by_weekday=by_weekday,
            termination=termination,
            dtstart=start,
        )
    except ValidationError as e:
        raise RecurrenceValidationError(str(e)) from e

    return BuiltRecurrence(
        rule=rule,
        rrule_string=encode_rrule(rule),
        recurrence_end_date=rule.until,
    )


def build_recurrence_rule(config: RecurrenceConfig) -> Optional[BuiltRecurrence]:
    """Build a canonical rule from form settings.

    Returns None when recurrence is disabled, the frequency is unset, or the
    settings are invalid. Callers must treat None with ``config.enabled`` as a
    validation failure and must not persist a recurring event without a rule.
    """
    try:
        return check_recurrence_config(config)
    except RecurrenceValidationError as e:
        logger.info("Rejected recurrence configuration: %s", e)
        return None


def apply_recurrence(master: MasterEvent, config: Optional[RecurrenceConfig]) -> MasterEvent:
    """Return a replacement master carrying the rule built from ``config``.

    Raises:
        RecurrenceValidationError: If recurrence is enabled but no valid rule results
    """
    built = check_recurrence_config(config) if config is not None else None
    if built is None:
        return master.model_copy(
            update={"is_recurring": False, "rrule_string": None, "recurrence_end_date": None}
        )
    return master.model_copy(
        update={
            "is_recurring": True,
            "rrule_string": built.rrule_string,
            "recurrence_end_date": built.recurrence_end_date,
        }
    )
