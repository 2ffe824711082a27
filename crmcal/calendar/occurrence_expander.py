"""Expand master events into concrete occurrences for a time window."""

import datetime
import logging
from collections.abc import Iterable
from typing import Optional

from ..exceptions import RecurrenceParseError
from ..models import MasterEvent, Occurrence
from .rrule_codec import decode_rrule
from .rule_evaluator import iter_rule_dates

logger = logging.getLogger(__name__)

DEFAULT_MAX_OCCURRENCES = 1000


def occurrence_id(master_id: Optional[str], day: datetime.date) -> str:
    """Stable identity of an occurrence: master id plus ISO start date."""
    return f"{master_id or ''}_{day.isoformat()}"


def at_time_of_day(day: datetime.date, template: datetime.datetime) -> datetime.datetime:
    """Combine ``day`` with the wall-clock time and zone of ``template``."""
    return datetime.datetime.combine(day, template.time(), tzinfo=template.tzinfo)


def _single_occurrence(master: MasterEvent) -> Occurrence:
    return Occurrence(
        id=master.id or "",
        master_id=master.id or "",
        title=master.title,
        type=master.type,
        color=master.color,
        start=master.start,
        end=master.end,
        all_day=master.all_day,
        is_occurrence=False,
        master=master,
    )


def expand_master(
    master: MasterEvent,
    window_start: datetime.datetime,
    window_end: datetime.datetime,
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES,
) -> list[Occurrence]:
    """Materialize the occurrences of ``master`` inside a window.

    Non-recurring masters yield their single occurrence when it intersects
    the window. Recurring masters yield every generated start in
    ``[window_start, min(window_end, series end)]`` whose date is not excluded.

    A malformed persisted rule is logged and yields an empty list; this
    function does not raise for bad rule text.

    Args:
        master: Master event template
        window_start: Inclusive window start (aware)
        window_end: Inclusive window end (aware)
        max_occurrences: Safety cap on emitted occurrences

    Returns:
        Occurrences ordered by start
    """
    if not master.is_recurring:
        single = _single_occurrence(master)
        return [single] if single.intersects(window_start, window_end) else []

    try:
        rule = decode_rrule(master.rrule_string, default_dtstart=master.start)
    except RecurrenceParseError as e:
        logger.warning(
            "Skipping master %s: unparseable recurrence rule %r (%s)",
            master.id,
            master.rrule_string,
            e,
        )
        return []

    # The master start is the series anchor; a stale DTSTART in the text is ignored
    tz = master.start.tzinfo
    anchor_date = master.start.date()
    if rule.dtstart is not None and rule.dtstart != master.start:
        logger.debug("Master %s DTSTART %s differs from start %s", master.id, rule.dtstart, master.start)

    upper = window_end
    for bound in (master.recurrence_end_date, rule.until):
        if bound is not None and bound < upper:
            upper = bound
    if upper < window_start:
        return []

    excluded = set(master.excluded_dates)
    duration = master.duration
    window_start_date = window_start.astimezone(tz).date() if tz is not None else window_start.date()

    occurrences: list[Occurrence] = []
    for day in iter_rule_dates(rule, anchor_date, start_from=window_start_date):
        candidate = at_time_of_day(day, master.start)
        if candidate > upper:
            break
        if candidate < window_start or day in excluded:
            continue

        occurrences.append(
            Occurrence(
                id=occurrence_id(master.id, day),
                master_id=master.id or "",
                title=master.title,
                type=master.type,
                color=master.color,
                start=candidate,
                end=candidate + duration,
                all_day=master.all_day,
                is_occurrence=True,
                master=master,
            )
        )
        if len(occurrences) >= max_occurrences:
            logger.warning(
                "Expansion of master %s limited to %d occurrences", master.id, max_occurrences
            )
            break

    logger.debug(
        "Expanded master %s into %d occurrences for [%s, %s]",
        master.id,
        len(occurrences),
        window_start.isoformat(),
        upper.isoformat(),
    )
    return occurrences


def expand_masters(
    masters: Iterable[MasterEvent],
    window_start: datetime.datetime,
    window_end: datetime.datetime,
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES,
) -> list[Occurrence]:
    """Expand every master and merge the results ordered by (start, id).

    A failure while expanding one master is logged and only drops that master.
    """
    merged: list[Occurrence] = []
    for master in masters:
        try:
            merged.extend(expand_master(master, window_start, window_end, max_occurrences))
        except Exception:
            logger.exception("Expansion failed for master %s", master.id)
            continue
    merged.sort(key=lambda occ: (occ.start, occ.id))
    return merged
