"""RRULE text encoding and decoding for persisted recurrence rules.

The persisted form is the two-line iCalendar flavour::

    DTSTART:20240101T090000Z
    RRULE:FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE;UNTIL=20240201T235959Z

Decoding also accepts a bare ``RRULE:`` line or a bare ``FREQ=...`` part list.
"""

import datetime
import logging
from typing import Optional

from dateutil import parser as date_parser
from pydantic import ValidationError

from ..core.timezone_utils import get_zone, zone_key
from ..exceptions import RecurrenceParseError
from ..models import (
    EndsAfterCount,
    EndsOnDate,
    Frequency,
    NeverEnds,
    RecurrenceRule,
    Weekday,
)

logger = logging.getLogger(__name__)

_UTC_FORMAT = "%Y%m%dT%H%M%SZ"
_LOCAL_FORMAT = "%Y%m%dT%H%M%S"

_FREQUENCIES = {freq.rrule_name: freq for freq in Frequency}
_WEEKDAYS = {day.value: day for day in Weekday}


def format_dtstart(anchor: datetime.datetime) -> str:
    """Render a DTSTART line, keeping the zone name when one is known."""
    key = zone_key(anchor.tzinfo)
    if anchor.tzinfo is None or key == "UTC":
        return f"DTSTART:{anchor.strftime(_UTC_FORMAT)}"
    if key:
        return f"DTSTART;TZID={key}:{anchor.strftime(_LOCAL_FORMAT)}"
    return f"DTSTART:{anchor.astimezone(datetime.UTC).strftime(_UTC_FORMAT)}"


def format_until(until: datetime.datetime) -> str:
    if until.tzinfo is None:
        until = until.replace(tzinfo=datetime.UTC)
    return until.astimezone(datetime.UTC).strftime(_UTC_FORMAT)


def encode_rrule(rule: RecurrenceRule, dtstart: Optional[datetime.datetime] = None) -> str:
    """Serialize a rule to RRULE text.

    Args:
        rule: Rule to encode
        dtstart: Anchor override; defaults to ``rule.dtstart``

    Returns:
        RRULE text with a DTSTART line when an anchor is known
    """
    parts = [f"FREQ={rule.frequency.rrule_name}", f"INTERVAL={rule.interval}"]
    if rule.by_weekday:
        parts.append("BYDAY=" + ",".join(day.value for day in rule.by_weekday))
    if rule.until is not None:
        parts.append(f"UNTIL={format_until(rule.until)}")
    elif rule.count is not None:
        parts.append(f"COUNT={rule.count}")

    lines = []
    anchor = dtstart or rule.dtstart
    if anchor is not None:
        lines.append(format_dtstart(anchor))
    lines.append("RRULE:" + ";".join(parts))
    return "\n".join(lines)


def _parse_params(head: str) -> dict[str, str]:
    params: dict[str, str] = {}
    for param in head.split(";")[1:]:
        if "=" in param:
            key, value = param.split("=", 1)
            params[key.strip().upper()] = value.strip()
    return params


def parse_dtstart(line: str) -> datetime.datetime:
    """Parse a ``DTSTART[;params]:value`` line into an aware datetime.

    Raises:
        RecurrenceParseError: If the line has no value or the value is invalid
    """
    if ":" not in line:
        raise RecurrenceParseError(f"Invalid DTSTART line: {line!r}")
    head, value = line.split(":", 1)
    params = _parse_params(head)
    tz = get_zone(params.get("TZID")) if "TZID" in params else datetime.UTC
    try:
        parsed = date_parser.isoparse(value.strip())
    except (ValueError, OverflowError) as e:
        raise RecurrenceParseError(f"Invalid DTSTART value: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def _parse_until(value: str, tz: datetime.tzinfo) -> datetime.datetime:
    try:
        parsed = date_parser.isoparse(value)
    except (ValueError, OverflowError) as e:
        raise RecurrenceParseError(f"Invalid UNTIL value: {value!r}") from e
    if len(value) == 8:
        # DATE form: the whole day is included
        parsed = datetime.datetime.combine(parsed.date(), datetime.time.max)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def _positive_int(key: str, value: str) -> int:
    try:
        number = int(value)
    except ValueError as e:
        raise RecurrenceParseError(f"{key} must be an integer, got {value!r}") from e
    if number < 1:
        raise RecurrenceParseError(f"{key} must be >= 1, got {number}")
    return number


def decode_rrule(text: Optional[str], default_dtstart: Optional[datetime.datetime] = None) -> RecurrenceRule:
    """Parse persisted RRULE text into a RecurrenceRule.

    Args:
        text: RRULE text (e.g. "RRULE:FREQ=WEEKLY;INTERVAL=1;BYDAY=MO")
        default_dtstart: Anchor used when the text carries no DTSTART line

    Returns:
        Decoded rule

    Raises:
        RecurrenceParseError: If the text is empty, lacks FREQ or has invalid parts
    """
    if not text or not text.strip():
        raise RecurrenceParseError("Empty RRULE string")

    dtstart: Optional[datetime.datetime] = None
    rule_part: Optional[str] = None
    for raw_line in text.replace("\r\n", "\n").split("\n"):
        line = raw_line.strip()
        if not line:
            continue
        upper = line.upper()
        if upper.startswith("DTSTART"):
            dtstart = parse_dtstart(line)
        elif upper.startswith("RRULE:"):
            rule_part = line[len("RRULE:"):]
        elif "FREQ=" in upper and rule_part is None:
            rule_part = line
        else:
            logger.debug("Ignoring unsupported recurrence line: %r", line)

    if rule_part is None:
        raise RecurrenceParseError(f"No RRULE found in {text!r}")

    anchor = dtstart or default_dtstart
    anchor_tz = anchor.tzinfo if anchor is not None and anchor.tzinfo else datetime.UTC

    components: dict[str, str] = {}
    for part in rule_part.split(";"):
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        components[key.strip().upper()] = value.strip()

    freq_name = components.get("FREQ", "").upper()
    if not freq_name:
        raise RecurrenceParseError("RRULE missing required FREQ parameter")
    frequency = _FREQUENCIES.get(freq_name)
    if frequency is None:
        raise RecurrenceParseError(f"Unsupported FREQ: {freq_name}")

    interval = _positive_int("INTERVAL", components["INTERVAL"]) if "INTERVAL" in components else 1

    by_weekday: list[Weekday] = []
    if "BYDAY" in components:
        for token in components["BYDAY"].split(","):
            day = _WEEKDAYS.get(token.strip().upper())
            if day is None:
                raise RecurrenceParseError(f"Unsupported BYDAY token: {token!r}")
            by_weekday.append(day)
        if frequency != Frequency.WEEKLY:
            raise RecurrenceParseError("BYDAY is only supported for weekly rules")

    if "UNTIL" in components and "COUNT" in components:
        raise RecurrenceParseError("UNTIL and COUNT are mutually exclusive")
    if "UNTIL" in components:
        termination = EndsOnDate(until=_parse_until(components["UNTIL"], anchor_tz))
    elif "COUNT" in components:
        termination = EndsAfterCount(count=_positive_int("COUNT", components["COUNT"]))
    else:
        termination = NeverEnds()

    try:
        return RecurrenceRule(
            frequency=frequency,
            interval=interval,
            by_weekday=tuple(by_weekday),
            termination=termination,
            dtstart=anchor,
        )
    except ValidationError as e:
        raise RecurrenceParseError(f"Invalid RRULE format: {text!r}") from e


def reanchor_rrule(text: str, dtstart: datetime.datetime) -> str:
    """Re-encode persisted RRULE text with ``dtstart`` as its DTSTART line.

    Raises:
        RecurrenceParseError: If ``text`` cannot be decoded
    """
    return encode_rrule(decode_rrule(text, default_dtstart=dtstart), dtstart=dtstart)
