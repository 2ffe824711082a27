"""Time and timezone helpers for crmcal."""

from __future__ import annotations

import datetime
import logging
import os
import zoneinfo
from typing import Optional

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "UTC"
TEST_TIME_ENV = "CRMCAL_TEST_TIME"


class TimeProvider:
    """Provides current time with test time override support."""

    def now_utc(self) -> datetime.datetime:
        """Return current UTC time with tzinfo.

        Can be overridden for testing via CRMCAL_TEST_TIME environment variable.
        Format: ISO 8601 datetime string (e.g., "2024-01-03T08:00:00+01:00")
        """
        test_time = os.environ.get(TEST_TIME_ENV)
        if test_time:
            try:
                dt = date_parser.isoparse(test_time)
                if dt.tzinfo is not None:
                    return dt.astimezone(datetime.UTC)
                return dt.replace(tzinfo=datetime.UTC)
            except (ValueError, OverflowError) as e:
                logger.warning("Failed to parse %s=%r: %s", TEST_TIME_ENV, test_time, e)

        return datetime.datetime.now(datetime.UTC)


_time_provider = TimeProvider()


def now_utc() -> datetime.datetime:
    """Get current UTC time (convenience function)."""
    return _time_provider.now_utc()


def get_zone(tz_name: Optional[str]) -> datetime.tzinfo:
    """Resolve an IANA zone name, falling back to UTC for unknown names.

    Args:
        tz_name: IANA timezone identifier (e.g. "Europe/Berlin") or None

    Returns:
        tzinfo instance, never None
    """
    if not tz_name or tz_name.upper() in ("UTC", "Z", "ETC/UTC"):
        return datetime.UTC
    try:
        return zoneinfo.ZoneInfo(tz_name)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", tz_name)
        return datetime.UTC


def ensure_aware(dt: datetime.datetime, tz: Optional[datetime.tzinfo] = None) -> datetime.datetime:
    """Attach ``tz`` (UTC by default) to naive datetimes; aware ones pass through."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz or datetime.UTC)
    return dt


def start_of_day(day: datetime.date, tz: datetime.tzinfo) -> datetime.datetime:
    return datetime.datetime.combine(day, datetime.time.min, tzinfo=tz)


def end_of_day(day: datetime.date, tz: datetime.tzinfo) -> datetime.datetime:
    return datetime.datetime.combine(day, datetime.time.max, tzinfo=tz)


def local_date(dt: datetime.datetime, tz: Optional[datetime.tzinfo] = None) -> datetime.date:
    """Calendar date of ``dt`` as seen in ``tz`` (or in dt's own zone)."""
    if tz is not None and dt.tzinfo is not None:
        return dt.astimezone(tz).date()
    return dt.date()


def zone_key(tz: Optional[datetime.tzinfo]) -> Optional[str]:
    """IANA key for ZoneInfo instances, "UTC" for UTC, None otherwise."""
    if tz is None:
        return None
    key = getattr(tz, "key", None)
    if key:
        return str(key)
    if tz is datetime.UTC or tz == datetime.timezone.utc:
        return "UTC"
    return None
