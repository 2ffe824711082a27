"""Command-line entry for crmcal.

Small inspection tool around the scheduling engine: build RRULE text from
form-style flags and list the occurrences stored in a JSON store file.
"""

from __future__ import annotations

import argparse
import datetime
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from dateutil import parser as date_parser

from .calendar.rule_builder import check_recurrence_config
from .core.config import SchedulerSettings, load_settings
from .core.logging_config import configure_logging
from .core.timezone_utils import ensure_aware
from .domain.view_controller import CalendarViewController
from .domain.view_window import ViewMode
from .exceptions import PersistenceError, RecurrenceValidationError
from .models import EventType, Occurrence, RecurrenceConfig
from .store import JsonSchedulingStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INVALID = 2


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the crmcal CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="crmcal",
        description="crmcal - recurring-event scheduling engine for CRM calendars",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  crmcal rrule --start 2024-01-01T09:00 --freq weekly --interval 2 --byday MO,WE --until 2024-02-01
  crmcal occurrences --store events.json --view month --date 2024-01-15
  crmcal upcoming --store events.json --limit 10
        """,
    )
    parser.add_argument("--config", type=Path, metavar="FILE", help="YAML config file")
    parser.add_argument("--timezone", metavar="ZONE", help="IANA zone for view windows")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    rrule = sub.add_parser("rrule", help="Build an RRULE string from recurrence settings")
    rrule.add_argument("--start", required=True, help="First occurrence (ISO 8601)")
    rrule.add_argument(
        "--freq", required=True, choices=["daily", "weekly", "monthly", "yearly"]
    )
    rrule.add_argument("--interval", type=int, default=1)
    rrule.add_argument("--byday", default="", help="Comma separated weekday codes (MO..SU)")
    end = rrule.add_mutually_exclusive_group()
    end.add_argument("--until", help="Last date of the series (YYYY-MM-DD)")
    end.add_argument("--count", type=int, help="Number of occurrences")

    occurrences = sub.add_parser("occurrences", help="List occurrences of a view window")
    occurrences.add_argument("--store", type=Path, help="JSON store file")
    occurrences.add_argument("--view", choices=[m.value for m in ViewMode], default="week")
    occurrences.add_argument("--date", help="Reference date (YYYY-MM-DD), default today")
    occurrences.add_argument(
        "--type",
        dest="types",
        action="append",
        choices=[t.value for t in EventType],
        help="Only show this event type (repeatable)",
    )
    occurrences.add_argument("--contact", help="Only show events of this contact id")
    occurrences.add_argument("--deal", help="Only show events of this deal id")
    occurrences.add_argument("--json", action="store_true", help="Print JSON instead of text")

    upcoming = sub.add_parser("upcoming", help="List the next occurrences from now")
    upcoming.add_argument("--store", type=Path, help="JSON store file")
    upcoming.add_argument("--limit", type=int, help="Number of occurrences to show")
    upcoming.add_argument("--json", action="store_true", help="Print JSON instead of text")

    return parser


def _format_occurrence(occ: Occurrence, tz: datetime.tzinfo) -> str:
    start = occ.start.astimezone(tz)
    end = occ.end.astimezone(tz)
    if occ.all_day:
        when = f"{start.strftime('%Y-%m-%d')} all day"
    else:
        when = f"{start.strftime('%Y-%m-%d %H:%M')}-{end.strftime('%H:%M')}"
    marker = " (series)" if occ.is_occurrence else ""
    return f"{when}  [{occ.type.value}] {occ.title}{marker}  id={occ.id}"


def _occurrence_record(occ: Occurrence) -> dict:
    return {
        "id": occ.id,
        "master_id": occ.master_id,
        "title": occ.title,
        "type": occ.type.value,
        "color": occ.color,
        "start": occ.start.isoformat(),
        "end": occ.end.isoformat(),
        "all_day": occ.all_day,
        "is_occurrence": occ.is_occurrence,
    }


def _print_occurrences(occurrences: list[Occurrence], settings: SchedulerSettings, as_json: bool) -> None:
    if as_json:
        print(json.dumps([_occurrence_record(o) for o in occurrences], indent=2))
        return
    if not occurrences:
        print("No events.")
        return
    for occ in occurrences:
        print(_format_occurrence(occ, settings.timezone))


def _load_controller(args: argparse.Namespace, settings: SchedulerSettings) -> CalendarViewController:
    store_path = args.store or settings.store_path
    if store_path is None:
        raise PersistenceError("load", "no store file given (use --store or CRMCAL_STORE_PATH)")
    if not Path(store_path).is_file():
        raise PersistenceError("load", f"store file not found: {store_path}")
    store = JsonSchedulingStore(store_path)
    controller = CalendarViewController(settings=settings)
    controller.on_masters(store.list_masters())
    return controller


def _cmd_rrule(args: argparse.Namespace, settings: SchedulerSettings) -> int:
    start = ensure_aware(date_parser.isoparse(args.start), settings.timezone)
    end_type = "never"
    if args.until:
        end_type = "onDate"
    elif args.count is not None:
        end_type = "afterOccurrences"
    config = RecurrenceConfig(
        enabled=True,
        frequency=args.freq,
        interval=args.interval,
        by_weekday=args.byday,
        end_type=end_type,
        end_date=datetime.date.fromisoformat(args.until) if args.until else None,
        occurrences=args.count,
        start=start,
    )
    try:
        built = check_recurrence_config(config)
    except RecurrenceValidationError as e:
        print(f"Invalid recurrence: {e}", file=sys.stderr)
        return EXIT_INVALID
    print(built.rrule_string)
    return EXIT_OK


def _cmd_occurrences(args: argparse.Namespace, settings: SchedulerSettings) -> int:
    controller = _load_controller(args, settings)
    ref_date = datetime.date.fromisoformat(args.date) if args.date else None
    controller.set_view(args.view, ref_date)
    occurrences = controller.set_filters(args.types, args.contact, args.deal)
    _print_occurrences(occurrences, settings, args.json)
    return EXIT_OK


def _cmd_upcoming(args: argparse.Namespace, settings: SchedulerSettings) -> int:
    controller = _load_controller(args, settings)
    _print_occurrences(controller.upcoming(args.limit), settings, args.json)
    return EXIT_OK


_COMMANDS = {
    "rrule": _cmd_rrule,
    "occurrences": _cmd_occurrences,
    "upcoming": _cmd_upcoming,
}


def main(argv: Optional[list[str]] = None) -> int:
    """Run the crmcal CLI and return the process exit code."""
    parser = _create_parser()
    args = parser.parse_args(argv)

    settings = load_settings(config_file=args.config, default_timezone=args.timezone)
    configure_logging(debug_mode=args.debug, level_name=settings.log_level)
    logger.debug("Running command %s with timezone %s", args.command, settings.default_timezone)

    try:
        return _COMMANDS[args.command](args, settings)
    except PersistenceError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except ValueError as e:
        print(f"Invalid input: {e}", file=sys.stderr)
        return EXIT_INVALID


if __name__ == "__main__":
    sys.exit(main())
