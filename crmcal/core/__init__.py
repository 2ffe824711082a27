"""Core infrastructure: settings, logging and time helpers."""

from .config import SchedulerSettings, load_settings
from .logging_config import configure_logging
from .timezone_utils import now_utc

__all__ = ["SchedulerSettings", "configure_logging", "load_settings", "now_utc"]
