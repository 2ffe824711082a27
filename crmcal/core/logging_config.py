"""
Central logging configuration for crmcal.

Installs a colorized console handler and pins the levels of the engine's
module loggers. Debug mode can be forced from the environment for
troubleshooting without code changes.
"""

import logging
import os
import sys
from typing import Optional

from colorlog import ColoredFormatter

LOG_FORMAT = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s"
LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold_red",
}

ENGINE_MODULES = [
    "crmcal",
    "crmcal.calendar.rule_builder",
    "crmcal.calendar.rrule_codec",
    "crmcal.calendar.rule_evaluator",
    "crmcal.calendar.occurrence_expander",
    "crmcal.domain.duration_policy",
    "crmcal.domain.view_controller",
    "crmcal.domain.reminder_scheduler",
    "crmcal.store",
]


def _env_debug() -> bool:
    return os.getenv("CRMCAL_DEBUG", "").strip().lower() in ("1", "true", "yes", "on")


def configure_logging(
    debug_mode: bool = False,
    force_debug: Optional[bool] = None,
    level_name: Optional[str] = None,
) -> int:
    """
    Configure console logging for crmcal.

    Args:
        debug_mode: Whether to enable debug logging for crmcal modules
        force_debug: Override debug mode setting (None to use env var detection)
        level_name: Root level name from settings (ignored when debug is on)

    Environment Variables:
        CRMCAL_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        CRMCAL_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        The root level that was applied
    """
    if force_debug is not None:
        final_debug = force_debug
    else:
        final_debug = debug_mode or _env_debug()

    root_level = logging.INFO
    if level_name:
        root_level = getattr(logging, level_name.upper(), logging.INFO)
    env_log_level = os.getenv("CRMCAL_LOG_LEVEL", "").upper()
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, env_log_level)
    if final_debug:
        root_level = logging.DEBUG

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    # Only add a handler if none exist to avoid duplicate output
    if not root_logger.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        handler.setFormatter(ColoredFormatter(LOG_FORMAT, datefmt="%H:%M:%S", log_colors=LOG_COLORS))
        root_logger.addHandler(handler)

    engine_level = logging.DEBUG if final_debug else root_level
    for module in ENGINE_MODULES:
        logging.getLogger(module).setLevel(engine_level)

    # asyncio is chatty at DEBUG about slow callbacks
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    root_logger.debug("Logging initialized at level %s", logging.getLevelName(root_level))
    return root_level
