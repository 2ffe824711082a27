"""Settings for the crmcal scheduling engine.

Values come from (highest precedence first): explicit keyword overrides,
``CRMCAL_*`` environment variables / ``.env``, a YAML config file, defaults.
"""

from __future__ import annotations

import datetime
import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .timezone_utils import get_zone

logger = logging.getLogger(__name__)

ENV_PREFIX = "CRMCAL_"
CONFIG_FILE_ENV = "CRMCAL_CONFIG_FILE"
DEFAULT_CONFIG_FILE = Path.home() / ".config" / "crmcal" / "config.yaml"


class SchedulerSettings(BaseSettings):
    """Scheduling engine settings with environment variable support."""

    default_timezone: str = Field(
        default="UTC", description="IANA zone used for view windows and naive datetimes"
    )
    window_buffer_days: int = Field(
        default=7, ge=0, description="Safety margin added on both sides of a view window"
    )
    agenda_days: int = Field(default=30, ge=1, description="Length of the agenda view in days")
    max_occurrences_per_rule: int = Field(
        default=1000, ge=1, description="Upper bound on dates emitted per rule per expansion"
    )
    upcoming_limit: int = Field(default=5, ge=1, description="Default size of the upcoming list")
    notification_icon: Optional[str] = Field(
        default=None, description="Icon passed to reminder notifications"
    )
    store_path: Optional[Path] = Field(
        default=None, description="JSON file backing the scheduling store"
    )
    log_level: str = Field(default="INFO", description="Root log level")

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unsupported log level: {value}")
        return level

    @property
    def timezone(self) -> datetime.tzinfo:
        """Resolved tzinfo for ``default_timezone``."""
        return get_zone(self.default_timezone)


def find_config_file(explicit: Optional[Path] = None) -> Optional[Path]:
    """Locate the YAML config file.

    Order: explicit argument, CRMCAL_CONFIG_FILE, ~/.config/crmcal/config.yaml.
    """
    candidates: list[Path] = []
    if explicit is not None:
        candidates.append(Path(explicit))
    env_path = os.environ.get(CONFIG_FILE_ENV)
    if env_path:
        candidates.append(Path(env_path))
    candidates.append(DEFAULT_CONFIG_FILE)

    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


def load_yaml_config(path: Path) -> dict[str, Any]:
    """Read a YAML mapping from ``path``; malformed files yield an empty dict."""
    try:
        with path.open(encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as e:
        # Don't fail if YAML loading fails, just continue with defaults/env vars
        logger.warning("Could not load YAML config from %s: %s", path, e)
        return {}

    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring YAML config %s: root must be a mapping", path)
        return {}
    return data


def load_settings(config_file: Optional[Path] = None, **overrides: Any) -> SchedulerSettings:
    """Build settings from YAML, environment and explicit overrides.

    YAML values are only applied for fields that are not set through a
    CRMCAL_* environment variable, so the environment always wins over the file.
    """
    yaml_data: dict[str, Any] = {}
    path = find_config_file(config_file)
    if path is not None:
        yaml_data = load_yaml_config(path)
        logger.debug("Loaded config file %s with keys: %s", path, ", ".join(sorted(yaml_data)))

    env_keys = {
        key[len(ENV_PREFIX):].lower() for key in os.environ if key.upper().startswith(ENV_PREFIX)
    }
    values = {
        key: value
        for key, value in yaml_data.items()
        if key in SchedulerSettings.model_fields and key not in env_keys
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    return SchedulerSettings(**values)
