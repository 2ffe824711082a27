"""Shared fixtures for crmcal tests."""

import datetime
import os
from collections.abc import Callable, Generator
from typing import Any

import pytest

from crmcal.core.config import SchedulerSettings
from crmcal.models import EventType, MasterEvent

UTC = datetime.UTC


def pytest_configure(config: Any) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "fast: Tests without I/O or timers")


@pytest.fixture(autouse=True)
def clean_crmcal_environment(monkeypatch: pytest.MonkeyPatch) -> Generator[None, Any, None]:
    """Clear CRMCAL_* variables so host settings never leak into tests."""
    for key in list(os.environ):
        if key.upper().startswith("CRMCAL_"):
            monkeypatch.delenv(key, raising=False)
    yield


@pytest.fixture
def settings() -> SchedulerSettings:
    """Deterministic settings that ignore any .env file."""
    return SchedulerSettings(_env_file=None)


@pytest.fixture
def make_master() -> Callable[..., MasterEvent]:
    """Factory for master events with sensible defaults (Monday 2024-01-01 09:00 UTC)."""

    def _make(**overrides: Any) -> MasterEvent:
        start = overrides.pop("start", datetime.datetime(2024, 1, 1, 9, 0, tzinfo=UTC))
        fields: dict[str, Any] = {
            "id": "m1",
            "user_id": "u1",
            "title": "Standup",
            "type": EventType.MEETING,
            "start": start,
            "end": overrides.pop("end", start + datetime.timedelta(minutes=30)),
        }
        fields.update(overrides)
        return MasterEvent(**fields)

    return _make
