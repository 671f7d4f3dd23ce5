"""Shared fixtures for unit tests."""

from datetime import datetime, timedelta, timezone

import pytest

from feedcircle.utils.clock import FALLBACK_ZONE, Clock


class ManualClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.current = start
        super().__init__(tz=FALLBACK_ZONE, now=lambda: self.current)

    def advance(self, seconds: float) -> None:
        self.current = self.current + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> ManualClock:
    """A clock frozen at 2024-05-01 00:00:00 UTC (08:00:00 CST)."""
    return ManualClock(datetime(2024, 5, 1, 0, 0, 0, tzinfo=timezone.utc))
