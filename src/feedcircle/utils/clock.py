"""Time source bound to the service's display time zone."""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from feedcircle.utils.logging import get_logger

logger = get_logger(__name__)

DISPLAY_FORMAT = "%Y-%m-%d %H:%M:%S"

# Used when the tz database has no entry for the configured zone.
FALLBACK_ZONE = timezone(timedelta(hours=8), "CST")


def load_zone(name: str) -> tzinfo:
    """Resolve an IANA zone name, falling back to UTC+8."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown time zone, using fixed UTC+8", zone=name)
        return FALLBACK_ZONE


class Clock:
    """Injectable clock.

    All components read the current time through a ``Clock`` so tests can
    substitute a fixed or manually advanced time source.
    """

    def __init__(
        self,
        tz: tzinfo = FALLBACK_ZONE,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.tz = tz
        self._now = now or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        """Current time as an aware datetime in the display zone."""
        return self._now().astimezone(self.tz)

    def format(self, value: datetime) -> str:
        """Format a datetime as local time with second precision."""
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(self.tz).strftime(DISPLAY_FORMAT)

