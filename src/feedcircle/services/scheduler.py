"""Cron-style scheduling of crawl cycles.

Expressions may have the usual five fields or six with a leading seconds
field (``"0 30 */6 * * *"`` fires at second 0, minute 30, every sixth hour).
Fire times are computed in the clock's zone.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from croniter import croniter

from feedcircle.utils.clock import Clock
from feedcircle.utils.logging import get_logger

logger = get_logger(__name__)


def to_croniter_expr(expr: str) -> str:
    """Move a leading seconds field to the end, where croniter expects it."""
    fields = expr.split()
    if len(fields) == 6:
        fields = fields[1:] + fields[:1]
    return " ".join(fields)


def is_valid_cron(expr: str) -> bool:
    """Check a five- or six-field cron expression."""
    if len(expr.split()) not in (5, 6):
        return False
    return croniter.is_valid(to_croniter_expr(expr))


class CronScheduler:
    """Awaits a job each time a cron expression fires."""

    def __init__(
        self,
        expr: str,
        job: Callable[[], Awaitable[Any]],
        clock: Clock,
        name: str = "crawl",
    ) -> None:
        if not is_valid_cron(expr):
            raise ValueError(f"invalid cron expression: {expr!r}")
        self._expr = expr
        self._job = job
        self._clock = clock
        self._name = name

    def next_fire_time(self, after: datetime) -> datetime:
        """First fire time strictly after ``after``."""
        return croniter(to_croniter_expr(self._expr), after).get_next(datetime)

    async def run(self) -> None:
        """Run the job on schedule until cancelled.

        A failing job is logged and the schedule continues. Fire times missed
        while a job was still running are skipped.
        """
        logger.info("Scheduler started", job=self._name, cron=self._expr)
        schedule = croniter(to_croniter_expr(self._expr), self._clock.now())
        while True:
            fire_at = schedule.get_next(datetime)
            now = self._clock.now()
            while fire_at <= now and (now - fire_at).total_seconds() >= 1:
                logger.warning("Skipping missed run", job=self._name, scheduled=self._clock.format(fire_at))
                fire_at = schedule.get_next(datetime)

            delay = (fire_at - now).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)

            logger.info("Scheduled run", job=self._name, scheduled=self._clock.format(fire_at))
            try:
                outcome = await self._job()
                logger.info("Scheduled run finished", job=self._name, outcome=outcome)
            except Exception as e:
                logger.exception("Scheduled run failed", job=self._name, error=str(e))
