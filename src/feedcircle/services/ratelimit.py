"""Per-client rate limiting with temporary blocks.

Every (client, rate) pair owns a token bucket. A client that empties its
bucket is blocked for a configured period; requests during the block are
rejected without touching the bucket. Once the block expires the next request
is judged on the bucket alone. Idle entries are removed by a periodic sweep.

All state changes happen in synchronous code with no ``await`` in between, so
request handlers and the sweep task running on the same event loop never see a
half-updated entry and no lock is needed.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta

from feedcircle.errors import ConfigurationError
from feedcircle.utils.clock import Clock
from feedcircle.utils.logging import get_logger

logger = get_logger(__name__)

MAX_BURST = 10


def make_key(client_id: str, rate: int) -> str:
    """Key under which a client's state for one configured rate is stored."""
    return f"{client_id.strip()}|{rate}"


class TokenBucket:
    """Token bucket refilled continuously at ``rate`` tokens per second."""

    def __init__(self, rate: float, capacity: int, now: datetime) -> None:
        self.rate = rate
        self.capacity = capacity
        self.tokens = float(capacity)
        self.last_refill = now

    def _refill(self, now: datetime) -> None:
        elapsed = (now - self.last_refill).total_seconds()
        if elapsed > 0:
            self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
            self.last_refill = now

    def try_consume(self, now: datetime) -> bool:
        """Take one token if available."""
        self._refill(now)
        if self.tokens >= 1:
            self.tokens -= 1
            return True
        return False


@dataclass
class RateLimiterEntry:
    """State kept for one client key."""

    bucket: TokenBucket
    last_access: datetime | None = None
    blocked_until: datetime | None = None


@dataclass(frozen=True)
class RateDecision:
    """Result of checking one request."""

    allowed: bool
    blocked_until: datetime | None = None


class RateLimiter:
    """Adaptive rate limiter shared by all rate-limited endpoints."""

    def __init__(self, clock: Clock, max_burst: int = MAX_BURST) -> None:
        self._clock = clock
        self._max_burst = max_burst
        self._entries: dict[str, RateLimiterEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get_entry(self, key: str) -> RateLimiterEntry | None:
        return self._entries.get(key)

    def check(
        self,
        client_id: str,
        rate: int,
        block_duration: timedelta,
        burst: int | None = None,
    ) -> RateDecision:
        """Decide whether a request from ``client_id`` may proceed.

        Args:
            client_id: Identifier of the caller, usually its IP address.
            rate: Allowed requests per second for this endpoint.
            block_duration: How long a client stays blocked after exceeding ``rate``.
            burst: Bucket capacity for a new entry, capped at ``rate``. Defaults to
                the limiter's ``max_burst``.

        Raises:
            ConfigurationError: If ``rate`` or ``burst`` is not positive.
        """
        if rate <= 0:
            raise ConfigurationError(f"invalid rate limit configuration: {rate}")
        if burst is None:
            burst = self._max_burst
        elif burst <= 0:
            raise ConfigurationError(f"invalid burst configuration: {burst}")

        key = make_key(client_id, rate)
        now = self._clock.now()

        entry = self._entries.get(key)
        if entry is None:
            capacity = min(rate, burst)
            entry = RateLimiterEntry(bucket=TokenBucket(rate, capacity, now))
            self._entries[key] = entry
        entry.last_access = now

        if entry.blocked_until is not None:
            if now < entry.blocked_until:
                logger.warning(
                    "Client is blocked",
                    client=client_id,
                    blocked_until=self._clock.format(entry.blocked_until),
                )
                return RateDecision(allowed=False, blocked_until=entry.blocked_until)
            entry.blocked_until = None

        if entry.bucket.try_consume(now):
            return RateDecision(allowed=True)

        entry.blocked_until = now + block_duration
        logger.error(
            "Rate limit exceeded",
            client=client_id,
            rate=rate,
            blocked_until=self._clock.format(entry.blocked_until),
        )
        return RateDecision(allowed=False, blocked_until=entry.blocked_until)

    def sweep(self, ttl: timedelta) -> int:
        """Remove entries idle for longer than ``ttl``.

        Returns:
            Number of entries removed.
        """
        now = self._clock.now()
        expired = [
            key
            for key, entry in self._entries.items()
            if entry.last_access is None or now - entry.last_access > ttl
        ]
        for key in expired:
            del self._entries[key]
            logger.info("Removed idle rate limiter entry", key=key)
        return len(expired)

    async def run_sweeper(self, interval: timedelta, ttl: timedelta) -> None:
        """Sweep idle entries every ``interval`` until cancelled."""
        while True:
            await asyncio.sleep(interval.total_seconds())
            logger.info("Starting rate limiter cleanup", entries=len(self._entries))
            removed = self.sweep(ttl)
            logger.info("Rate limiter cleanup finished", removed=removed, remaining=len(self._entries))
