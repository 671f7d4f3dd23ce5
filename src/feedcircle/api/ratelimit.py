"""Rate-limit dependency for API endpoints."""

from dataclasses import dataclass
from datetime import timedelta

from fastapi import HTTPException, Request, status

from feedcircle.errors import ConfigurationError
from feedcircle.services.ratelimit import MAX_BURST, RateLimiter
from feedcircle.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RatePolicy:
    """Limits applied to one endpoint."""

    rate: int
    block_duration: timedelta
    burst: int = MAX_BURST


def client_id(request: Request) -> str:
    """Identify the caller, preferring the first proxy-forwarded address."""
    forwarded = request.headers.get("x-forwarded-for", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop
    return request.client.host if request.client else "unknown"


class RateLimit:
    """FastAPI dependency enforcing the policy registered for ``endpoint``.

    Policies live in ``app.state.rate_policies`` so each application instance
    can configure its endpoints independently.
    """

    def __init__(self, endpoint: str) -> None:
        self.endpoint = endpoint

    async def __call__(self, request: Request) -> None:
        limiter: RateLimiter = request.app.state.limiter
        policy: RatePolicy = request.app.state.rate_policies[self.endpoint]
        ip = client_id(request)

        try:
            decision = limiter.check(ip, policy.rate, policy.block_duration, burst=policy.burst)
        except ConfigurationError as e:
            logger.error("Bad rate limit configuration", endpoint=self.endpoint, error=str(e))
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="invalid rate limit configuration",
            ) from e

        if not decision.allowed:
            retry_at = request.app.state.clock.format(decision.blocked_until)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=f"too many requests, please wait until {retry_at}",
            )
