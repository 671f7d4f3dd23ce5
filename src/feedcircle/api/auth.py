"""Authentication for the manual crawl trigger."""

import hmac

from fastapi import HTTPException, Query, Request, status

from feedcircle.api.ratelimit import client_id
from feedcircle.utils.logging import get_logger

logger = get_logger(__name__)


async def verify_trigger_key(
    request: Request,
    key: str = Query(default="", description="Shared secret"),
) -> None:
    """Check the ``key`` query parameter against the configured secret.

    Raises:
        HTTPException: 403 if the key is missing or wrong.
    """
    secret: str = request.app.state.settings.secret_key
    if not hmac.compare_digest(key.encode("utf-8"), secret.encode("utf-8")):
        logger.warning("Invalid trigger key", client=client_id(request))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="invalid access key",
        )
