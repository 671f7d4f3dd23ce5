"""API routes for feedcircle."""

import asyncio

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, Response

from feedcircle import __version__
from feedcircle.api.auth import verify_trigger_key
from feedcircle.api.models import ErrorResponse, HealthResponse, MessageResponse
from feedcircle.api.ratelimit import RateLimit
from feedcircle.clients.storage import DigestStorage
from feedcircle.errors import PersistenceError
from feedcircle.services.orchestrator import CrawlOrchestrator, CycleStatus
from feedcircle.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["api"])

ERROR_RESPONSES = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_429_TOO_MANY_REQUESTS: {"model": ErrorResponse},
}


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    """Health check endpoint."""
    orchestrator: CrawlOrchestrator | None = getattr(request.app.state, "orchestrator", None)
    return HealthResponse(
        status="healthy",
        version=__version__,
        crawling=orchestrator.is_running if orchestrator else False,
    )


@router.get(
    "/trigger",
    response_model=MessageResponse,
    responses={
        **ERROR_RESPONSES,
        status.HTTP_403_FORBIDDEN: {"model": ErrorResponse},
        status.HTTP_425_TOO_EARLY: {"model": MessageResponse},
    },
    dependencies=[Depends(RateLimit("trigger")), Depends(verify_trigger_key)],
)
async def trigger(request: Request) -> MessageResponse | JSONResponse:
    """Start a crawl cycle in the background.

    Responds as soon as the cycle has started; it does not wait for it to
    finish. Returns 425 when a cycle is already running.
    """
    orchestrator: CrawlOrchestrator = request.app.state.orchestrator

    if orchestrator.start_cycle() is CycleStatus.ALREADY_RUNNING:
        return JSONResponse(
            status_code=status.HTTP_425_TOO_EARLY,
            content={"message": "a crawl is already running, please try again later"},
        )

    logger.info("Crawl triggered over HTTP")
    return MessageResponse(message="crawl started")


@router.get(
    "/digest",
    responses={
        **ERROR_RESPONSES,
        status.HTTP_200_OK: {"content": {"application/json": {}}},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    },
    dependencies=[Depends(RateLimit("digest"))],
)
async def digest(request: Request) -> Response:
    """Return the last persisted digest exactly as stored."""
    storage: DigestStorage = request.app.state.storage
    path = request.app.state.settings.output_file

    try:
        data = await asyncio.to_thread(storage.read_digest, path)
    except PersistenceError as e:
        logger.error("Failed to read digest", path=path, error=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "failed to read data, please try again later"},
        )

    return Response(content=data, media_type="application/json")
