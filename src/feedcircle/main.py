"""FastAPI application entry point for feedcircle."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from feedcircle import __version__
from feedcircle.api.ratelimit import RatePolicy
from feedcircle.api.routes import router
from feedcircle.clients.feed import FeedFetcher
from feedcircle.clients.friends import FriendDirectory
from feedcircle.clients.storage import DigestStorage
from feedcircle.config import Settings, get_settings
from feedcircle.services.orchestrator import CrawlOrchestrator
from feedcircle.services.ratelimit import RateLimiter
from feedcircle.services.scheduler import CronScheduler
from feedcircle.utils.clock import Clock, load_zone
from feedcircle.utils.logging import get_logger, setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager.

    Builds the crawl pipeline, starts the scheduler and the rate limiter
    sweep, and kicks off the first crawl.
    """
    settings: Settings = app.state.settings
    setup_logging(settings.log_level, settings.log_file)
    logger = get_logger(__name__)
    logger.info("feedcircle starting", version=__version__, cron=settings.cron_expr)

    clock: Clock = app.state.clock
    limiter: RateLimiter = app.state.limiter

    async with FriendDirectory(timeout=settings.fetch_timeout) as directory:
        async with FeedFetcher(
            clock=clock,
            timeout=settings.fetch_timeout,
            retries=settings.fetch_retries,
            retry_delay=settings.fetch_retry_delay,
        ) as fetcher:
            orchestrator = CrawlOrchestrator(
                directory=directory,
                fetcher=fetcher,
                writer=app.state.storage,
                clock=clock,
                friends_url=settings.friends_url,
                output_file=settings.output_file,
                max_items=settings.max_items_per_source,
                concurrency=settings.fetch_concurrency,
            )
            app.state.orchestrator = orchestrator

            scheduler = CronScheduler(settings.cron_expr, orchestrator.try_run_cycle, clock)
            background = [
                asyncio.create_task(scheduler.run()),
                asyncio.create_task(
                    limiter.run_sweeper(
                        interval=timedelta(seconds=settings.ratelimit_sweep_interval),
                        ttl=timedelta(seconds=settings.ratelimit_ttl),
                    )
                ),
            ]

            if settings.run_on_startup:
                logger.info("Starting initial crawl")
                orchestrator.start_cycle()

            try:
                yield
            finally:
                for task in background:
                    task.cancel()
                await asyncio.gather(*background, return_exceptions=True)
                await orchestrator.wait_idle()
                logger.info("feedcircle shutting down")


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render HTTP errors as ``{"error": ...}``."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application and the state its routes depend on."""
    settings = settings or get_settings()

    app = FastAPI(
        title="feedcircle",
        description="Friend-circle blog aggregator",
        version=__version__,
        lifespan=lifespan,
    )

    clock = Clock(tz=load_zone(settings.timezone))
    app.state.settings = settings
    app.state.clock = clock
    app.state.limiter = RateLimiter(clock)
    app.state.storage = DigestStorage()
    app.state.rate_policies = {
        "trigger": RatePolicy(
            rate=settings.trigger_rate,
            block_duration=timedelta(seconds=settings.trigger_block_seconds),
            burst=settings.trigger_burst,
        ),
        "digest": RatePolicy(
            rate=settings.digest_rate,
            block_duration=timedelta(seconds=settings.digest_block_seconds),
            burst=settings.digest_burst,
        ),
    }

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
    )
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.include_router(router)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint with basic info."""
        return {
            "name": "feedcircle",
            "version": __version__,
            "docs": "/docs",
        }

    return app


def main() -> None:
    """Run the service with uvicorn."""
    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
