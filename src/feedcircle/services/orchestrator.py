"""Crawl cycle orchestration for feedcircle."""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol

from feedcircle.errors import DirectoryError, PersistenceError
from feedcircle.models import Article, Digest, Source
from feedcircle.utils.clock import Clock
from feedcircle.utils.logging import get_logger

logger = get_logger(__name__)


class SourceDirectory(Protocol):
    async def load_sources(self, url: str) -> list[Source]: ...


class SourceFetcher(Protocol):
    async def fetch(self, source: Source, max_items: int) -> list[Article]: ...


class DigestWriter(Protocol):
    def write_digest(self, path: str | Path, digest: Digest) -> None: ...


class CycleStatus(str, Enum):
    """Outcome of asking for a crawl cycle."""

    STARTED = "started"
    ALREADY_RUNNING = "already_running"


@dataclass
class SourceOutcome:
    """Articles from one source, or the reason it failed."""

    source: Source
    articles: list[Article] = field(default_factory=list)
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class CycleResult:
    """What a finished crawl cycle produced."""

    digest: Digest | None
    persisted: bool
    error: str | None = None


class CrawlOrchestrator:
    """Runs crawl cycles, never more than one at a time."""

    def __init__(
        self,
        directory: SourceDirectory,
        fetcher: SourceFetcher,
        writer: DigestWriter,
        clock: Clock,
        friends_url: str,
        output_file: str | Path,
        max_items: int = 5,
        concurrency: int = 10,
    ) -> None:
        self._directory = directory
        self._fetcher = fetcher
        self._writer = writer
        self._clock = clock
        self._friends_url = friends_url
        self._output_file = output_file
        self._max_items = max_items
        self._concurrency = concurrency

        self._busy = False
        self._background: set[asyncio.Task[CycleResult]] = set()
        self.last_digest: Digest | None = None

    @property
    def is_running(self) -> bool:
        return self._busy

    def _claim(self) -> bool:
        # No await between the check and the set: atomic on the event loop.
        if self._busy:
            return False
        self._busy = True
        return True

    async def try_run_cycle(self) -> CycleStatus:
        """Run a full cycle in the calling task unless one is already running."""
        if not self._claim():
            logger.info("Crawl already in progress, skipping")
            return CycleStatus.ALREADY_RUNNING
        await self._run_claimed()
        return CycleStatus.STARTED

    def start_cycle(self) -> CycleStatus:
        """Start a cycle in the background and return without waiting for it."""
        if not self._claim():
            logger.info("Crawl already in progress, not starting another")
            return CycleStatus.ALREADY_RUNNING
        task = asyncio.create_task(self._run_claimed())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return CycleStatus.STARTED

    async def wait_idle(self) -> None:
        """Wait for background cycles started by ``start_cycle``."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def _run_claimed(self) -> CycleResult:
        try:
            return await self.run_cycle()
        except Exception as e:
            logger.exception("Crawl cycle crashed", error=str(e))
            return CycleResult(digest=None, persisted=False, error=str(e))
        finally:
            self._busy = False

    async def run_cycle(self) -> CycleResult:
        """Crawl every source once and persist the resulting digest.

        Callers must hold the single-flight guard; use ``try_run_cycle`` or
        ``start_cycle`` rather than calling this directly.

        Returns:
            CycleResult with the digest (``None`` if the directory failed).
        """
        logger.info("Starting crawl cycle", friends_url=self._friends_url)

        try:
            sources = await self._directory.load_sources(self._friends_url)
        except DirectoryError as e:
            logger.error("Failed to load friend directory, cycle aborted", error=str(e))
            return CycleResult(digest=None, persisted=False, error=str(e))

        semaphore = asyncio.Semaphore(self._concurrency)

        async def bounded(source: Source) -> list[Article]:
            async with semaphore:
                return await self._fetcher.fetch(source, self._max_items)

        results = await asyncio.gather(
            *[bounded(source) for source in sources],
            return_exceptions=True,
        )

        outcomes: list[SourceOutcome] = []
        for source, result in zip(sources, results):
            if isinstance(result, BaseException):
                logger.warning("Source failed", source=source.name, url=source.feed_url, error=str(result))
                outcomes.append(SourceOutcome(source=source, error=str(result) or type(result).__name__))
            else:
                outcomes.append(SourceOutcome(source=source, articles=result))

        digest = self._build_digest(outcomes)
        self.last_digest = digest
        logger.info(
            "Crawl finished",
            articles=digest.meta.article_count,
            sources=digest.meta.sources_total,
            failed=digest.meta.sources_failed,
        )

        try:
            await asyncio.to_thread(self._writer.write_digest, self._output_file, digest)
        except PersistenceError as e:
            logger.error("Failed to write digest", path=str(self._output_file), error=str(e))
            return CycleResult(digest=digest, persisted=False, error=str(e))

        return CycleResult(digest=digest, persisted=True)

    def _build_digest(self, outcomes: list[SourceOutcome]) -> Digest:
        articles = [article for outcome in outcomes for article in outcome.articles]
        return Digest.build(
            articles=articles,
            generated_at=self._clock.format(self._clock.now()),
            sources_total=len(outcomes),
            failed_sources=[o.source.name for o in outcomes if o.failed],
        )
