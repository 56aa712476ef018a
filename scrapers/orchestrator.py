from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Sequence
from datetime import datetime, timezone

from config.settings import settings
from core.errors import FetchError
from core.models import (
    BatchResult,
    IngestOutcome,
    ListingMode,
    RawItem,
    RunResult,
    RunStatus,
    ScrapeParams,
)
from data.database import SessionFactory, get_session
from data.repositories import FeedRepository
from scrapers.base import FeedClient, RateLimiter
from scrapers.ingestor import Ingestor
from scrapers.run_logger import RunLogger, RunLogInput

log = logging.getLogger(__name__)


def describe(mode: ListingMode, params: ScrapeParams) -> str:
    if mode is ListingMode.TOP and params.timeframe:
        return f"top/{params.timeframe.value}"
    if mode is ListingMode.SEARCH:
        return f"search {params.query!r}"
    return mode.value


class ScrapeOrchestrator:
    """Sequences fetch → ingest → run log across one or many subreddits.

    All outbound requests share one rate limiter. Runs against the same
    subreddit never overlap: each holds that subreddit's lock for its whole
    duration, so a manual run started during a scheduled one waits for it.
    """

    def __init__(
        self,
        client: FeedClient,
        *,
        session_factory: SessionFactory = get_session,
        ingestor: Ingestor | None = None,
        run_logger: RunLogger | None = None,
        request_delay: float | None = None,
        feed_delay: float | None = None,
        request_timeout: float | None = None,
    ) -> None:
        self._client = client
        self._session_factory = session_factory
        self._ingestor = ingestor or Ingestor(
            session_factory, snapshot_policy=settings.SNAPSHOT_POLICY
        )
        self._run_logger = run_logger or RunLogger(session_factory)
        self._limiter = RateLimiter(
            settings.REQUEST_DELAY_SECONDS if request_delay is None else request_delay
        )
        self._feed_delay = settings.FEED_DELAY_SECONDS if feed_delay is None else feed_delay
        self._request_timeout = (
            settings.REQUEST_TIMEOUT_SECONDS if request_timeout is None else request_timeout
        )
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def scrape_one(
        self, feed_name: str, mode: ListingMode, params: ScrapeParams | None = None
    ) -> RunResult:
        """Scrape a single subreddit. Fetch failures are logged, then re-raised."""
        params = params or ScrapeParams()
        params.validate_for(mode)
        result, error = await self._run(feed_name, mode, params)
        if error is not None:
            raise error
        return result

    async def scrape_all(
        self,
        mode: ListingMode,
        params: ScrapeParams | None = None,
        feeds: Sequence[str] | None = None,
    ) -> BatchResult:
        """Scrape every tracked subreddit in order; one result per subreddit.

        Never raises: invalid listing parameters, like fetch failures, show up
        as an error result for each subreddit.
        """
        params = params or ScrapeParams()
        batch = BatchResult(mode=mode)

        if feeds is None:
            try:
                feeds = await self.tracked_feeds()
            except Exception:
                log.exception("Could not load tracked subreddits; skipping batch")
                return batch

        log.info("Starting batch %s over %d subreddits", describe(mode, params), len(feeds))
        for index, feed_name in enumerate(feeds):
            if index:
                await asyncio.sleep(self._feed_delay)
            result, _ = await self._run(feed_name, mode, params)
            batch.results.append(result)

        log.info(
            "Finished batch %s | %d subreddits | %d found (%d new) | %d errors",
            describe(mode, params),
            len(batch.results),
            batch.total_found,
            batch.total_saved,
            len(batch.failed),
        )
        return batch

    async def tracked_feeds(self) -> list[str]:
        async with self._session_factory() as session:
            return [f.name for f in await FeedRepository(session).list_tracked()]

    async def _fetch(
        self, feed_name: str, mode: ListingMode, params: ScrapeParams
    ) -> list[RawItem]:
        await self._limiter.wait()
        try:
            return await asyncio.wait_for(
                self._client.fetch(
                    feed_name,
                    mode,
                    params.limit,
                    timeframe=params.timeframe,
                    query=params.query,
                ),
                timeout=self._request_timeout,
            )
        except FetchError:
            raise
        except asyncio.TimeoutError as exc:
            raise FetchError(
                feed_name, f"request timed out after {self._request_timeout:g}s"
            ) from exc
        except Exception as exc:
            raise FetchError(feed_name, f"{type(exc).__name__}: {exc}") from exc

    async def _run(
        self, feed_name: str, mode: ListingMode, params: ScrapeParams
    ) -> tuple[RunResult, Exception | None]:
        async with self._locks[feed_name]:
            started_at = datetime.now(timezone.utc)
            t0 = time.monotonic()
            log.info("Starting scrape: r/%s %s", feed_name, describe(mode, params))

            outcome = IngestOutcome()
            error: Exception | None = None
            try:
                params.validate_for(mode)
                raw_items = await self._fetch(feed_name, mode, params)
                outcome = await self._ingestor.ingest(feed_name, raw_items)
            except Exception as exc:
                error = exc
                log.error("Scrape failed: r/%s %s: %s", feed_name, describe(mode, params), exc)

            duration_ms = int((time.monotonic() - t0) * 1000)
            status = RunStatus.ERROR if error is not None else RunStatus.SUCCESS
            error_message = (str(error) or type(error).__name__) if error is not None else None

            try:
                await self._run_logger.log(
                    RunLogInput(
                        feed_name=feed_name,
                        mode=mode,
                        timeframe=params.timeframe,
                        query=params.query,
                        status=status,
                        items_found=outcome.found,
                        items_saved=outcome.saved,
                        items_updated=outcome.updated,
                        items_failed=outcome.failed,
                        error_message=error_message,
                        duration_ms=duration_ms,
                        started_at=started_at,
                    )
                )
            except Exception:
                log.exception("Failed to write run log for r/%s", feed_name)

            if error is None:
                await self._touch_last_scraped(feed_name)

            log.info(
                "Finished scrape: r/%s | %s | %d posts (%d new, %d updated, %d failed) | %dms",
                feed_name,
                status.value,
                outcome.found,
                outcome.saved,
                outcome.updated,
                outcome.failed,
                duration_ms,
            )
            result = RunResult(
                feed_name=feed_name,
                mode=mode,
                timeframe=params.timeframe,
                query=params.query,
                status=status,
                started_at=started_at,
                completed_at=datetime.now(timezone.utc),
                duration_ms=duration_ms,
                items_found=outcome.found,
                items_saved=outcome.saved,
                items_updated=outcome.updated,
                items_failed=outcome.failed,
                error_message=error_message,
                saved_items=outcome.saved_items,
            )
            return result, error

    async def _touch_last_scraped(self, feed_name: str) -> None:
        try:
            async with self._session_factory() as session:
                await FeedRepository(session).touch_last_scraped(
                    feed_name, datetime.now(timezone.utc)
                )
        except Exception:
            log.exception("Failed to update last_scraped_at for r/%s", feed_name)
