from __future__ import annotations

import logging
from datetime import datetime, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from config.settings import settings
from core.models import BatchResult, ListingMode, RunResult, ScrapeParams, Timeframe
from data.database import SessionFactory, get_session
from data.repositories import TrendRepository
from scrapers.orchestrator import ScrapeOrchestrator

log = logging.getLogger(__name__)

HOT_JOB_ID = "scrape_hot"
TOP_JOB_ID = "scrape_top_week"


class ScrapeScheduler:
    """Recurring and on-demand entry points into one orchestrator."""

    def __init__(
        self,
        orchestrator: ScrapeOrchestrator,
        *,
        session_factory: SessionFactory = get_session,
        broadcast_fn=None,
    ) -> None:
        self._orchestrator = orchestrator
        self._session_factory = session_factory
        self._broadcast = broadcast_fn
        self._scheduler = AsyncIOScheduler()

    @property
    def hot_params(self) -> ScrapeParams:
        return ScrapeParams(limit=settings.HOT_LIMIT)

    @property
    def top_params(self) -> ScrapeParams:
        return ScrapeParams(limit=settings.TOP_LIMIT, timeframe=Timeframe.WEEK)

    def start(self) -> None:
        self._scheduler.add_job(
            self._run_batch,
            "interval",
            minutes=settings.HOT_INTERVAL_MINUTES,
            args=[ListingMode.HOT, self.hot_params],
            id=HOT_JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self._scheduler.add_job(
            self._run_batch,
            "interval",
            hours=settings.TOP_INTERVAL_HOURS,
            args=[ListingMode.TOP, self.top_params],
            id=TOP_JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        if settings.SCRAPE_ON_STARTUP:
            self._scheduler.add_job(
                self._run_batch,
                "date",
                run_date=datetime.now(timezone.utc),
                args=[ListingMode.HOT, self.hot_params],
                id=f"{HOT_JOB_ID}_init",
                replace_existing=True,
            )
        self._scheduler.start()
        log.info(
            "Scrape scheduler started: hot every %d min, top/week every %d h",
            settings.HOT_INTERVAL_MINUTES,
            settings.TOP_INTERVAL_HOURS,
        )

    def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    async def run_feed(
        self, feed_name: str, mode: ListingMode, params: ScrapeParams | None = None
    ) -> RunResult:
        """Manually trigger a single subreddit scrape."""
        return await self._orchestrator.scrape_one(feed_name, mode, params)

    async def run_all(
        self, mode: ListingMode, params: ScrapeParams | None = None
    ) -> BatchResult:
        """Manually trigger a sweep across all tracked subreddits.

        Raises ValueError for listing parameters the mode cannot use, before
        any subreddit is contacted.
        """
        params = params or ScrapeParams()
        params.validate_for(mode)
        return await self._run_batch(mode, params)

    def get_status(self) -> dict:
        jobs = []
        for job in self._scheduler.get_jobs():
            jobs.append(
                {
                    "id": job.id,
                    "next_run": job.next_run_time.isoformat()
                    if getattr(job, "next_run_time", None)
                    else None,
                }
            )
        return {"running": self._scheduler.running, "jobs": jobs}

    async def _run_batch(self, mode: ListingMode, params: ScrapeParams) -> BatchResult:
        batch = await self._orchestrator.scrape_all(mode, params)

        # Recompute trends after new data
        try:
            async with self._session_factory() as session:
                trends = TrendRepository(session)
                topics = await trends.analyze_trending_topics(
                    days_back=settings.TREND_DAYS_BACK,
                    min_mentions=settings.TREND_MIN_MENTIONS,
                )
                await trends.save_trending_topics(topics, time_period="week")
        except Exception:
            log.exception("Failed to recompute trending topics")

        if self._broadcast:
            await self._broadcast(batch.event_payload())
        return batch
