from __future__ import annotations

import time

import pytest

from conftest import FakeFeedClient, raw_post
from config.settings import settings
from core.errors import FetchError
from core.models import ListingMode, Timeframe
from data.repositories import FeedRepository, TrendRepository
from scrapers.orchestrator import ScrapeOrchestrator
from scrapers.scheduler import HOT_JOB_ID, TOP_JOB_ID, ScrapeScheduler


def _scheduler(client, session_factory, broadcast_fn=None) -> ScrapeScheduler:
    orch = ScrapeOrchestrator(
        client,
        session_factory=session_factory,
        request_delay=0,
        feed_delay=0,
        request_timeout=5,
    )
    return ScrapeScheduler(orch, session_factory=session_factory, broadcast_fn=broadcast_fn)


@pytest.mark.asyncio
async def test_start_registers_both_recurring_triggers(session_factory, monkeypatch):
    monkeypatch.setattr(settings, "SCRAPE_ON_STARTUP", False)
    scheduler = _scheduler(FakeFeedClient(), session_factory)

    scheduler.start()
    try:
        status = scheduler.get_status()
    finally:
        scheduler.stop()

    assert status["running"] is True
    assert sorted(job["id"] for job in status["jobs"]) == sorted([HOT_JOB_ID, TOP_JOB_ID])
    assert all(job["next_run"] for job in status["jobs"])


def test_scheduled_params_match_cadences():
    scheduler = ScrapeScheduler(orchestrator=None)
    assert scheduler.hot_params.limit == settings.HOT_LIMIT
    assert scheduler.top_params.timeframe is Timeframe.WEEK
    assert scheduler.top_params.limit == settings.TOP_LIMIT


@pytest.mark.asyncio
async def test_run_all_scrapes_tracked_feeds_and_refreshes_trends(session_factory, monkeypatch):
    monkeypatch.setattr(settings, "TREND_MIN_MENTIONS", 2)
    async with session_factory() as session:
        await FeedRepository(session).seed(["python"])
    # Titles share keywords; created recently so the trend window sees them
    recent = time.time() - 3600
    client = FakeFeedClient(
        {
            "python": [
                raw_post("p1", title="Asyncio tricks", created_utc=recent),
                raw_post("p2", title="More asyncio tricks", created_utc=recent),
            ]
        }
    )
    events: list[dict] = []

    async def broadcast(data: dict) -> None:
        events.append(data)

    scheduler = _scheduler(client, session_factory, broadcast)
    batch = await scheduler.run_all(ListingMode.HOT)

    assert [r.feed_name for r in batch.results] == ["python"]
    assert batch.total_saved == 2
    assert events == [
        {
            "event": "scrape_complete",
            "mode": "hot",
            "feeds": 1,
            "errors": 0,
            "posts_found": 2,
            "posts_saved": 2,
            "failed_subreddits": [],
        }
    ]
    async with session_factory() as session:
        topics = await TrendRepository(session).get_trending_topics(time_period="week")
    assert {"asyncio", "tricks"} <= {t.topic for t in topics}


@pytest.mark.asyncio
async def test_failed_subreddits_are_named_in_the_event(session_factory):
    async with session_factory() as session:
        await FeedRepository(session).seed(["python", "rust"])
    client = FakeFeedClient(
        {"python": [raw_post("p1")], "rust": FetchError("rust", "HTTP 503")}
    )
    events: list[dict] = []

    async def broadcast(data: dict) -> None:
        events.append(data)

    await _scheduler(client, session_factory, broadcast).run_all(ListingMode.HOT)

    assert events[0]["errors"] == 1
    assert events[0]["failed_subreddits"] == ["rust"]
    assert "results" not in events[0]


@pytest.mark.asyncio
async def test_run_all_rejects_search_without_query_before_fetching(session_factory):
    async with session_factory() as session:
        await FeedRepository(session).seed(["python"])
    client = FakeFeedClient()
    events: list[dict] = []

    async def broadcast(data: dict) -> None:
        events.append(data)

    with pytest.raises(ValueError):
        await _scheduler(client, session_factory, broadcast).run_all(ListingMode.SEARCH)

    assert client.calls == []
    assert events == []
