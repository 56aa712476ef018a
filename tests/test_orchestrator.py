from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import select

from conftest import FakeFeedClient, count_rows, raw_post
from core.errors import FetchError
from core.models import ListingMode, RunStatus, ScrapeParams, Timeframe
from data.repositories import FeedRepository, PostRepository
from data.schema import DBPost, DBScrapeRun
from scrapers.orchestrator import ScrapeOrchestrator


def _orchestrator(client, session_factory, **kwargs) -> ScrapeOrchestrator:
    kwargs.setdefault("request_delay", 0)
    kwargs.setdefault("feed_delay", 0)
    kwargs.setdefault("request_timeout", 5)
    return ScrapeOrchestrator(client, session_factory=session_factory, **kwargs)


async def _runs(session_factory) -> list[DBScrapeRun]:
    async with session_factory() as session:
        result = await session.execute(select(DBScrapeRun).order_by(DBScrapeRun.id))
        return list(result.scalars().all())


async def _seed(session_factory, *names: str) -> None:
    async with session_factory() as session:
        await FeedRepository(session).seed(list(names))


@pytest.mark.asyncio
async def test_scrape_one_success_writes_one_run_log(session_factory):
    await _seed(session_factory, "python")
    client = FakeFeedClient({"python": [raw_post("p1"), raw_post("p2")]})
    orch = _orchestrator(client, session_factory)

    result = await orch.scrape_one(
        "python", ListingMode.TOP, ScrapeParams(limit=50, timeframe=Timeframe.WEEK)
    )

    assert result.status is RunStatus.SUCCESS
    assert (result.items_found, result.items_saved) == (2, 2)
    assert client.calls == [("python", ListingMode.TOP, 50, Timeframe.WEEK, None)]

    runs = await _runs(session_factory)
    assert len(runs) == 1
    assert runs[0].status == "success"
    assert runs[0].scrape_type == "top"
    assert runs[0].timeframe == "week"
    assert (runs[0].posts_found, runs[0].posts_saved) == (2, 2)
    assert runs[0].error_message is None
    assert runs[0].completed_at >= runs[0].started_at

    async with session_factory() as session:
        feeds = await FeedRepository(session).list_tracked()
    assert feeds[0].last_scraped_at is not None


@pytest.mark.asyncio
async def test_scrape_one_failure_is_logged_then_reraised(session_factory):
    client = FakeFeedClient({"python": FetchError("python", "HTTP 503")})
    orch = _orchestrator(client, session_factory)

    with pytest.raises(FetchError):
        await orch.scrape_one("python", ListingMode.HOT)

    runs = await _runs(session_factory)
    assert len(runs) == 1
    assert runs[0].status == "error"
    assert (runs[0].posts_found, runs[0].posts_saved) == (0, 0)
    assert runs[0].error_message


@pytest.mark.asyncio
async def test_unexpected_client_error_becomes_fetch_error(session_factory):
    client = FakeFeedClient({"python": RuntimeError("connection reset")})
    orch = _orchestrator(client, session_factory)

    with pytest.raises(FetchError, match="connection reset"):
        await orch.scrape_one("python", ListingMode.NEW)


@pytest.mark.asyncio
async def test_slow_feed_times_out(session_factory):
    client = FakeFeedClient({"python": [raw_post("p1")]}, delay=5)
    orch = _orchestrator(client, session_factory, request_timeout=0.05)

    with pytest.raises(FetchError, match="timed out"):
        await orch.scrape_one("python", ListingMode.HOT)

    runs = await _runs(session_factory)
    assert [r.status for r in runs] == ["error"]


@pytest.mark.asyncio
async def test_partial_item_failure_still_logs_success(session_factory, monkeypatch):
    original = PostRepository.insert_new

    async def flaky_insert(self, item, now):
        if item.post_id == "p2":
            raise RuntimeError("constraint failed")
        return await original(self, item, now)

    monkeypatch.setattr(PostRepository, "insert_new", flaky_insert)
    client = FakeFeedClient({"python": [raw_post("p1"), raw_post("p2"), raw_post("p3")]})

    result = await _orchestrator(client, session_factory).scrape_one("python", ListingMode.HOT)

    assert result.status is RunStatus.SUCCESS
    assert (result.items_found, result.items_saved, result.items_failed) == (3, 2, 1)
    runs = await _runs(session_factory)
    assert runs[0].status == "success"
    assert runs[0].posts_failed == 1


@pytest.mark.asyncio
async def test_batch_isolates_a_failing_feed(session_factory):
    client = FakeFeedClient(
        {
            "alpha": [raw_post("a1", subreddit="alpha")],
            "beta": FetchError("beta", "HTTP 500"),
            "gamma": [raw_post("g1", subreddit="gamma"), raw_post("g2", subreddit="gamma")],
        }
    )
    orch = _orchestrator(client, session_factory)

    batch = await orch.scrape_all(ListingMode.HOT, feeds=["alpha", "beta", "gamma"])

    assert [r.feed_name for r in batch.results] == ["alpha", "beta", "gamma"]
    assert [r.status for r in batch.results] == [
        RunStatus.SUCCESS,
        RunStatus.ERROR,
        RunStatus.SUCCESS,
    ]
    assert batch.results[0].items_saved == 1
    assert batch.results[2].items_saved == 2
    assert "HTTP 500" in batch.results[1].error_message
    assert len(batch.failed) == 1
    assert await count_rows(session_factory, DBPost) == 3
    assert len(await _runs(session_factory)) == 3


@pytest.mark.asyncio
async def test_batch_reports_every_feed_even_when_all_fail(session_factory):
    client = FakeFeedClient({name: FetchError(name, "HTTP 429") for name in ("a", "b")})

    batch = await _orchestrator(client, session_factory).scrape_all(
        ListingMode.HOT, feeds=["a", "b"]
    )

    assert len(batch.results) == 2
    assert all(r.status is RunStatus.ERROR for r in batch.results)


@pytest.mark.asyncio
async def test_batch_follows_tracked_feed_order_and_skips_inactive(session_factory):
    await _seed(session_factory, "zeta", "alpha", "mid")
    async with session_factory() as session:
        await FeedRepository(session).toggle("alpha", False)
    client = FakeFeedClient()

    batch = await _orchestrator(client, session_factory).scrape_all(ListingMode.HOT)

    assert [r.feed_name for r in batch.results] == ["zeta", "mid"]
    assert [c[0] for c in client.calls] == ["zeta", "mid"]


@pytest.mark.asyncio
async def test_batch_waits_between_requests_and_between_feeds(session_factory, monkeypatch):
    real_sleep = asyncio.sleep
    delays: list[float] = []

    async def recording_sleep(delay, *args, **kwargs):
        delays.append(delay)
        await real_sleep(0)

    monkeypatch.setattr(asyncio, "sleep", recording_sleep)
    orch = _orchestrator(FakeFeedClient(), session_factory, request_delay=1.0, feed_delay=2.0)

    await orch.scrape_all(ListingMode.HOT, feeds=["a", "b", "c"])

    assert delays.count(2.0) == 2
    request_waits = [d for d in delays if d != 2.0]
    assert len(request_waits) == 2
    assert all(0.5 < d <= 1.0 for d in request_waits)


@pytest.mark.asyncio
async def test_overlapping_runs_on_one_feed_are_serialized(session_factory):
    client = FakeFeedClient({"python": [raw_post("p1")]}, delay=0.02)
    orch = _orchestrator(client, session_factory)

    first, second = await asyncio.gather(
        orch.scrape_one("python", ListingMode.HOT),
        orch.scrape_one("python", ListingMode.HOT),
    )

    assert client.max_in_flight["python"] == 1
    assert first.items_saved + second.items_saved == 1
    assert await count_rows(session_factory, DBPost) == 1


@pytest.mark.asyncio
async def test_search_without_query_is_rejected(session_factory):
    orch = _orchestrator(FakeFeedClient(), session_factory)

    with pytest.raises(ValueError):
        await orch.scrape_one("python", ListingMode.SEARCH)

    assert await _runs(session_factory) == []


@pytest.mark.asyncio
async def test_batch_turns_invalid_params_into_per_feed_errors(session_factory):
    client = FakeFeedClient()
    orch = _orchestrator(client, session_factory)

    batch = await orch.scrape_all(ListingMode.SEARCH, feeds=["a", "b"])

    assert [r.feed_name for r in batch.results] == ["a", "b"]
    assert all(r.status is RunStatus.ERROR for r in batch.results)
    assert all("query" in r.error_message for r in batch.results)
    assert client.calls == []
    runs = await _runs(session_factory)
    assert [(r.subreddit, r.status) for r in runs] == [("a", "error"), ("b", "error")]


@pytest.mark.asyncio
async def test_unusable_post_counts_as_failed_in_a_successful_run(session_factory):
    client = FakeFeedClient(
        {"python": [raw_post("p1"), raw_post("p2", created_utc=1e20), raw_post("p3")]}
    )

    result = await _orchestrator(client, session_factory).scrape_one("python", ListingMode.HOT)

    assert result.status is RunStatus.SUCCESS
    assert (result.items_saved, result.items_failed) == (2, 1)
    runs = await _runs(session_factory)
    assert (runs[0].status, runs[0].posts_saved, runs[0].posts_failed) == ("success", 2, 1)
