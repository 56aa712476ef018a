"""Shared test fixtures for the subreddit ingestion pipeline."""

from __future__ import annotations

import asyncio

import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from core.models import ListingMode, RawItem, Timeframe
from data.database import init_db, session_scope
from scrapers.base import FeedClient

CREATED_UTC = 1700000000


def raw_post(post_id: str, **overrides) -> RawItem:
    data = {
        "id": post_id,
        "title": f"Post {post_id} about python packaging",
        "author": "someone",
        "subreddit": "python",
        "permalink": f"/r/python/comments/{post_id}/",
        "url": f"https://example.com/{post_id}",
        "created_utc": CREATED_UTC,
        "score": 10,
        "num_comments": 2,
        "selftext": "body",
        "upvote_ratio": 0.9,
    }
    data.update(overrides)
    return RawItem.model_validate(data)


class FakeFeedClient(FeedClient):
    """Serves canned listings; an Exception value makes that feed fail."""

    source_name = "fake"

    def __init__(self, listings: dict | None = None, delay: float = 0.0) -> None:
        self.listings = listings or {}
        self.delay = delay
        self.calls: list[tuple] = []
        self.in_flight: dict[str, int] = {}
        self.max_in_flight: dict[str, int] = {}

    async def fetch(
        self,
        feed_name: str,
        mode: ListingMode,
        limit: int,
        timeframe: Timeframe | None = None,
        query: str | None = None,
    ) -> list[RawItem]:
        self.calls.append((feed_name, mode, limit, timeframe, query))
        self.in_flight[feed_name] = self.in_flight.get(feed_name, 0) + 1
        self.max_in_flight[feed_name] = max(
            self.max_in_flight.get(feed_name, 0), self.in_flight[feed_name]
        )
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            listing = self.listings.get(feed_name, [])
            if isinstance(listing, Exception):
                raise listing
            return list(listing)[:limit]
        finally:
            self.in_flight[feed_name] -= 1


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """A committing session factory bound to a fresh SQLite file."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    yield lambda: session_scope(factory)
    await engine.dispose()


async def count_rows(session_factory, model, *where) -> int:
    async with session_factory() as session:
        q = select(func.count()).select_from(model)
        if where:
            q = q.where(*where)
        return await session.scalar(q)
