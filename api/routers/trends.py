from __future__ import annotations

from fastapi import APIRouter, Query

from api.routers.posts import post_to_dict
from config.settings import settings
from data.database import get_session
from data.repositories import TrendRepository

router = APIRouter(prefix="/api/trends", tags=["trends"])


def _trend_to_dict(t) -> dict:
    return {
        "id": t.id,
        "subreddit": t.subreddit,
        "topic": t.topic,
        "mention_count": t.mention_count,
        "avg_score": t.avg_score,
        "avg_comments": t.avg_comments,
        "avg_engagement": t.avg_engagement,
        "time_period": t.time_period,
        "computed_at": t.computed_at.isoformat() if t.computed_at else None,
    }


@router.get("")
async def list_trends(
    subreddit: str | None = None,
    time_period: str = "week",
    limit: int = Query(50, ge=1, le=200),
):
    async with get_session() as session:
        repo = TrendRepository(session)
        trends = await repo.get_trending_topics(
            subreddit=subreddit, time_period=time_period, limit=limit
        )
        return [_trend_to_dict(t) for t in trends]


@router.get("/analyze")
async def analyze_trends(
    subreddit: str | None = None,
    days_back: int = Query(7, ge=1, le=365),
    min_mentions: int | None = Query(None, ge=1),
):
    async with get_session() as session:
        return await TrendRepository(session).analyze_trending_topics(
            subreddit=subreddit,
            days_back=days_back,
            min_mentions=min_mentions or settings.TREND_MIN_MENTIONS,
        )


@router.get("/top-week")
async def top_posts_week(limit: int = Query(50, ge=1, le=200)):
    async with get_session() as session:
        posts = await TrendRepository(session).get_top_posts_last_week(limit)
        return [post_to_dict(p) for p in posts]


@router.get("/fastest-growing")
async def fastest_growing(
    limit: int = Query(20, ge=1, le=100),
    hours: int = Query(24, ge=1, le=168),
):
    async with get_session() as session:
        return await TrendRepository(session).get_fastest_growing_posts(
            limit=limit, hours=hours
        )


@router.get("/high-engagement")
async def high_engagement(
    subreddit: str | None = None,
    days_back: int = Query(7, ge=1, le=365),
    limit: int = Query(50, ge=1, le=200),
):
    async with get_session() as session:
        posts = await TrendRepository(session).get_high_engagement_posts(
            subreddit=subreddit, days_back=days_back, limit=limit
        )
        return [post_to_dict(p) for p in posts]


@router.get("/subreddit-stats")
async def subreddit_stats():
    async with get_session() as session:
        return await TrendRepository(session).get_subreddit_stats()
