from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, HTTPException, Query

from data.database import get_session
from data.repositories import PostRepository, SnapshotRepository, TrendRepository

router = APIRouter(prefix="/api/posts", tags=["posts"])


def post_to_dict(p) -> dict:
    return {
        "post_id": p.post_id,
        "title": p.title,
        "author": p.author,
        "subreddit": p.subreddit,
        "score": p.score,
        "upvote_ratio": p.upvote_ratio,
        "num_comments": p.num_comments,
        "engagement_score": p.engagement_score,
        "url": p.url,
        "permalink": p.permalink,
        "selftext": p.selftext[:300],
        "is_video": p.is_video,
        "domain": p.domain,
        "link_flair_text": p.link_flair_text,
        "created_utc": p.created_utc.isoformat() if p.created_utc else None,
        "last_updated_at": p.last_updated_at.isoformat() if p.last_updated_at else None,
    }


@router.get("")
async def list_posts(
    subreddit: str | None = None,
    author: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    async with get_session() as session:
        repo = PostRepository(session)
        if author:
            posts = await repo.get_posts_by_author(author, limit=limit)
        elif start and end:
            posts = await repo.get_posts_by_date_range(start, end, subreddit=subreddit)
        else:
            posts = await repo.list_posts(subreddit=subreddit, limit=limit, offset=offset)
        return [post_to_dict(p) for p in posts]


@router.get("/search")
async def search_posts(
    query: str = Query(..., min_length=1),
    subreddit: str | None = None,
    limit: int = Query(50, ge=1, le=200),
):
    async with get_session() as session:
        posts = await PostRepository(session).search_posts(
            query, subreddit=subreddit, limit=limit
        )
        return [post_to_dict(p) for p in posts]


@router.get("/{post_id}/snapshots")
async def post_snapshots(post_id: str, limit: int = Query(50, ge=1, le=500)):
    async with get_session() as session:
        snaps = await SnapshotRepository(session).list_for_post(post_id, limit=limit)
        return [
            {
                "score": s.score,
                "num_comments": s.num_comments,
                "upvote_ratio": s.upvote_ratio,
                "snapshot_at": s.snapshot_at.isoformat(),
            }
            for s in snaps
        ]


@router.get("/{post_id}/velocity")
async def post_velocity(post_id: str):
    async with get_session() as session:
        velocity = await TrendRepository(session).get_post_velocity(post_id)
    if velocity is None:
        raise HTTPException(404, f"Unknown post: {post_id}")
    return velocity
