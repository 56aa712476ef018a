from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError

from data.database import get_session
from data.repositories import FeedRepository, RunLogRepository

router = APIRouter(prefix="/api/sources", tags=["sources"])


class SubredditIn(BaseModel):
    name: str
    display_name: str | None = None
    description: str | None = None


class SubredditToggle(BaseModel):
    is_active: bool


def _subreddit_to_dict(s) -> dict:
    return {
        "name": s.name,
        "display_name": s.display_name,
        "description": s.description,
        "is_active": s.is_active,
        "last_scraped_at": s.last_scraped_at.isoformat() if s.last_scraped_at else None,
    }


@router.get("/stats")
async def source_stats():
    async with get_session() as session:
        repo = RunLogRepository(session)
        return await repo.source_stats()


@router.get("/runs")
async def recent_runs(limit: int = Query(50, ge=1, le=200)):
    async with get_session() as session:
        repo = RunLogRepository(session)
        runs = await repo.recent_runs(limit=limit)
        return [
            {
                "id": r.id,
                "subreddit": r.subreddit,
                "scrape_type": r.scrape_type,
                "timeframe": r.timeframe,
                "query": r.query,
                "status": r.status,
                "posts_found": r.posts_found,
                "posts_saved": r.posts_saved,
                "posts_updated": r.posts_updated,
                "posts_failed": r.posts_failed,
                "error_message": r.error_message,
                "duration_ms": r.duration_ms,
                "started_at": r.started_at.isoformat() if r.started_at else None,
                "completed_at": r.completed_at.isoformat() if r.completed_at else None,
            }
            for r in runs
        ]


@router.get("/subreddits")
async def list_subreddits(active_only: bool = False):
    async with get_session() as session:
        feeds = await FeedRepository(session).list_tracked(active_only=active_only)
        return [_subreddit_to_dict(s) for s in feeds]


@router.post("/subreddits", status_code=201)
async def add_subreddit(body: SubredditIn):
    try:
        async with get_session() as session:
            feed = await FeedRepository(session).add(
                body.name.strip(), body.display_name, body.description
            )
            return _subreddit_to_dict(feed)
    except IntegrityError as exc:
        raise HTTPException(409, f"Already tracking r/{body.name}") from exc


@router.patch("/subreddits/{name}")
async def toggle_subreddit(name: str, body: SubredditToggle):
    async with get_session() as session:
        found = await FeedRepository(session).toggle(name, body.is_active)
    if not found:
        raise HTTPException(404, f"Not tracking r/{name}")
    return {"name": name, "is_active": body.is_active}
