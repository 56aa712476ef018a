from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query

from core.errors import FetchError
from core.models import ListingMode, ScrapeParams, Timeframe

router = APIRouter(prefix="/api/scraper", tags=["scraper"])

# The scheduler reference is injected by main.py at startup
_scheduler = None


def set_scheduler(scheduler) -> None:
    global _scheduler
    _scheduler = scheduler


def _require_scheduler():
    if _scheduler is None:
        raise HTTPException(503, "Scheduler not initialized")
    return _scheduler


def _params(limit: int, timeframe: Timeframe | None, query: str | None) -> ScrapeParams:
    return ScrapeParams(limit=limit, timeframe=timeframe, query=query)


@router.post("/run/{subreddit}")
async def trigger_scrape(
    subreddit: str,
    mode: ListingMode = ListingMode.HOT,
    limit: int = Query(25, ge=1, le=100),
    timeframe: Timeframe | None = None,
    query: str | None = None,
):
    scheduler = _require_scheduler()
    try:
        result = await scheduler.run_feed(subreddit, mode, _params(limit, timeframe, query))
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
    except FetchError as exc:
        raise HTTPException(502, str(exc)) from exc
    return result.to_dict()


@router.post("/run-all")
async def trigger_batch(
    mode: ListingMode = ListingMode.HOT,
    limit: int = Query(25, ge=1, le=100),
    timeframe: Timeframe | None = None,
    query: str | None = None,
):
    scheduler = _require_scheduler()
    try:
        batch = await scheduler.run_all(mode, _params(limit, timeframe, query))
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
    return batch.to_dict()


@router.get("/status")
async def scheduler_status():
    if _scheduler is None:
        return {"running": False, "jobs": []}
    return _scheduler.get_status()
