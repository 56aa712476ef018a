from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from core.models import ListingMode, RunStatus, Timeframe
from data.database import SessionFactory, get_session
from data.repositories import RunLogRepository
from data.schema import DBScrapeRun


@dataclass(frozen=True)
class RunLogInput:
    feed_name: str
    mode: ListingMode
    status: RunStatus
    items_found: int
    items_saved: int
    duration_ms: int
    started_at: datetime
    items_updated: int = 0
    items_failed: int = 0
    timeframe: Timeframe | None = None
    query: str | None = None
    error_message: str | None = None


class RunLogger:
    """Writes one audit row per scrape run. Never read back by the pipeline."""

    def __init__(self, session_factory: SessionFactory = get_session) -> None:
        self._session_factory = session_factory

    async def log(self, entry: RunLogInput) -> DBScrapeRun:
        async with self._session_factory() as session:
            return await RunLogRepository(session).log_run(
                subreddit=entry.feed_name,
                scrape_type=entry.mode.value,
                timeframe=entry.timeframe.value if entry.timeframe else None,
                query=entry.query,
                status=entry.status.value,
                posts_found=entry.items_found,
                posts_saved=entry.items_saved,
                posts_updated=entry.items_updated,
                posts_failed=entry.items_failed,
                error_message=entry.error_message,
                duration_ms=entry.duration_ms,
                started_at=entry.started_at,
                completed_at=datetime.now(timezone.utc),
            )
