from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

SCRAPE_COMPLETE_EVENT = "scrape_complete"


class ListingMode(str, enum.Enum):
    HOT = "hot"
    NEW = "new"
    TOP = "top"
    SEARCH = "search"


class Timeframe(str, enum.Enum):
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    ALL = "all"


class RunStatus(str, enum.Enum):
    SUCCESS = "success"
    ERROR = "error"


MAX_LISTING_LIMIT = 100


@dataclass(frozen=True)
class ScrapeParams:
    """Listing parameters shared by every feed in a run."""

    limit: int = 25
    timeframe: Timeframe | None = None
    query: str | None = None

    def validate_for(self, mode: ListingMode) -> None:
        if not 1 <= self.limit <= MAX_LISTING_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_LISTING_LIMIT}")
        if mode is ListingMode.SEARCH and not (self.query and self.query.strip()):
            raise ValueError("search mode requires a query")


class RawItem(BaseModel):
    """One post as returned by a listing endpoint.

    Required keys fail validation at the client boundary when upstream drops
    them; everything Reddit may omit is explicitly optional.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    title: str
    subreddit: str
    permalink: str
    url: str = ""
    created_utc: float
    score: int = 0
    num_comments: int = 0
    author: str | None = None
    selftext: str | None = None
    upvote_ratio: float | None = None
    thumbnail: str | None = None
    is_video: bool | None = None
    domain: str | None = None
    link_flair_text: str | None = None


@dataclass(frozen=True)
class Metrics:
    """The mutable, time-varying part of a post."""

    score: int
    num_comments: int
    upvote_ratio: float | None


@dataclass
class Item:
    """A post normalised into its canonical stored form."""

    post_id: str
    title: str
    author: str
    subreddit: str
    permalink: str
    url: str
    selftext: str
    score: int
    num_comments: int
    upvote_ratio: float | None
    created_utc: datetime
    is_video: bool = False
    thumbnail: str | None = None
    domain: str | None = None
    link_flair_text: str | None = None

    @property
    def metrics(self) -> Metrics:
        return Metrics(self.score, self.num_comments, self.upvote_ratio)

    @property
    def engagement_score(self) -> float:
        return compute_engagement(self.score, self.num_comments)

    def to_dict(self) -> dict[str, Any]:
        return {
            "post_id": self.post_id,
            "title": self.title,
            "author": self.author,
            "subreddit": self.subreddit,
            "permalink": self.permalink,
            "url": self.url,
            "score": self.score,
            "num_comments": self.num_comments,
            "upvote_ratio": self.upvote_ratio,
            "created_utc": self.created_utc.isoformat(),
        }


def compute_engagement(score: int, num_comments: int) -> float:
    return score + num_comments * 2.0


@dataclass
class IngestOutcome:
    """Counts for one ingested batch of raw items."""

    found: int = 0
    saved: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    saved_items: list[Item] = field(default_factory=list)


@dataclass
class RunResult:
    """Outcome of one run against one subreddit."""

    feed_name: str
    mode: ListingMode
    status: RunStatus
    started_at: datetime
    completed_at: datetime
    duration_ms: int
    timeframe: Timeframe | None = None
    query: str | None = None
    items_found: int = 0
    items_saved: int = 0
    items_updated: int = 0
    items_failed: int = 0
    error_message: str | None = None
    saved_items: list[Item] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "subreddit": self.feed_name,
            "mode": self.mode.value,
            "timeframe": self.timeframe.value if self.timeframe else None,
            "query": self.query,
            "status": self.status.value,
            "posts_found": self.items_found,
            "posts_saved": self.items_saved,
            "posts_updated": self.items_updated,
            "posts_failed": self.items_failed,
            "error_message": self.error_message,
            "duration_ms": self.duration_ms,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "new_posts": [item.to_dict() for item in self.saved_items],
        }


@dataclass
class BatchResult:
    """One sweep across all tracked subreddits."""

    mode: ListingMode
    results: list[RunResult] = field(default_factory=list)

    @property
    def failed(self) -> list[RunResult]:
        return [r for r in self.results if not r.ok]

    @property
    def total_saved(self) -> int:
        return sum(r.items_saved for r in self.results)

    @property
    def total_found(self) -> int:
        return sum(r.items_found for r in self.results)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "feeds": len(self.results),
            "errors": len(self.failed),
            "posts_found": self.total_found,
            "posts_saved": self.total_saved,
            "results": [r.to_dict() for r in self.results],
        }

    def event_payload(self) -> dict[str, Any]:
        """Summary pushed to live listeners once a sweep finishes."""
        payload = self.to_dict()
        del payload["results"]
        payload["event"] = SCRAPE_COMPLETE_EVENT
        payload["failed_subreddits"] = [r.feed_name for r in self.failed]
        return payload
