from __future__ import annotations

import re
from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone

from sqlalchemy import Integer, delete, func, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from core.models import Item, Metrics, compute_engagement
from data.schema import DBPost, DBPostSnapshot, DBScrapeRun, DBSubreddit, DBTrendingTopic

# ── helpers ──────────────────────────────────────────────────────────

# Words to exclude from trending topic extraction
_STOP_WORDS = frozenset(
    "the a an and or but in on at to for of is it this that with from by as "
    "are was were be been has have had do does did will would can could may "
    "might shall should not no so if then than too also just about up its my "
    "your his her our their what which who whom how when where why all each "
    "every both few more most other some such only own same into over after "
    "before between through during above below out off again further once "
    "here there these those am i me we they them he she you "
    "reddit post anyone does what's it's i'm don't can't".split()
)

_WORD_RE = re.compile(r"[a-zA-Z]{3,}")


def _extract_keywords(text: str) -> list[str]:
    """Pull meaningful keywords from a title for trend detection."""
    words = _WORD_RE.findall(text.lower())
    return [w for w in words if w not in _STOP_WORDS and len(w) > 3]


def _as_utc(value: datetime) -> datetime:
    # SQLite hands datetimes back naive; everything is stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ── PostRepository ───────────────────────────────────────────────────


class PostRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._s = session

    async def get_by_id(self, post_id: str) -> DBPost | None:
        return await self._s.get(DBPost, post_id)

    async def insert_new(self, item: Item, now: datetime) -> bool:
        """Insert a first-seen post. Returns False if the id already exists."""
        stmt = (
            sqlite_insert(DBPost)
            .values(
                post_id=item.post_id,
                title=item.title,
                author=item.author,
                subreddit=item.subreddit,
                score=item.score,
                upvote_ratio=item.upvote_ratio,
                url=item.url,
                created_utc=item.created_utc,
                num_comments=item.num_comments,
                selftext=item.selftext,
                permalink=item.permalink,
                thumbnail=item.thumbnail,
                is_video=item.is_video,
                domain=item.domain,
                link_flair_text=item.link_flair_text,
                engagement_score=item.engagement_score,
                first_seen_at=now,
                last_updated_at=None,
            )
            .on_conflict_do_nothing(index_elements=["post_id"])
        )
        result = await self._s.execute(stmt)
        return bool(result.rowcount and result.rowcount > 0)

    async def update_mutable(self, item: Item, now: datetime) -> None:
        """Overwrite the time-varying fields of an existing post."""
        await self._s.execute(
            update(DBPost)
            .where(DBPost.post_id == item.post_id)
            .values(
                score=item.score,
                num_comments=item.num_comments,
                upvote_ratio=item.upvote_ratio,
                selftext=item.selftext,
                engagement_score=item.engagement_score,
                last_updated_at=now,
            )
        )

    async def list_posts(
        self,
        *,
        subreddit: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[DBPost]:
        q = select(DBPost)
        if subreddit:
            q = q.where(DBPost.subreddit == subreddit)
        q = q.order_by(DBPost.created_utc.desc()).limit(limit).offset(offset)
        result = await self._s.execute(q)
        return list(result.scalars().all())

    async def search_posts(
        self, query: str, *, subreddit: str | None = None, limit: int = 50
    ) -> list[DBPost]:
        pattern = f"%{query}%"
        q = select(DBPost).where(
            DBPost.title.ilike(pattern) | DBPost.selftext.ilike(pattern)
        )
        if subreddit:
            q = q.where(DBPost.subreddit == subreddit)
        q = q.order_by(DBPost.created_utc.desc()).limit(limit)
        result = await self._s.execute(q)
        return list(result.scalars().all())

    async def get_posts_by_author(self, author: str, limit: int = 50) -> list[DBPost]:
        q = (
            select(DBPost)
            .where(DBPost.author == author)
            .order_by(DBPost.created_utc.desc())
            .limit(limit)
        )
        result = await self._s.execute(q)
        return list(result.scalars().all())

    async def get_posts_by_date_range(
        self, start: datetime, end: datetime, *, subreddit: str | None = None
    ) -> list[DBPost]:
        q = select(DBPost).where(DBPost.created_utc >= start, DBPost.created_utc <= end)
        if subreddit:
            q = q.where(DBPost.subreddit == subreddit)
        q = q.order_by(DBPost.created_utc.desc())
        result = await self._s.execute(q)
        return list(result.scalars().all())


# ── SnapshotRepository ───────────────────────────────────────────────


class SnapshotRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._s = session

    async def append(
        self, post_id: str, metrics: Metrics, captured_at: datetime
    ) -> DBPostSnapshot:
        snapshot = DBPostSnapshot(
            post_id=post_id,
            score=metrics.score,
            num_comments=metrics.num_comments,
            upvote_ratio=metrics.upvote_ratio,
            snapshot_at=captured_at,
        )
        self._s.add(snapshot)
        return snapshot

    async def list_for_post(self, post_id: str, limit: int = 50) -> list[DBPostSnapshot]:
        q = (
            select(DBPostSnapshot)
            .where(DBPostSnapshot.post_id == post_id)
            .order_by(DBPostSnapshot.snapshot_at.desc(), DBPostSnapshot.id.desc())
            .limit(limit)
        )
        result = await self._s.execute(q)
        return list(result.scalars().all())


# ── FeedRepository ───────────────────────────────────────────────────


class FeedRepository:
    """Tracked subreddits, always listed in the order they were added."""

    def __init__(self, session: AsyncSession) -> None:
        self._s = session

    async def list_tracked(self, *, active_only: bool = True) -> list[DBSubreddit]:
        q = select(DBSubreddit)
        if active_only:
            q = q.where(DBSubreddit.is_active.is_(True))
        result = await self._s.execute(q.order_by(DBSubreddit.id))
        return list(result.scalars().all())

    async def add(
        self, name: str, display_name: str | None = None, description: str | None = None
    ) -> DBSubreddit:
        feed = DBSubreddit(
            name=name,
            display_name=display_name or name,
            description=description,
            is_active=True,
            created_at=datetime.now(timezone.utc),
        )
        self._s.add(feed)
        await self._s.flush()
        return feed

    async def toggle(self, name: str, is_active: bool) -> bool:
        result = await self._s.execute(
            update(DBSubreddit).where(DBSubreddit.name == name).values(is_active=is_active)
        )
        return bool(result.rowcount)

    async def touch_last_scraped(self, name: str, when: datetime) -> None:
        await self._s.execute(
            update(DBSubreddit).where(DBSubreddit.name == name).values(last_scraped_at=when)
        )

    async def seed(self, names: list[str]) -> int:
        """Populate an empty table; a no-op once any subreddit exists."""
        existing = await self._s.scalar(select(func.count(DBSubreddit.id))) or 0
        if existing:
            return 0
        for name in names:
            await self.add(name)
        return len(names)


# ── TrendRepository ──────────────────────────────────────────────────


class TrendRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._s = session

    async def analyze_trending_topics(
        self,
        *,
        subreddit: str | None = None,
        days_back: int = 7,
        min_mentions: int = 3,
        limit: int = 50,
    ) -> list[dict]:
        """Keyword frequency across recent post titles, with engagement averages."""
        since = datetime.now(timezone.utc) - timedelta(days=days_back)
        q = select(
            DBPost.subreddit, DBPost.title, DBPost.score, DBPost.num_comments
        ).where(DBPost.created_utc >= since)
        if subreddit:
            q = q.where(DBPost.subreddit == subreddit)
        rows = (await self._s.execute(q)).all()

        counter: Counter[str] = Counter()
        scores: dict[str, list[int]] = defaultdict(list)
        comments: dict[str, list[int]] = defaultdict(list)
        subs: dict[str, set[str]] = defaultdict(set)
        for sub, title, score, num_comments in rows:
            # One mention per post, however often the word repeats in a title
            for kw in set(_extract_keywords(title)):
                counter[kw] += 1
                scores[kw].append(score)
                comments[kw].append(num_comments)
                subs[kw].add(sub)

        topics = []
        for topic, count in counter.items():
            if count < min_mentions:
                continue
            avg_score = sum(scores[topic]) / count
            avg_comments = sum(comments[topic]) / count
            topics.append(
                {
                    "topic": topic,
                    "mention_count": count,
                    "avg_score": round(avg_score, 1),
                    "avg_comments": round(avg_comments, 1),
                    "avg_engagement": round(compute_engagement(avg_score, avg_comments), 1),
                    "subreddits": sorted(subs[topic]),
                }
            )
        topics.sort(key=lambda t: (-t["mention_count"], -t["avg_engagement"], t["topic"]))
        return topics[:limit]

    async def save_trending_topics(
        self, topics: list[dict], *, time_period: str, subreddit: str | None = None
    ) -> int:
        """Replace the stored computation for this period and scope."""
        stale = delete(DBTrendingTopic).where(DBTrendingTopic.time_period == time_period)
        if subreddit:
            stale = stale.where(DBTrendingTopic.subreddit == subreddit)
        else:
            stale = stale.where(DBTrendingTopic.subreddit.is_(None))
        await self._s.execute(stale)

        now = datetime.now(timezone.utc)
        for t in topics:
            self._s.add(
                DBTrendingTopic(
                    subreddit=subreddit,
                    topic=t["topic"],
                    mention_count=t["mention_count"],
                    avg_score=t["avg_score"],
                    avg_comments=t["avg_comments"],
                    avg_engagement=t["avg_engagement"],
                    time_period=time_period,
                    computed_at=now,
                )
            )
        return len(topics)

    async def get_trending_topics(
        self,
        *,
        subreddit: str | None = None,
        time_period: str = "week",
        limit: int = 50,
    ) -> list[DBTrendingTopic]:
        """Topics from the most recent computation for the given period."""
        latest_q = select(func.max(DBTrendingTopic.computed_at)).where(
            DBTrendingTopic.time_period == time_period
        )
        if subreddit:
            latest_q = latest_q.where(DBTrendingTopic.subreddit == subreddit)
        else:
            latest_q = latest_q.where(DBTrendingTopic.subreddit.is_(None))
        latest = await self._s.scalar(latest_q)
        if latest is None:
            return []

        q = select(DBTrendingTopic).where(
            DBTrendingTopic.time_period == time_period,
            DBTrendingTopic.computed_at == latest,
        )
        if subreddit:
            q = q.where(DBTrendingTopic.subreddit == subreddit)
        else:
            q = q.where(DBTrendingTopic.subreddit.is_(None))
        q = q.order_by(DBTrendingTopic.avg_engagement.desc()).limit(limit)
        result = await self._s.execute(q)
        return list(result.scalars().all())

    async def get_post_velocity(self, post_id: str) -> dict | None:
        """Score and comment growth per hour across a post's snapshot history."""
        post = await self._s.get(DBPost, post_id)
        if post is None:
            return None
        q = (
            select(DBPostSnapshot)
            .where(DBPostSnapshot.post_id == post_id)
            .order_by(DBPostSnapshot.snapshot_at, DBPostSnapshot.id)
        )
        snaps = list((await self._s.execute(q)).scalars().all())
        history = [
            {
                "score": s.score,
                "num_comments": s.num_comments,
                "upvote_ratio": s.upvote_ratio,
                "snapshot_at": _as_utc(s.snapshot_at).isoformat(),
            }
            for s in snaps
        ]
        velocity = {
            "post_id": post_id,
            "title": post.title,
            "subreddit": post.subreddit,
            "snapshot_count": len(snaps),
            "score_gain": 0,
            "comment_gain": 0,
            "hours_tracked": 0.0,
            "score_per_hour": None,
            "comments_per_hour": None,
            "history": history,
        }
        if len(snaps) < 2:
            return velocity

        first, last = snaps[0], snaps[-1]
        hours = (_as_utc(last.snapshot_at) - _as_utc(first.snapshot_at)).total_seconds() / 3600
        velocity["score_gain"] = last.score - first.score
        velocity["comment_gain"] = last.num_comments - first.num_comments
        velocity["hours_tracked"] = round(hours, 3)
        if hours > 0:
            velocity["score_per_hour"] = round((last.score - first.score) / hours, 2)
            velocity["comments_per_hour"] = round(
                (last.num_comments - first.num_comments) / hours, 2
            )
        return velocity

    async def get_fastest_growing_posts(self, *, limit: int = 20, hours: int = 24) -> list[dict]:
        since = datetime.now(timezone.utc) - timedelta(hours=hours)
        q = (
            select(DBPostSnapshot)
            .where(DBPostSnapshot.snapshot_at >= since)
            .order_by(DBPostSnapshot.post_id, DBPostSnapshot.snapshot_at, DBPostSnapshot.id)
        )
        by_post: dict[str, list[DBPostSnapshot]] = defaultdict(list)
        for snap in (await self._s.execute(q)).scalars().all():
            by_post[snap.post_id].append(snap)

        growth = []
        for post_id, snaps in by_post.items():
            if len(snaps) < 2:
                continue
            first, last = snaps[0], snaps[-1]
            span = (_as_utc(last.snapshot_at) - _as_utc(first.snapshot_at)).total_seconds() / 3600
            if span <= 0:
                continue
            growth.append((post_id, (last.score - first.score) / span, last))

        growth.sort(key=lambda g: g[1], reverse=True)
        growth = growth[:limit]
        if not growth:
            return []

        posts_q = select(DBPost).where(DBPost.post_id.in_([g[0] for g in growth]))
        posts = {p.post_id: p for p in (await self._s.execute(posts_q)).scalars().all()}
        return [
            {
                "post_id": post_id,
                "title": posts[post_id].title if post_id in posts else "",
                "subreddit": posts[post_id].subreddit if post_id in posts else "",
                "score": last.score,
                "num_comments": last.num_comments,
                "score_per_hour": round(rate, 2),
            }
            for post_id, rate, last in growth
        ]

    async def get_top_posts_last_week(self, limit: int = 50) -> list[DBPost]:
        since = datetime.now(timezone.utc) - timedelta(days=7)
        q = (
            select(DBPost)
            .where(DBPost.created_utc >= since)
            .order_by(DBPost.score.desc())
            .limit(limit)
        )
        result = await self._s.execute(q)
        return list(result.scalars().all())

    async def get_high_engagement_posts(
        self, *, subreddit: str | None = None, days_back: int = 7, limit: int = 50
    ) -> list[DBPost]:
        since = datetime.now(timezone.utc) - timedelta(days=days_back)
        q = select(DBPost).where(DBPost.created_utc >= since)
        if subreddit:
            q = q.where(DBPost.subreddit == subreddit)
        q = q.order_by(DBPost.engagement_score.desc()).limit(limit)
        result = await self._s.execute(q)
        return list(result.scalars().all())

    async def get_subreddit_stats(self) -> list[dict]:
        q = (
            select(
                DBPost.subreddit,
                func.count(DBPost.post_id),
                func.avg(DBPost.score),
                func.avg(DBPost.num_comments),
                func.max(DBPost.created_utc),
            )
            .group_by(DBPost.subreddit)
            .order_by(func.count(DBPost.post_id).desc())
        )
        rows = (await self._s.execute(q)).all()
        return [
            {
                "subreddit": r[0],
                "total_posts": r[1],
                "avg_score": round(r[2] or 0, 1),
                "avg_comments": round(r[3] or 0, 1),
                "latest_post": _as_utc(r[4]).isoformat() if r[4] else None,
            }
            for r in rows
        ]


# ── RunLogRepository ─────────────────────────────────────────────────


class RunLogRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._s = session

    async def log_run(
        self,
        *,
        subreddit: str,
        scrape_type: str,
        timeframe: str | None,
        query: str | None,
        status: str,
        posts_found: int,
        posts_saved: int,
        posts_updated: int,
        posts_failed: int,
        error_message: str | None,
        duration_ms: int,
        started_at: datetime,
        completed_at: datetime,
    ) -> DBScrapeRun:
        run = DBScrapeRun(
            subreddit=subreddit,
            scrape_type=scrape_type,
            timeframe=timeframe,
            query=query,
            status=status,
            posts_found=posts_found,
            posts_saved=posts_saved,
            posts_updated=posts_updated,
            posts_failed=posts_failed,
            error_message=error_message[:500] if error_message else None,
            duration_ms=duration_ms,
            started_at=started_at,
            completed_at=completed_at,
        )
        self._s.add(run)
        await self._s.flush()
        return run

    async def recent_runs(self, limit: int = 50) -> list[DBScrapeRun]:
        q = (
            select(DBScrapeRun)
            .order_by(DBScrapeRun.started_at.desc(), DBScrapeRun.id.desc())
            .limit(limit)
        )
        result = await self._s.execute(q)
        return list(result.scalars().all())

    async def source_stats(self) -> list[dict]:
        """Per-subreddit: last run time, total runs, success rate."""
        q = select(
            DBScrapeRun.subreddit,
            func.count(DBScrapeRun.id).label("total_runs"),
            func.sum(func.cast(DBScrapeRun.status == "success", Integer)).label(
                "success_count"
            ),
            func.max(DBScrapeRun.started_at).label("last_run"),
            func.sum(DBScrapeRun.posts_saved).label("total_saved"),
        ).group_by(DBScrapeRun.subreddit)
        rows = (await self._s.execute(q)).all()
        return [
            {
                "subreddit": r[0],
                "total_runs": r[1],
                "success_rate": round((r[2] or 0) / max(r[1], 1) * 100, 0),
                "last_run": _as_utc(r[3]).isoformat() if r[3] else None,
                "total_saved": r[4] or 0,
            }
            for r in rows
        ]
