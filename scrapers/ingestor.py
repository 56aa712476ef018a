"""Deduplicating ingestion of fetched posts into the store.

Every raw post is handled in its own transaction: a first sighting inserts the
post, a repeat sighting updates its mutable metrics and appends one snapshot.
A store failure on one post is logged and skipped so the rest of the batch
still lands.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Literal

from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import PersistenceError
from core.models import IngestOutcome, Item, Metrics, RawItem
from data.database import SessionFactory, get_session
from data.repositories import PostRepository, SnapshotRepository
from data.schema import DBPost, DBPostSnapshot

log = logging.getLogger(__name__)

DELETED_AUTHOR = "deleted"

SnapshotPolicy = Literal["always", "on_change"]


def normalize(raw: RawItem) -> Item:
    """Turn an upstream post into its canonical form."""
    author = (raw.author or "").strip()
    if not author or author == "[deleted]":
        author = DELETED_AUTHOR
    return Item(
        post_id=raw.id,
        title=raw.title,
        author=author,
        subreddit=raw.subreddit,
        permalink=raw.permalink,
        url=raw.url,
        selftext=raw.selftext or "",
        score=int(raw.score),
        num_comments=int(raw.num_comments),
        upvote_ratio=float(raw.upvote_ratio) if raw.upvote_ratio is not None else None,
        created_utc=datetime.fromtimestamp(raw.created_utc, tz=timezone.utc),
        is_video=bool(raw.is_video),
        thumbnail=raw.thumbnail,
        domain=raw.domain,
        link_flair_text=raw.link_flair_text,
    )


def has_changed(existing: DBPost, item: Item) -> bool:
    return (
        existing.score != item.score
        or existing.num_comments != item.num_comments
        or existing.upvote_ratio != item.upvote_ratio
        or existing.selftext != item.selftext
    )


class SnapshotRecorder:
    """Appends point-in-time metric copies; never reads earlier snapshots."""

    async def record(
        self,
        session: AsyncSession,
        post_id: str,
        metrics: Metrics,
        captured_at: datetime,
    ) -> DBPostSnapshot:
        return await SnapshotRepository(session).append(post_id, metrics, captured_at)


class Ingestor:
    def __init__(
        self,
        session_factory: SessionFactory = get_session,
        *,
        snapshot_policy: SnapshotPolicy = "always",
        recorder: SnapshotRecorder | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._policy = snapshot_policy
        self._recorder = recorder or SnapshotRecorder()

    async def ingest(self, feed_name: str, raw_items: Sequence[RawItem]) -> IngestOutcome:
        outcome = IngestOutcome(found=len(raw_items))

        for raw in raw_items:
            try:
                item = normalize(raw)
            except (ValueError, OverflowError, OSError) as exc:
                log.error("r/%s: skipping post %s with unusable fields: %s", feed_name, raw.id, exc)
                outcome.failed += 1
                continue

            try:
                result = await self._ingest_one(item)
            except PersistenceError as exc:
                log.error("r/%s: skipping %s", feed_name, exc)
                outcome.failed += 1
                continue

            if result == "created":
                outcome.saved += 1
                outcome.saved_items.append(item)
            elif result == "updated":
                outcome.updated += 1
            else:
                outcome.skipped += 1

        log.info(
            "r/%s: %d found, %d new, %d updated, %d unchanged, %d failed",
            feed_name,
            outcome.found,
            outcome.saved,
            outcome.updated,
            outcome.skipped,
            outcome.failed,
        )
        return outcome

    async def _ingest_one(self, item: Item) -> str:
        now = datetime.now(timezone.utc)
        try:
            async with self._session_factory() as session:
                posts = PostRepository(session)
                existing = await posts.get_by_id(item.post_id)
                if existing is None:
                    if await posts.insert_new(item, now):
                        log.debug("New post saved: %s", item.post_id)
                        return "created"
                    # Another run inserted it between the lookup and the insert
                    existing = await posts.get_by_id(item.post_id)

                if self._policy == "on_change" and existing is not None and not has_changed(
                    existing, item
                ):
                    return "unchanged"

                await posts.update_mutable(item, now)
                await self._recorder.record(session, item.post_id, item.metrics, now)
                log.debug("Post updated: %s", item.post_id)
                return "updated"
        except Exception as exc:
            log.exception("Failed to persist post %s", item.post_id)
            raise PersistenceError(item.post_id, str(exc)) from exc
