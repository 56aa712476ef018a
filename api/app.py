from __future__ import annotations

import asyncio
import itertools
import json
import logging

from fastapi import FastAPI, Request
from sse_starlette.sse import EventSourceResponse

from api.routers import posts, scraper_control, sources, trends

log = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 30.0


class EventBroadcaster:
    """Fans scrape events out to connected SSE listeners.

    Each listener gets a bounded queue; a listener that falls behind loses
    events rather than holding up the scheduler.
    """

    def __init__(self, queue_size: int = 50) -> None:
        self._queue_size = queue_size
        self._listeners: list[asyncio.Queue] = []
        self._ids = itertools.count(1)
        self.dropped = 0

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def publish(self, payload: dict) -> int:
        """Queue ``payload`` for every listener; returns the event id."""
        event_id = next(self._ids)
        for q in list(self._listeners):
            try:
                q.put_nowait((event_id, payload))
            except asyncio.QueueFull:
                self.dropped += 1
                log.warning("Dropped %s event %d for a slow listener", payload.get("event"), event_id)
        return event_id

    def subscribe(self) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._listeners.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        if q in self._listeners:
            self._listeners.remove(q)


def to_sse(event_id: int, payload: dict) -> dict:
    return {
        "id": str(event_id),
        "event": payload.get("event", "message"),
        "data": json.dumps(payload),
    }


def create_app() -> FastAPI:
    app = FastAPI(title="Subreddit Tracker", version="0.1.0")
    broadcaster = EventBroadcaster()
    app.state.broadcaster = broadcaster

    app.include_router(posts.router)
    app.include_router(trends.router)
    app.include_router(sources.router)
    app.include_router(scraper_control.router)

    @app.get("/api/events")
    async def sse_events(request: Request):
        q = broadcaster.subscribe()

        async def event_stream():
            try:
                while not await request.is_disconnected():
                    try:
                        event_id, payload = await asyncio.wait_for(
                            q.get(), timeout=KEEPALIVE_SECONDS
                        )
                    except asyncio.TimeoutError:
                        yield {"event": "ping", "data": ""}
                        continue
                    yield to_sse(event_id, payload)
            finally:
                broadcaster.unsubscribe(q)

        return EventSourceResponse(event_stream())

    @app.get("/health")
    async def health():
        scheduler = getattr(app.state, "scheduler", None)
        return {
            "status": "ok",
            "scheduler_running": bool(scheduler and scheduler.get_status()["running"]),
            "listeners": broadcaster.listener_count,
            "dropped_events": broadcaster.dropped,
        }

    return app
