"""Subreddit Tracker — entry point."""

from __future__ import annotations

import logging

import uvicorn

from api.app import create_app
from api.routers.scraper_control import set_scheduler
from config.settings import check_settings, settings
from data.database import get_session, init_db
from data.repositories import FeedRepository
from scrapers.orchestrator import ScrapeOrchestrator
from scrapers.reddit import RedditClient
from scrapers.scheduler import ScrapeScheduler

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)
log = logging.getLogger(__name__)

app = create_app()


@app.on_event("startup")
async def on_startup() -> None:
    check_settings(settings)

    log.info("Initialising database…")
    await init_db()
    async with get_session() as session:
        seeded = await FeedRepository(session).seed(settings.seed_subreddits)
    if seeded:
        log.info("Seeded %d tracked subreddits", seeded)

    log.info("Starting scrape scheduler…")
    client = RedditClient()
    app.state.feed_client = client
    scheduler = ScrapeScheduler(
        ScrapeOrchestrator(client),
        broadcast_fn=app.state.broadcaster.publish,
    )
    app.state.scheduler = scheduler
    set_scheduler(scheduler)
    scheduler.start()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    if hasattr(app.state, "scheduler"):
        app.state.scheduler.stop()
        log.info("Scrape scheduler stopped.")
    if hasattr(app.state, "feed_client"):
        await app.state.feed_client.aclose()


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.DASHBOARD_PORT,
        reload=False,
    )
