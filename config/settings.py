from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings

from core.errors import ConfigurationError


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./subreddit_tracker.db"

    # Server
    DASHBOARD_PORT: int = 8001
    LOG_LEVEL: str = "INFO"

    # Reddit
    REDDIT_BASE_URL: str = "https://www.reddit.com"
    REDDIT_USER_AGENT: str = "SubredditTracker/1.0 (research project)"
    # Seeds the tracked-subreddit table on first start
    REDDIT_SUBREDDITS: str = "technology,programming,python,machinelearning,datascience"

    # Schedules
    HOT_INTERVAL_MINUTES: int = 30
    HOT_LIMIT: int = 25
    TOP_INTERVAL_HOURS: int = 6
    TOP_LIMIT: int = 100
    SCRAPE_ON_STARTUP: bool = True

    # Scraping behaviour
    REQUEST_DELAY_SECONDS: float = 1.0
    FEED_DELAY_SECONDS: float = 2.0
    REQUEST_TIMEOUT_SECONDS: float = 30.0
    SNAPSHOT_POLICY: Literal["always", "on_change"] = "always"

    # Trending
    TREND_DAYS_BACK: int = 7
    TREND_MIN_MENTIONS: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def seed_subreddits(self) -> list[str]:
        return [s.strip() for s in self.REDDIT_SUBREDDITS.split(",") if s.strip()]


def check_settings(cfg: Settings) -> None:
    """Refuse to start with missing or nonsensical configuration."""
    problems: list[str] = []
    if not cfg.DATABASE_URL.strip():
        problems.append("DATABASE_URL is empty")
    if not cfg.REDDIT_USER_AGENT.strip():
        problems.append("REDDIT_USER_AGENT is empty")
    if not cfg.REDDIT_BASE_URL.strip():
        problems.append("REDDIT_BASE_URL is empty")
    if cfg.HOT_INTERVAL_MINUTES <= 0:
        problems.append("HOT_INTERVAL_MINUTES must be positive")
    if cfg.TOP_INTERVAL_HOURS <= 0:
        problems.append("TOP_INTERVAL_HOURS must be positive")
    for name in ("HOT_LIMIT", "TOP_LIMIT"):
        value = getattr(cfg, name)
        if not 1 <= value <= 100:
            problems.append(f"{name} must be between 1 and 100 (got {value})")
    if cfg.REQUEST_DELAY_SECONDS < 0 or cfg.FEED_DELAY_SECONDS < 0:
        problems.append("request and feed delays must not be negative")
    if cfg.REQUEST_TIMEOUT_SECONDS <= 0:
        problems.append("REQUEST_TIMEOUT_SECONDS must be positive")

    if problems:
        raise ConfigurationError("; ".join(problems))


settings = Settings()
