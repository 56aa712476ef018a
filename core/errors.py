from __future__ import annotations


class PipelineError(Exception):
    """Base class for ingestion pipeline failures."""


class ConfigurationError(PipelineError):
    """Required settings are missing or invalid; the pipeline must not start."""


class FetchError(PipelineError):
    """A subreddit listing could not be fetched or was malformed."""

    def __init__(self, feed_name: str, message: str) -> None:
        super().__init__(f"r/{feed_name}: {message}")
        self.feed_name = feed_name


class PersistenceError(PipelineError):
    """A single post could not be written to the store."""

    def __init__(self, post_id: str, message: str) -> None:
        super().__init__(f"post {post_id}: {message}")
        self.post_id = post_id
