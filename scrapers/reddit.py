"""Reddit listing client using httpx (public JSON API)."""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from config.settings import settings
from core.errors import FetchError
from core.models import ListingMode, RawItem, Timeframe
from scrapers.base import FeedClient

log = logging.getLogger(__name__)


class RedditClient(FeedClient):
    source_name = "reddit"

    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        self._client = http_client or httpx.AsyncClient(
            base_url=settings.REDDIT_BASE_URL,
            headers={"User-Agent": settings.REDDIT_USER_AGENT},
            follow_redirects=True,
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def build_request(
        feed_name: str,
        mode: ListingMode,
        limit: int,
        timeframe: Timeframe | None = None,
        query: str | None = None,
    ) -> tuple[str, dict[str, str | int]]:
        path = f"/r/{feed_name}/{mode.value}.json"
        params: dict[str, str | int] = {"limit": limit, "raw_json": 1}
        if mode is ListingMode.TOP:
            params["t"] = (timeframe or Timeframe.DAY).value
        elif mode is ListingMode.SEARCH:
            params["q"] = query or ""
            params["restrict_sr"] = 1
            params["sort"] = "relevance"
            if timeframe:
                params["t"] = timeframe.value
        return path, params

    async def fetch(
        self,
        feed_name: str,
        mode: ListingMode,
        limit: int,
        timeframe: Timeframe | None = None,
        query: str | None = None,
    ) -> list[RawItem]:
        path, params = self.build_request(feed_name, mode, limit, timeframe, query)
        try:
            resp = await self._client.get(path, params=params)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise FetchError(feed_name, f"HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise FetchError(feed_name, f"{type(exc).__name__}: {exc}") from exc
        except ValueError as exc:
            raise FetchError(feed_name, "response is not valid JSON") from exc

        children = data.get("data", {}).get("children") if isinstance(data, dict) else None
        if not isinstance(children, list):
            raise FetchError(feed_name, "response has no listing children")

        items: list[RawItem] = []
        for child in children:
            if not isinstance(child, dict) or not isinstance(child.get("data"), dict):
                raise FetchError(feed_name, "listing child has no data object")
            try:
                items.append(RawItem.model_validate(child["data"]))
            except ValidationError as exc:
                post_id = child["data"].get("id", "?")
                raise FetchError(
                    feed_name, f"post {post_id} does not match the listing schema: {exc}"
                ) from exc

        log.info(
            "r/%s %s: %d posts fetched (status %d)",
            feed_name,
            mode.value,
            len(items),
            resp.status_code,
        )
        return items[:limit]
