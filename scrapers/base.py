from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from core.models import ListingMode, RawItem, Timeframe


class FeedClient(ABC):
    source_name: str

    @abstractmethod
    async def fetch(
        self,
        feed_name: str,
        mode: ListingMode,
        limit: int,
        timeframe: Timeframe | None = None,
        query: str | None = None,
    ) -> list[RawItem]:
        """Fetch up to ``limit`` posts from one listing, in listing order.

        Raises ``FetchError`` when the listing cannot be retrieved or parsed.
        """
        ...

    async def aclose(self) -> None:
        return None


class RateLimiter:
    """Enforces a minimum gap between consecutive requests."""

    def __init__(self, delay_seconds: float = 1.0) -> None:
        self._delay = delay_seconds
        self._lock = asyncio.Lock()
        self._last_request: float = 0.0

    async def wait(self) -> None:
        async with self._lock:
            now = asyncio.get_running_loop().time()
            elapsed = now - self._last_request
            if self._last_request and elapsed < self._delay:
                await asyncio.sleep(self._delay - elapsed)
            self._last_request = asyncio.get_running_loop().time()
