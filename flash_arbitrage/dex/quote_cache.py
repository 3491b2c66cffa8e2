"""
Quote caching and request throttling for exchange routers.

The RPC provider meters requests, so every router call goes through a
``RateLimiter`` and repeated quotes inside the freshness window are served
from ``QuoteCache``.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class QuoteCache:
    """
    Time-to-live cache for quote results.

    Failed fetches are never cached, so the next caller retries.
    """

    def __init__(self, ttl: float = 8.0, clock: Clock = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[Any, float]] = {}  # {key: (value, stored_at)}
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the cached value for ``key`` if it is still fresh."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, stored_at = entry
        if self._clock() - stored_at < self.ttl:
            return value
        return None

    def put(self, key: Hashable, value: Any) -> None:
        now = self._clock()
        self._evict_expired(now)
        self._entries[key] = (value, now)

    def _evict_expired(self, now: float) -> None:
        # Reverse-leg keys include the forward output and rarely repeat
        expired = [
            key for key, (_, stored_at) in self._entries.items() if now - stored_at >= self.ttl
        ]
        for key in expired:
            del self._entries[key]

    async def get_or_fetch(
        self, key: Hashable, fetch: Callable[[], Awaitable[Any]]
    ) -> Any:
        """Return a fresh cached value or await ``fetch`` and cache its result."""
        cached = self.get(key)
        if cached is not None:
            self.hits += 1
            logger.debug(f"Quote cache hit for {key}")
            return cached

        self.misses += 1
        value = await fetch()
        self.put(key, value)
        return value

    def clear(self) -> int:
        """Drop every entry; returns how many were removed."""
        count = len(self._entries)
        self._entries.clear()
        return count

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        fresh = sum(1 for _, stored_at in self._entries.values() if now - stored_at < self.ttl)
        return {
            "total_cached": len(self._entries),
            "fresh": fresh,
            "stale": len(self._entries) - fresh,
            "ttl": self.ttl,
            "hits": self.hits,
            "misses": self.misses,
        }


class RateLimiter:
    """
    Per-minute request budget with a minimum spacing between calls.

    ``throttle`` suspends the caller until a request may go out. Calls beyond
    the budget wait for the rolling window to free a slot; they are never
    rejected.
    """

    def __init__(
        self,
        max_requests_per_minute: int = 80,
        min_interval: Optional[float] = None,
        window: float = 60.0,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        if max_requests_per_minute < 1:
            raise ValueError("max_requests_per_minute must be at least 1")
        self.max_requests = max_requests_per_minute
        self.window = window
        self.min_interval = (
            window / max_requests_per_minute if min_interval is None else min_interval
        )
        self._clock = clock
        self._sleep = sleep
        self._timestamps: Deque[float] = deque()
        self._last_request: Optional[float] = None
        self._lock = asyncio.Lock()

        self.total_requests = 0
        self.delayed_requests = 0
        self.total_wait = 0.0

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window:
            self._timestamps.popleft()

    async def throttle(self) -> float:
        """Wait until a request is allowed; returns the seconds waited."""
        async with self._lock:
            waited = 0.0
            now = self._clock()
            self._prune(now)

            if len(self._timestamps) >= self.max_requests:
                wait = self.window - (now - self._timestamps[0])
                logger.info(
                    f"Request budget of {self.max_requests}/min reached, "
                    f"waiting {wait:.1f}s for the window to reset"
                )
                await self._sleep(wait)
                waited += wait
                now = self._clock()
                self._prune(now)

            if self._last_request is not None:
                gap = now - self._last_request
                if gap < self.min_interval:
                    wait = self.min_interval - gap
                    await self._sleep(wait)
                    waited += wait
                    now = self._clock()

            self._timestamps.append(now)
            self._last_request = now
            self.total_requests += 1
            if waited > 0:
                self.delayed_requests += 1
                self.total_wait += waited

            return waited

    def stats(self) -> Dict[str, Any]:
        self._prune(self._clock())
        return {
            "requests_in_window": len(self._timestamps),
            "max_requests_per_minute": self.max_requests,
            "min_interval": self.min_interval,
            "total_requests": self.total_requests,
            "delayed_requests": self.delayed_requests,
        }
