"""Tests for quote caching and request throttling."""

import asyncio

import pytest

from flash_arbitrage.dex.quote_cache import QuoteCache, RateLimiter
from flash_arbitrage.exceptions import QuoteError


class TestQuoteCache:
    def test_fresh_entry_is_served(self, fake_clock):
        cache = QuoteCache(ttl=8.0, clock=fake_clock)
        cache.put("k", 42)
        fake_clock.advance(7.9)
        assert cache.get("k") == 42

    def test_entry_expires_at_ttl(self, fake_clock):
        cache = QuoteCache(ttl=8.0, clock=fake_clock)
        cache.put("k", 42)
        fake_clock.advance(8.0)
        assert cache.get("k") is None

    def test_missing_key(self):
        assert QuoteCache().get("missing") is None

    @pytest.mark.asyncio
    async def test_get_or_fetch_caches_result(self, fake_clock):
        cache = QuoteCache(ttl=8.0, clock=fake_clock)
        calls = []

        async def fetch():
            calls.append(1)
            return 100

        assert await cache.get_or_fetch("k", fetch) == 100
        assert await cache.get_or_fetch("k", fetch) == 100
        assert len(calls) == 1
        assert (cache.hits, cache.misses) == (1, 1)

    @pytest.mark.asyncio
    async def test_failed_fetch_is_not_cached(self, fake_clock):
        cache = QuoteCache(ttl=8.0, clock=fake_clock)
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) == 1:
                raise QuoteError("router unavailable", exchange="uniswap")
            return 7

        with pytest.raises(QuoteError):
            await cache.get_or_fetch("k", flaky)
        assert await cache.get_or_fetch("k", flaky) == 7
        assert len(attempts) == 2

    def test_clear_and_stats(self, fake_clock):
        cache = QuoteCache(ttl=8.0, clock=fake_clock)
        cache.put("old", 1)
        fake_clock.advance(5)
        cache.put("new", 2)
        fake_clock.advance(4)

        stats = cache.stats()
        assert stats["total_cached"] == 2
        assert stats["fresh"] == 1
        assert stats["stale"] == 1

        assert cache.clear() == 2
        assert cache.stats()["total_cached"] == 0

    @pytest.mark.asyncio
    async def test_expired_entries_are_evicted_on_store(self, fake_clock):
        cache = QuoteCache(ttl=8.0, clock=fake_clock)

        for amount in range(10_000):

            async def fetch():
                return amount * 2

            await cache.get_or_fetch(("sushiswap", amount), fetch)
            fake_clock.advance(8.0)

        stats = cache.stats()
        assert stats["total_cached"] == 1
        assert stats["misses"] == 10_000

    def test_fresh_entries_survive_eviction(self, fake_clock):
        cache = QuoteCache(ttl=8.0, clock=fake_clock)
        cache.put("a", 1)
        fake_clock.advance(3)
        cache.put("b", 2)
        assert cache.get("a") == 1
        assert cache.stats()["total_cached"] == 2


class TestRateLimiter:
    def test_rejects_zero_budget(self):
        with pytest.raises(ValueError):
            RateLimiter(0)

    def test_default_spacing_spreads_budget(self):
        assert RateLimiter(80).min_interval == pytest.approx(0.75)

    @pytest.mark.asyncio
    async def test_enforces_min_interval(self, fake_clock):
        limiter = RateLimiter(
            80, min_interval=0.5, clock=fake_clock, sleep=fake_clock.sleep
        )
        assert await limiter.throttle() == 0
        fake_clock.advance(0.2)
        waited = await limiter.throttle()
        assert waited == pytest.approx(0.3)
        assert limiter.delayed_requests == 1

    @pytest.mark.asyncio
    async def test_over_budget_requests_wait_for_window(self, fake_clock):
        limiter = RateLimiter(
            3, min_interval=0, clock=fake_clock, sleep=fake_clock.sleep
        )
        start = fake_clock()
        for _ in range(3):
            assert await limiter.throttle() == 0
            fake_clock.advance(1)

        waited = await limiter.throttle()

        # The first request leaves the 60s window at start + 60
        assert waited == pytest.approx(57)
        assert fake_clock() == pytest.approx(start + 60)
        assert limiter.total_requests == 4

    @pytest.mark.asyncio
    async def test_concurrent_callers_are_all_served(self, fake_clock):
        limiter = RateLimiter(
            2, min_interval=0, clock=fake_clock, sleep=fake_clock.sleep
        )
        results = await asyncio.gather(*(limiter.throttle() for _ in range(5)))
        assert len(results) == 5
        assert limiter.total_requests == 5
        assert limiter.delayed_requests > 0
