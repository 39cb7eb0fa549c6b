"""Tests for the token bucket."""

import asyncio

import pytest

from backend.core.metadata.rate_limiter import TokenBucket


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestTokenBucket:
    def test_starts_full_and_drains(self):
        clock = FakeClock()
        bucket = TokenBucket(rate=2, clock=clock)

        assert bucket.try_acquire()
        assert bucket.try_acquire()
        assert not bucket.try_acquire()

    def test_refills_over_time_up_to_capacity(self):
        clock = FakeClock()
        bucket = TokenBucket(rate=2, capacity=2, clock=clock)
        bucket.try_acquire(2)

        clock.now = 0.5
        assert bucket.tokens == pytest.approx(1.0)
        clock.now = 100
        assert bucket.tokens == pytest.approx(2.0)

    def test_invalid_rate(self):
        with pytest.raises(ValueError):
            TokenBucket(rate=0)

    async def test_acquire_sleeps_for_missing_tokens(self, mocker):
        clock = FakeClock()
        bucket = TokenBucket(rate=4, capacity=1, clock=clock)
        delays = []

        async def fake_sleep(delay):
            delays.append(delay)
            clock.now += delay

        mocker.patch("backend.core.metadata.rate_limiter.asyncio.sleep", side_effect=fake_sleep)

        await bucket.acquire()
        await bucket.acquire()

        assert delays == [pytest.approx(0.25)]

    async def test_acquire_more_than_capacity(self):
        with pytest.raises(ValueError):
            await TokenBucket(rate=1, capacity=1).acquire(2)

    async def test_context_manager(self):
        bucket = TokenBucket(rate=10)
        async with bucket:
            pass
        assert bucket.tokens < 10

    async def test_concurrent_waiters_are_all_served(self):
        bucket = TokenBucket(rate=200, capacity=1)
        await asyncio.wait_for(asyncio.gather(*(bucket.acquire() for _ in range(5))), timeout=5)
