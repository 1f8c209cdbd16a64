"""
Request Throttle Unit Tests

AsyncTokenBucket checks:
- immediate debit while tokens are available
- computed wait when the bucket is empty
- refill capped at max_capacity
- FIFO service order
- invalid costs rejected
"""

import asyncio

import pytest

from exchange_core.infrastructure.rate_limiter import AsyncTokenBucket, TokenBucketConfig


class FakeClock:
    """Millisecond clock advanced only by the fake sleep"""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds * 1000.0


def make_bucket(rate_limit_ms=100.0, **overrides):
    clock = FakeClock()
    config = TokenBucketConfig.from_rate_limit(rate_limit_ms, **overrides)
    return AsyncTokenBucket(config, clock=clock, sleep=clock.sleep), clock


class TestTokenBucketConfig:
    """Config validation"""

    def test_from_rate_limit(self):
        config = TokenBucketConfig.from_rate_limit(50)
        assert config.refill_rate == pytest.approx(0.02)
        assert config.capacity == 1.0
        assert config.max_capacity == 1000.0

    def test_invalid_rate_limit(self):
        with pytest.raises(ValueError):
            TokenBucketConfig.from_rate_limit(0)

    def test_capacity_above_max(self):
        with pytest.raises(ValueError):
            TokenBucketConfig(refill_rate=0.01, capacity=5, max_capacity=2)


class TestAsyncTokenBucket:
    """acquire() behaviour"""

    @pytest.mark.asyncio
    async def test_immediate_when_tokens_available(self):
        bucket, clock = make_bucket()

        waited = await bucket.acquire()

        assert waited == 0.0
        assert clock.sleeps == []
        assert bucket.tokens == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_waits_for_refill_when_empty(self):
        bucket, clock = make_bucket(rate_limit_ms=100.0)
        await bucket.acquire()

        waited = await bucket.acquire()

        assert waited == pytest.approx(100.0)
        assert clock.sleeps == [pytest.approx(0.1)]
        assert bucket.tokens == pytest.approx(0.0, abs=1e-9)

    @pytest.mark.asyncio
    async def test_partial_tokens_shorten_wait(self):
        bucket, clock = make_bucket(rate_limit_ms=100.0)
        await bucket.acquire()
        clock.now += 40.0

        waited = await bucket.acquire()

        assert waited == pytest.approx(60.0)

    @pytest.mark.asyncio
    async def test_weighted_cost(self):
        bucket, clock = make_bucket(rate_limit_ms=10.0, capacity=5, max_capacity=10)

        assert await bucket.acquire(cost=5) == 0.0
        waited = await bucket.acquire(cost=3)

        assert waited == pytest.approx(30.0)

    def test_refill_capped_at_max_capacity(self):
        bucket, clock = make_bucket(rate_limit_ms=10.0, max_capacity=5)
        clock.now += 1_000_000

        bucket._refill()

        assert bucket.tokens == 5

    @pytest.mark.asyncio
    async def test_burst_converges_to_rate(self):
        """N back-to-back calls take about N * rate_limit"""
        bucket, clock = make_bucket(rate_limit_ms=100.0)

        for _ in range(10):
            await bucket.acquire()

        assert clock.now == pytest.approx(900.0)
        stats = bucket.get_stats()
        assert stats["acquire_count"] == 10
        assert stats["delayed_count"] == 9
        assert stats["total_wait_ms"] == pytest.approx(900.0)

    @pytest.mark.asyncio
    async def test_tokens_stay_within_bounds(self):
        bucket, clock = make_bucket(rate_limit_ms=7.0, capacity=3, max_capacity=3)

        for step in range(25):
            await bucket.acquire(cost=1 + step % 3)
            assert 0.0 <= bucket.tokens <= bucket.max_capacity
            clock.now += 3.0

    @pytest.mark.asyncio
    async def test_fifo_order(self):
        bucket, clock = make_bucket(rate_limit_ms=100.0)
        served = []

        async def worker(index):
            await bucket.acquire()
            served.append(index)

        await asyncio.gather(*(worker(i) for i in range(5)))

        assert served == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_negative_cost_rejected(self):
        bucket, _ = make_bucket()
        with pytest.raises(ValueError):
            await bucket.acquire(cost=-1)

    @pytest.mark.asyncio
    async def test_cost_above_max_capacity_rejected(self):
        bucket, _ = make_bucket(max_capacity=10)
        with pytest.raises(ValueError, match="exceeds bucket max_capacity"):
            await bucket.acquire(cost=11)

    @pytest.mark.asyncio
    async def test_reset(self):
        bucket, _ = make_bucket()
        await bucket.acquire()
        await bucket.acquire()

        bucket.reset()

        assert bucket.tokens == 1.0
        assert bucket.get_stats()["acquire_count"] == 0
