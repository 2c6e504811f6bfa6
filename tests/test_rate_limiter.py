"""
Tests for admission control: token bucket pacing and FIFO concurrency gating.
"""

import asyncio

import pytest

from reveries.core.errors import RateLimitError
from reveries.services.rate_limiter import (
    AdmissionController,
    RequestQueue,
    TokenBucketLimiter,
    estimate_tokens,
)
from conftest import FakeClock, RecordingSleep


def test_estimate_tokens_rounds_up_quarter_length():
    assert estimate_tokens("") == 1
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
    assert estimate_tokens("x" * 400) == 100


class TestTokenBucketLimiter:
    @pytest.fixture
    def clock(self) -> FakeClock:
        return FakeClock()

    @pytest.fixture
    def sleep(self, clock) -> RecordingSleep:
        return RecordingSleep(clock)

    @pytest.fixture
    def limiter(self, clock, sleep) -> TokenBucketLimiter:
        # One token per second, 30 token burst
        return TokenBucketLimiter(tokens_per_minute=60, requests_per_minute=60, burst_capacity=30,
                                  clock=clock, sleep=sleep)

    @pytest.mark.asyncio
    async def test_full_bucket_admits_without_waiting(self, limiter, sleep):
        await limiter.wait_for_capacity(30)
        assert sleep.calls == []
        assert limiter.available_tokens == 0

    @pytest.mark.asyncio
    async def test_drained_bucket_waits_for_refill(self, limiter, sleep):
        await limiter.wait_for_capacity(30)
        await limiter.wait_for_capacity(15)
        assert sleep.calls == [15.0]

    @pytest.mark.asyncio
    async def test_request_larger_than_burst_is_clamped(self, limiter, sleep):
        await limiter.wait_for_capacity(1_000)
        assert sleep.calls == []
        stats = limiter.get_usage_stats()
        assert stats["tokens_used_last_minute"] == 30

    @pytest.mark.asyncio
    async def test_request_bucket_paces_calls(self, clock):
        sleep = RecordingSleep(clock)
        limiter = TokenBucketLimiter(tokens_per_minute=60_000, requests_per_minute=2, burst_capacity=1_000,
                                     clock=clock, sleep=sleep)
        await limiter.wait_for_capacity(1)
        await limiter.wait_for_capacity(1)
        await limiter.wait_for_capacity(1)
        # One request slot refills every 30 seconds
        assert sleep.calls == [30.0]

    @pytest.mark.asyncio
    async def test_wait_loop_is_bounded(self, clock):
        frozen_sleep = RecordingSleep()  # never advances the clock
        limiter = TokenBucketLimiter(tokens_per_minute=60, requests_per_minute=60, burst_capacity=10,
                                     max_wait_iterations=3, clock=clock, sleep=frozen_sleep)
        await limiter.wait_for_capacity(10)
        with pytest.raises(RateLimitError):
            await limiter.wait_for_capacity(10)
        assert len(frozen_sleep.calls) == 3

    @pytest.mark.asyncio
    async def test_usage_stats_use_rolling_minute(self, limiter, clock):
        await limiter.wait_for_capacity(10)
        await limiter.wait_for_capacity(5)
        stats = limiter.get_usage_stats()
        assert stats["tokens_used_last_minute"] == 15
        assert stats["requests_last_minute"] == 2
        assert stats["token_capacity_percent"] == 50.0

        clock.advance(61)
        stats = limiter.get_usage_stats()
        assert stats["tokens_used_last_minute"] == 0
        assert stats["requests_last_minute"] == 0

    def test_invalid_limits_rejected(self):
        with pytest.raises(ValueError):
            TokenBucketLimiter(tokens_per_minute=0)
        with pytest.raises(ValueError):
            TokenBucketLimiter(burst_capacity=0)


class TestRequestQueue:
    @pytest.mark.asyncio
    async def test_concurrency_is_capped_and_excess_runs_fifo(self):
        queue = RequestQueue(concurrency_limit=2)
        gate = asyncio.Event()
        started = []
        running = 0
        peak = 0

        async def job(i):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            started.append(i)
            await gate.wait()
            running -= 1
            return i

        tasks = [asyncio.ensure_future(queue.submit(lambda i=i: job(i))) for i in range(5)]
        for _ in range(5):
            await asyncio.sleep(0)

        assert started == [0, 1]
        assert queue.active_count == 2
        assert queue.pending_count == 3

        gate.set()
        results = await asyncio.gather(*tasks)

        assert results == [0, 1, 2, 3, 4]
        assert started == [0, 1, 2, 3, 4]
        assert peak == 2
        assert queue.active_count == 0

    @pytest.mark.asyncio
    async def test_raising_limit_admits_waiters(self):
        queue = RequestQueue(concurrency_limit=1)
        gate = asyncio.Event()
        started = []

        async def job(i):
            started.append(i)
            await gate.wait()

        tasks = [asyncio.ensure_future(queue.submit(lambda i=i: job(i))) for i in range(3)]
        for _ in range(3):
            await asyncio.sleep(0)
        assert started == [0]

        queue.set_concurrency_limit(3)
        for _ in range(3):
            await asyncio.sleep(0)
        assert started == [0, 1, 2]

        gate.set()
        await asyncio.gather(*tasks)

    def test_limit_never_below_one(self):
        queue = RequestQueue(concurrency_limit=0)
        assert queue.concurrency_limit == 1
        queue.set_concurrency_limit(-5)
        assert queue.concurrency_limit == 1

    @pytest.mark.asyncio
    async def test_slot_released_when_operation_fails(self):
        queue = RequestQueue(concurrency_limit=1)

        async def boom():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await queue.submit(boom)
        assert queue.active_count == 0


@pytest.mark.asyncio
async def test_admission_controller_gates_queue_then_bucket():
    clock = FakeClock()
    sleep = RecordingSleep(clock)
    controller = AdmissionController(
        TokenBucketLimiter(60, 60, 30, clock=clock, sleep=sleep),
        RequestQueue(1),
    )

    async def call():
        return "done"

    assert await controller.run(call, estimated_tokens=30) == "done"
    assert await controller.run(call, estimated_tokens=15) == "done"
    assert sleep.calls == [15.0]

    stats = controller.get_stats()
    assert stats["concurrency_limit"] == 1
    assert stats["active_requests"] == 0
    assert stats["requests_last_minute"] == 2
