"""
Admission control for outbound provider calls.

Two layers gate every provider round-trip:

- ``RequestQueue`` caps the number of in-flight calls and admits waiters in
  strict FIFO order.
- ``TokenBucketLimiter`` smooths throughput against a tokens-per-minute and a
  requests-per-minute budget.

Both are per-process service objects constructed once and shared by the
router; all state is touched from the event loop only.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Tuple, TypeVar

import structlog

from reveries.core.config import (
    DEFAULT_BURST_CAPACITY,
    DEFAULT_CONCURRENCY_LIMIT,
    DEFAULT_REQUESTS_PER_MINUTE,
    DEFAULT_TOKENS_PER_MINUTE,
)
from reveries.core.errors import RateLimitError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_WINDOW_SECONDS = 60.0
_MIN_WAIT_SECONDS = 1.0


def estimate_tokens(text: str) -> int:
    """Rough token estimate (~4 characters per token)."""
    return max(1, math.ceil(len(text or "") / 4))


class TokenBucketLimiter:
    """
    Async token bucket with separate token and request budgets.

    Notes:
    - Both buckets refill continuously in proportion to elapsed time.
    - The token bucket is capped at ``burst_capacity``; the request bucket at
      ``requests_per_minute``.
    - ``wait_for_capacity`` loops with a bounded number of waits instead of
      retrying indefinitely.
    """

    def __init__(
        self,
        tokens_per_minute: int = DEFAULT_TOKENS_PER_MINUTE,
        requests_per_minute: int = DEFAULT_REQUESTS_PER_MINUTE,
        burst_capacity: int = DEFAULT_BURST_CAPACITY,
        *,
        max_wait_iterations: int = 120,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        if tokens_per_minute <= 0 or requests_per_minute <= 0:
            raise ValueError("rate limits must be > 0")
        if burst_capacity <= 0:
            raise ValueError("burst_capacity must be > 0")
        self.tokens_per_minute = tokens_per_minute
        self.requests_per_minute = requests_per_minute
        self.burst_capacity = float(burst_capacity)
        self.max_wait_iterations = max_wait_iterations
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._tokens: float = self.burst_capacity
        self._requests: float = float(requests_per_minute)
        self._updated: float = self._clock()
        self._history: Deque[Tuple[float, int]] = deque()
        self._lock = asyncio.Lock()

    @property
    def available_tokens(self) -> float:
        self._refill()
        return self._tokens

    @property
    def available_requests(self) -> float:
        self._refill()
        return self._requests

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        if elapsed > 0:
            minutes = elapsed / _WINDOW_SECONDS
            self._tokens = min(self.burst_capacity, self._tokens + minutes * self.tokens_per_minute)
            self._requests = min(
                float(self.requests_per_minute), self._requests + minutes * self.requests_per_minute
            )
            self._updated = now

    def _prune_history(self) -> None:
        cutoff = self._clock() - _WINDOW_SECONDS
        while self._history and self._history[0][0] <= cutoff:
            self._history.popleft()

    def _try_acquire(self, tokens: float) -> Optional[float]:
        """Debit both buckets and return None, or return the seconds to wait."""
        self._refill()
        if self._tokens >= tokens and self._requests >= 1:
            self._tokens -= tokens
            self._requests -= 1
            self._history.append((self._clock(), int(tokens)))
            self._prune_history()
            return None

        tokens_needed = max(0.0, tokens - self._tokens)
        token_wait = tokens_needed / self.tokens_per_minute * _WINDOW_SECONDS
        request_wait = _WINDOW_SECONDS / self.requests_per_minute if self._requests < 1 else 0.0
        return max(token_wait, request_wait, _MIN_WAIT_SECONDS)

    async def wait_for_capacity(self, estimated_tokens: int = 1) -> None:
        """Block until both buckets can cover the request, then debit them."""
        # A request larger than the bucket could never be admitted
        tokens = float(min(max(1, estimated_tokens), self.burst_capacity))

        for iteration in range(self.max_wait_iterations + 1):
            async with self._lock:
                wait_for = self._try_acquire(tokens)
            if wait_for is None:
                return
            if iteration == self.max_wait_iterations:
                break
            logger.debug(
                "Rate limit reached, waiting for capacity",
                wait_seconds=round(wait_for, 3),
                estimated_tokens=int(tokens),
                available_tokens=round(self._tokens, 1),
                available_requests=round(self._requests, 2),
            )
            await self._sleep(wait_for)

        raise RateLimitError(
            f"Rate limiter could not admit {int(tokens)} tokens after "
            f"{self.max_wait_iterations} waits"
        )

    def get_usage_stats(self) -> Dict[str, Any]:
        self._refill()
        self._prune_history()
        return {
            "tokens_used_last_minute": sum(t for _, t in self._history),
            "requests_last_minute": len(self._history),
            "available_tokens": round(self._tokens, 1),
            "token_capacity_percent": round(self._tokens / self.burst_capacity * 100, 1),
        }

    def reset(self) -> None:
        self._tokens = self.burst_capacity
        self._requests = float(self.requests_per_minute)
        self._updated = self._clock()
        self._history.clear()


class RequestQueue:
    """Bounded concurrency gate with strict FIFO admission."""

    def __init__(self, concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT) -> None:
        self._limit = max(1, int(concurrency_limit))
        self._active = 0
        self._waiters: Deque[asyncio.Future] = deque()

    @property
    def concurrency_limit(self) -> int:
        return self._limit

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def pending_count(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    def set_concurrency_limit(self, limit: int) -> None:
        self._limit = max(1, int(limit))
        logger.info("Request queue concurrency changed", concurrency_limit=self._limit)
        self._drain()

    def _drain(self) -> None:
        while self._waiters and self._active < self._limit:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            self._active += 1
            waiter.set_result(None)

    async def acquire(self) -> None:
        if self._active < self._limit and not self._waiters:
            self._active += 1
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Slot was granted just before cancellation; hand it on
                self.release()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def release(self) -> None:
        if self._active > 0:
            self._active -= 1
        self._drain()

    async def submit(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` once a slot is free."""
        await self.acquire()
        try:
            return await operation()
        finally:
            self.release()


class AdmissionController:
    """Sole gate for provider calls: queue slot first, then bucket capacity."""

    def __init__(self, limiter: TokenBucketLimiter, queue: RequestQueue) -> None:
        self.limiter = limiter
        self.queue = queue

    @classmethod
    def from_settings(cls, settings: Any) -> "AdmissionController":
        return cls(
            TokenBucketLimiter(
                tokens_per_minute=settings.tokens_per_minute,
                requests_per_minute=settings.requests_per_minute,
                burst_capacity=settings.burst_capacity,
            ),
            RequestQueue(settings.concurrency_limit),
        )

    async def run(self, operation: Callable[[], Awaitable[T]], estimated_tokens: int = 1) -> T:
        async def _admitted() -> T:
            await self.limiter.wait_for_capacity(estimated_tokens)
            return await operation()

        return await self.queue.submit(_admitted)

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.limiter.get_usage_stats(),
            "concurrency_limit": self.queue.concurrency_limit,
            "active_requests": self.queue.active_count,
            "queued_requests": self.queue.pending_count,
        }
