"""Sliding-window circuit breaker for provider calls.

Counts failures inside a rolling time window; once the count reaches the
threshold, new attempts are rejected until old failures age out of the
window (or ``reset()`` is called). Shared by every provider so a burst of
failures stops pile-on retries during an outage.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, TypeVar

import structlog

from reveries.core.errors import CircuitOpenError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"      # Too many recent failures, reject calls


@dataclass
class CircuitStats:
    """Statistics for circuit breaker monitoring."""
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    last_failure_time: Optional[float] = None
    last_success_time: Optional[float] = None

    @property
    def failure_rate(self) -> float:
        """Calculate failure rate percentage."""
        if self.total_calls == 0:
            return 0.0
        return (self.failed_calls / self.total_calls) * 100


class CircuitBreaker:
    """
    Error boundary that blocks new attempts after a burst of failures.

    Args:
        name: Identifier used in logs
        max_errors: Failures within the window that open the circuit
        window_seconds: Length of the sliding failure window
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        name: str = "providers",
        max_errors: int = 5,
        window_seconds: float = 60.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        if max_errors <= 0:
            raise ValueError("max_errors must be > 0")
        self.name = name
        self.max_errors = max_errors
        self.window_seconds = window_seconds
        self._clock = clock or time.monotonic
        self._failures: Deque[float] = deque()
        self.stats = CircuitStats()
        self._last_state = CircuitState.CLOSED

    def _prune(self) -> None:
        cutoff = self._clock() - self.window_seconds
        while self._failures and self._failures[0] <= cutoff:
            self._failures.popleft()

    @property
    def recent_failures(self) -> int:
        self._prune()
        return len(self._failures)

    def _refresh_state(self) -> CircuitState:
        state = CircuitState.OPEN if self.recent_failures >= self.max_errors else CircuitState.CLOSED
        if state != self._last_state:
            logger.info(
                "Circuit breaker changed state",
                breaker=self.name,
                old_state=self._last_state.value,
                new_state=state.value,
            )
            self._last_state = state
        return state

    @property
    def state(self) -> CircuitState:
        return self._refresh_state()

    def should_block(self) -> bool:
        return self.state == CircuitState.OPEN

    def seconds_until_close(self) -> float:
        """Time until enough failures age out to close the circuit."""
        self._prune()
        if len(self._failures) < self.max_errors:
            return 0.0
        # The circuit closes when the failure at this index leaves the window
        pivot = self._failures[len(self._failures) - self.max_errors]
        return max(0.0, pivot + self.window_seconds - self._clock())

    def record_failure(self, error: Optional[BaseException] = None) -> None:
        now = self._clock()
        self._failures.append(now)
        self.stats.failed_calls += 1
        self.stats.total_calls += 1
        self.stats.last_failure_time = now
        logger.debug(
            "Circuit breaker recorded failure",
            breaker=self.name,
            recent_failures=self.recent_failures,
            error=str(error) if error else None,
        )
        self._refresh_state()

    def record_success(self) -> None:
        self.stats.successful_calls += 1
        self.stats.total_calls += 1
        self.stats.last_success_time = self._clock()

    def check(self) -> None:
        """Raise ``CircuitOpenError`` while the breaker is open."""
        if self.should_block():
            self.stats.rejected_calls += 1
            raise CircuitOpenError(
                f"Circuit breaker '{self.name}' is open. "
                f"Next attempt allowed in {self.seconds_until_close():.1f}s"
            )

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Execute an async function through the circuit breaker.

        Raises:
            CircuitOpenError: If the circuit is open
            Original exception: If func fails
        """
        self.check()
        try:
            result = await func(*args, **kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.record_failure(e)
            raise
        self.record_success()
        return result

    def get_stats(self) -> Dict[str, Any]:
        """Get circuit breaker statistics."""
        return {
            "name": self.name,
            "state": self.state.value,
            "recent_failures": self.recent_failures,
            "max_errors": self.max_errors,
            "window_seconds": self.window_seconds,
            "total_calls": self.stats.total_calls,
            "successful_calls": self.stats.successful_calls,
            "failed_calls": self.stats.failed_calls,
            "rejected_calls": self.stats.rejected_calls,
            "failure_rate": self.stats.failure_rate,
            "seconds_until_close": round(self.seconds_until_close(), 3),
        }

    def reset(self) -> None:
        """Manually reset the circuit breaker to closed state."""
        self._failures.clear()
        self.stats = CircuitStats()
        if self._last_state != CircuitState.CLOSED:
            logger.info("Circuit breaker reset", breaker=self.name)
        self._last_state = CircuitState.CLOSED
