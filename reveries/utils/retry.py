"""
Retry and backoff policy for provider calls.

Consolidates backoff, jitter and retry classification on top of tenacity so
every fallible provider round-trip shares the same behaviour.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog
from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt

from reveries.core.errors import EmptyResponseError, is_retryable, normalize_error

logger = structlog.get_logger(__name__)

T = TypeVar("T")

OnRetry = Callable[[int, BaseException], None]


@dataclass
class RetryConfig:
    """Bounded exponential backoff settings."""

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_factor: float = 2.0
    jitter: str = "none"

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryConfig":
        return cls(
            max_retries=settings.max_retries,
            initial_delay=settings.backoff_initial,
            max_delay=settings.backoff_max,
            backoff_factor=settings.backoff_factor,
            jitter=settings.backoff_jitter,
        )


def apply_jitter(delay: float, jitter_mode: str = "full") -> float:
    """
    Apply jitter to a delay value to prevent thundering herd.

    Args:
        delay: Base delay in seconds
        jitter_mode: "full", "equal", or "none"

    Returns:
        Jittered delay in seconds
    """
    if jitter_mode == "full":
        return random.uniform(0, delay)
    if jitter_mode == "equal":
        return delay / 2 + random.uniform(0, delay / 2)
    return delay


def calculate_backoff(attempt: int, config: RetryConfig) -> float:
    """Delay before retry number ``attempt + 1`` (``attempt`` is zero based)."""
    delay = config.initial_delay * (config.backoff_factor ** max(0, attempt))
    delay = min(delay, config.max_delay)
    return apply_jitter(delay, config.jitter)


# Empty answers rarely improve with repetition
_EMPTY_RESPONSE_MAX_ATTEMPTS = 2


def _should_retry(retry_state: RetryCallState) -> bool:
    outcome = retry_state.outcome
    if outcome is None or not outcome.failed:
        return False
    exc = outcome.exception()
    if not is_retryable(exc):
        return False
    if isinstance(exc, EmptyResponseError):
        return retry_state.attempt_number < _EMPTY_RESPONSE_MAX_ATTEMPTS
    return True


class _BackoffWait:
    """tenacity wait strategy honouring provider ``retry_after`` hints."""

    def __init__(self, config: RetryConfig):
        self.config = config

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = calculate_backoff(retry_state.attempt_number - 1, self.config)
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        retry_after = getattr(exc, "retry_after", None)
        if retry_after:
            delay = min(max(delay, float(retry_after)), self.config.max_delay)
        return delay


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    on_retry: Optional[OnRetry] = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``operation`` with bounded exponential-backoff retry.

    Non-retryable errors propagate immediately. Transport failures are
    normalized to ``NetworkError`` first so they are retried. After
    ``max_retries`` retries the last error is re-raised.
    """
    config = config or RetryConfig()
    operation_name = getattr(operation, "__name__", "operation")

    def _before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception()
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.info(
            "Retrying operation after backoff",
            function=operation_name,
            attempt=retry_state.attempt_number,
            max_retries=config.max_retries,
            delay=delay,
            error=str(exc),
            error_code=getattr(exc, "code", None),
        )
        if on_retry:
            on_retry(retry_state.attempt_number, exc)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(config.max_retries + 1),
        wait=_BackoffWait(config),
        retry=_should_retry,
        before_sleep=_before_sleep,
        sleep=sleep,
        reraise=True,
    )

    result: Any = None
    async for attempt in retrying:
        with attempt:
            try:
                result = await operation()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                normalized = normalize_error(exc)
                if normalized is exc:
                    raise
                raise normalized from exc
    return result
