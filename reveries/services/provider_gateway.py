"""
Provider gateway
----------------
Every provider round-trip in the engine goes through ``generate_text``:

    circuit breaker -> admission controller -> retry policy -> adapter

and, when the preferred provider fails non-retryably or exhausts its
retries, the call moves down the fixed fallback chain. Providers already
attempted for this call are never retried, so fallback cannot cycle.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from typing import Awaitable, Callable, Dict, List, Optional, Union

import structlog

from reveries.core.errors import (
    AllProvidersFailedError,
    CircuitOpenError,
    ProviderError,
    ResearchError,
)
from reveries.models.research import EffortLevel
from reveries.services.llm_client import (
    ProviderAdapter,
    ProviderKind,
    ProviderRegistry,
    ProviderResponse,
)
from reveries.services.rate_limiter import AdmissionController, estimate_tokens
from reveries.utils.circuit_breaker import CircuitBreaker
from reveries.utils.retry import RetryConfig, with_retry

logger = structlog.get_logger(__name__)


class ProviderGateway:
    def __init__(
        self,
        registry: ProviderRegistry,
        admission: AdmissionController,
        breaker: CircuitBreaker,
        retry_config: Optional[RetryConfig] = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.registry = registry
        self.admission = admission
        self.breaker = breaker
        self.retry_config = retry_config or RetryConfig()
        self._sleep = sleep
        self.call_counts: Counter = Counter()

    async def _call_provider(
        self,
        provider: ProviderAdapter,
        prompt: str,
        effort: EffortLevel,
        use_search: bool,
    ) -> ProviderResponse:
        estimated = estimate_tokens(prompt)

        async def _generate() -> ProviderResponse:
            self.call_counts[provider.kind] += 1
            return await provider.generate(prompt, use_search=use_search, effort=effort)

        async def _attempt() -> ProviderResponse:
            return await self.breaker.call(self.admission.run, _generate, estimated)

        def _on_retry(attempt: int, error: BaseException) -> None:
            logger.warning(
                "Provider call failed, retrying",
                provider=provider.kind.value,
                attempt=attempt,
                error_code=getattr(error, "code", None),
            )

        _attempt.__name__ = f"{provider.kind.value}.generate"
        return await with_retry(_attempt, self.retry_config, _on_retry, sleep=self._sleep)

    async def generate_text(
        self,
        prompt: str,
        model: Union[str, ProviderKind],
        effort: Union[str, EffortLevel] = EffortLevel.MEDIUM,
        *,
        use_search: bool = False,
    ) -> ProviderResponse:
        preferred = ProviderKind.from_model(model)
        effort = EffortLevel(effort)
        chain = self.registry.fallback_chain(preferred)
        if not chain:
            raise AllProvidersFailedError(
                f"No configured provider can serve '{preferred.value}'", attempted=[]
            )

        attempted: List[str] = []
        last_error: Optional[ResearchError] = None
        for kind in chain:
            if kind.value in attempted:
                continue
            attempted.append(kind.value)
            provider = self.registry.get(kind)
            try:
                return await self._call_provider(provider, prompt, effort, use_search)
            except CircuitOpenError:
                raise
            except ResearchError as exc:
                last_error = exc
            except Exception as exc:
                logger.exception("Provider adapter raised unexpectedly", provider=kind.value)
                last_error = ProviderError(
                    f"{exc.__class__.__name__}: {exc}", provider=kind.value
                )
                last_error.__cause__ = exc
            logger.warning(
                "Provider failed, falling back",
                provider=kind.value,
                error_code=last_error.code,
                retryable=last_error.retryable,
                attempted=attempted,
            )

        raise AllProvidersFailedError(
            f"All providers failed ({', '.join(attempted)}): {last_error}",
            attempted=attempted,
            last_error=last_error,
        ) from last_error

    def get_stats(self) -> Dict[str, object]:
        return {
            "provider_calls": {kind.value: count for kind, count in self.call_counts.items()},
            "admission": self.admission.get_stats(),
            "circuit_breaker": self.breaker.get_stats(),
        }
