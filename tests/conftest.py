"""Shared pytest fixtures for the research engine tests.

Nothing here talks to a real provider. ``FakeProvider`` implements the
adapter contract with a scripted responder, and ``FakeClock`` plus
``RecordingSleep`` make every timed wait deterministic.
"""

from __future__ import annotations

import asyncio
import os
import sys
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

# ---------------------------------------------------------------------------
#  Ensure the package is importable without an editable install
# ---------------------------------------------------------------------------
_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _REPO_ROOT not in sys.path:
    sys.path.insert(0, _REPO_ROOT)

from reveries.models.research import Citation, EffortLevel  # noqa: E402
from reveries.services.llm_client import (  # noqa: E402
    ProviderAdapter,
    ProviderKind,
    ProviderRegistry,
    ProviderResponse,
)
from reveries.services.provider_gateway import ProviderGateway  # noqa: E402
from reveries.services.rate_limiter import (  # noqa: E402
    AdmissionController,
    RequestQueue,
    TokenBucketLimiter,
)
from reveries.utils.circuit_breaker import CircuitBreaker  # noqa: E402
from reveries.utils.retry import RetryConfig  # noqa: E402


class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep stand-in: records delays and advances an optional clock."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.calls: List[float] = []
        self.clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)
        await asyncio.sleep(0)


Responder = Callable[[str, bool], Any]


class FakeProvider(ProviderAdapter):
    """Scripted provider. The responder returns text, a response, or an exception to raise."""

    def __init__(self, kind: ProviderKind = ProviderKind.GEMINI, responder: Optional[Responder] = None):
        self.kind = kind
        self.model = kind.default_model
        self.responder = responder or (lambda prompt, use_search: "ok")
        self.calls: List[Tuple[str, bool, EffortLevel]] = []

    async def generate(self, prompt, *, use_search=False, effort=EffortLevel.MEDIUM):
        self.calls.append((prompt, use_search, effort))
        outcome = self.responder(prompt, use_search)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, ProviderResponse):
            return outcome
        return ProviderResponse(text=outcome)


# ---------------------------------------------------------------------------
#  Scripted research conversation
# ---------------------------------------------------------------------------

PARIS_SYNTHESIS = (
    "Paris is the capital of France. It has been the seat of the French "
    "government for most of the country's history and is home to the "
    "President's official residence, the Élysée Palace, as well as both "
    "houses of Parliament. With over two million residents in the city proper, "
    "Paris is also France's largest city and its cultural and economic centre."
)

PARIS_SOURCE = Citation(url="https://en.wikipedia.org/wiki/Paris", title="Paris - Wikipedia")


def script(**overrides: Any) -> Responder:
    """Responder that answers each research prompt by recognising its wording.

    Values may be strings, ``ProviderResponse`` objects, exceptions, or
    callables taking the prompt.
    """
    answers: Dict[str, Any] = {
        "classify": "factual",
        "queries": "capital of France",
        "research": ProviderResponse(text="Paris is the capital of France.", sources=[PARIS_SOURCE]),
        "synthesis": PARIS_SYNTHESIS,
        "evaluation": "Completeness: 0.9\nAccuracy: 0.9\nClarity: 0.9\nOverall Quality: good\nFeedback: None",
        "plan": "1. History: How it began\n2. Economy: Trade and industry\n3. Culture: Arts and food",
        "reflection": "More detail on economic impact is needed.",
        "expand": PARIS_SYNTHESIS,
    }
    answers.update(overrides)

    markers = (
        ("classify it into ONE of these categories", "classify"),
        ("generate a short list of 2-3 concise search queries", "queries"),
        ("Perform a web search", "research"),
        ("Evaluate this synthesis", "evaluation"),
        ("Break down this query", "plan"),
        ("briefly reflect", "reflection"),
        ("Expand and provide more comprehensive details", "expand"),
        ("Based on this research about", "synthesis"),
        ("Based on the user query and the provided context", "synthesis"),
    )

    def responder(prompt: str, use_search: bool) -> Any:
        for marker, key in markers:
            if marker in prompt:
                answer = answers[key]
                return answer(prompt) if callable(answer) else answer
        raise AssertionError(f"Unexpected prompt: {prompt[:80]}")

    return responder


# ---------------------------------------------------------------------------
#  Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_provider():
    def _make(kind: ProviderKind = ProviderKind.GEMINI, responder: Optional[Responder] = None) -> FakeProvider:
        return FakeProvider(kind, responder)

    return _make


@pytest.fixture
def scripted():
    return script


@pytest.fixture
def make_gateway(recording_sleep):
    """Gateway over fake providers with generous limits and no real sleeping."""

    def _make(*providers: ProviderAdapter, max_retries: int = 3, breaker: Optional[CircuitBreaker] = None,
              concurrency: int = 2) -> ProviderGateway:
        admission = AdmissionController(
            TokenBucketLimiter(1_000_000, 10_000, 1_000_000, sleep=recording_sleep),
            RequestQueue(concurrency),
        )
        return ProviderGateway(
            ProviderRegistry(providers),
            admission,
            breaker or CircuitBreaker(max_errors=100),
            RetryConfig(max_retries=max_retries),
            sleep=recording_sleep,
        )

    return _make
