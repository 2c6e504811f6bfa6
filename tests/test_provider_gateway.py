"""
Tests for the provider gateway: retry, fallback chain, breaker propagation.
"""

import pytest

from reveries.core.errors import (
    AllProvidersFailedError,
    AuthError,
    CircuitOpenError,
    EmptyResponseError,
    NetworkError,
    ProviderError,
    RateLimitError,
    UnsupportedModelError,
)
from reveries.services.llm_client import ProviderKind
from reveries.utils.circuit_breaker import CircuitBreaker
from conftest import FakeClock


def _failing(error_factory):
    return lambda prompt, use_search: error_factory()


@pytest.mark.asyncio
async def test_success_on_preferred_provider(make_provider, make_gateway):
    gemini = make_provider(ProviderKind.GEMINI, lambda p, s: "hello")
    gateway = make_gateway(gemini)

    response = await gateway.generate_text("hi", "gemini-2.5-flash", "low", use_search=True)

    assert response.text == "hello"
    assert gemini.calls == [("hi", True, "low")]
    assert gateway.get_stats()["provider_calls"] == {"gemini": 1}


@pytest.mark.asyncio
async def test_auth_error_falls_back_without_retrying(make_provider, make_gateway, recording_sleep):
    gemini = make_provider(ProviderKind.GEMINI, _failing(lambda: AuthError("bad key")))
    azure = make_provider(ProviderKind.AZURE_O3, lambda p, s: "from azure")
    gateway = make_gateway(gemini, azure)

    response = await gateway.generate_text("hi", ProviderKind.GEMINI)

    assert response.text == "from azure"
    assert len(gemini.calls) == 1
    assert len(azure.calls) == 1
    assert recording_sleep.calls == []


@pytest.mark.asyncio
async def test_network_errors_are_retried_before_fallback(make_provider, make_gateway, recording_sleep):
    grok = make_provider(ProviderKind.GROK, _failing(lambda: NetworkError("reset")))
    gemini = make_provider(ProviderKind.GEMINI, lambda p, s: "from gemini")
    gateway = make_gateway(grok, gemini, max_retries=2)

    response = await gateway.generate_text("hi", "grok-4")

    assert response.text == "from gemini"
    assert len(grok.calls) == 3
    assert recording_sleep.calls == [1.0, 2.0]
    assert gateway.call_counts[ProviderKind.GROK] == 3


@pytest.mark.asyncio
async def test_transient_failure_recovers_on_same_provider(make_provider, make_gateway):
    outcomes = [ConnectionError("connection reset by peer"), "recovered"]
    gemini = make_provider(ProviderKind.GEMINI, lambda p, s: outcomes.pop(0))
    azure = make_provider(ProviderKind.AZURE_O3, lambda p, s: "unused")
    gateway = make_gateway(gemini, azure)

    response = await gateway.generate_text("hi", "gemini")

    assert response.text == "recovered"
    assert azure.calls == []


@pytest.mark.asyncio
async def test_rate_limit_retry_after_is_honoured(make_provider, make_gateway, recording_sleep):
    outcomes = [RateLimitError("slow down", retry_after=5), "ok"]
    gemini = make_provider(ProviderKind.GEMINI, lambda p, s: outcomes.pop(0))
    gateway = make_gateway(gemini)

    await gateway.generate_text("hi", "gemini")

    assert recording_sleep.calls == [5.0]


@pytest.mark.asyncio
async def test_empty_responses_are_retried_once(make_provider, make_gateway):
    gemini = make_provider(ProviderKind.GEMINI, _failing(lambda: EmptyResponseError("nothing")))
    azure = make_provider(ProviderKind.AZURE_O3, lambda p, s: "ok")
    gateway = make_gateway(gemini, azure)

    await gateway.generate_text("hi", "gemini")

    assert len(gemini.calls) == 2


@pytest.mark.asyncio
async def test_all_providers_failed(make_provider, make_gateway):
    gemini = make_provider(ProviderKind.GEMINI, _failing(lambda: AuthError("bad key")))
    azure = make_provider(ProviderKind.AZURE_O3, _failing(lambda: AuthError("bad key")))
    grok = make_provider(ProviderKind.GROK, _failing(lambda: AuthError("bad key")))
    gateway = make_gateway(gemini, azure, grok)

    with pytest.raises(AllProvidersFailedError) as exc_info:
        await gateway.generate_text("hi", "gemini")

    assert exc_info.value.attempted == ["gemini", "azure_o3", "grok"]
    assert isinstance(exc_info.value.last_error, AuthError)
    # Each provider is attempted exactly once per call
    assert [len(p.calls) for p in (gemini, azure, grok)] == [1, 1, 1]


@pytest.mark.asyncio
async def test_open_circuit_propagates_without_fallback(make_provider, make_gateway):
    breaker = CircuitBreaker(max_errors=2, window_seconds=60, clock=FakeClock())
    gemini = make_provider(ProviderKind.GEMINI, _failing(lambda: AuthError("bad key")))
    azure = make_provider(ProviderKind.AZURE_O3, _failing(lambda: AuthError("bad key")))
    gateway = make_gateway(gemini, azure, breaker=breaker)

    with pytest.raises(AllProvidersFailedError):
        await gateway.generate_text("hi", "gemini")

    with pytest.raises(CircuitOpenError):
        await gateway.generate_text("hi", "gemini")

    assert len(gemini.calls) == 1
    assert len(azure.calls) == 1
    assert gateway.get_stats()["circuit_breaker"]["state"] == "open"


@pytest.mark.asyncio
async def test_unconfigured_preferred_provider_uses_fallbacks(make_provider, make_gateway):
    grok = make_provider(ProviderKind.GROK, lambda p, s: "from grok")
    gateway = make_gateway(grok)

    response = await gateway.generate_text("hi", "o3")

    assert response.text == "from grok"


@pytest.mark.asyncio
async def test_unsupported_model_is_rejected(make_provider, make_gateway):
    gateway = make_gateway(make_provider())
    with pytest.raises(UnsupportedModelError):
        await gateway.generate_text("hi", "llama-3")


@pytest.mark.asyncio
async def test_unexpected_adapter_exception_falls_back(make_provider, make_gateway, recording_sleep):
    gemini = make_provider(ProviderKind.GEMINI, _failing(lambda: RuntimeError("adapter bug")))
    azure = make_provider(ProviderKind.AZURE_O3, lambda p, s: "from azure")
    gateway = make_gateway(gemini, azure)

    response = await gateway.generate_text("hi", "gemini")

    assert response.text == "from azure"
    assert len(gemini.calls) == 1
    assert recording_sleep.calls == []


@pytest.mark.asyncio
async def test_unexpected_adapter_exception_is_wrapped_when_chain_exhausted(make_provider, make_gateway):
    gemini = make_provider(ProviderKind.GEMINI, _failing(lambda: RuntimeError("adapter bug")))
    gateway = make_gateway(gemini)

    with pytest.raises(AllProvidersFailedError) as exc_info:
        await gateway.generate_text("hi", "gemini")

    last_error = exc_info.value.last_error
    assert isinstance(last_error, ProviderError)
    assert last_error.code == "PROVIDER_ERROR"
    assert last_error.retryable is False
    assert last_error.provider == "gemini"
    assert isinstance(last_error.__cause__, RuntimeError)
