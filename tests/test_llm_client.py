"""
Tests for provider resolution, citation extraction and the OpenAI-compatible adapter.
"""

import asyncio
from types import SimpleNamespace

import pytest

from reveries.core.errors import EmptyResponseError, NetworkError, ResearchError, UnsupportedModelError
from reveries.models.research import EffortLevel
from reveries.services.llm_client import (
    OpenAICompatibleProvider,
    ProviderKind,
    extract_citations_from_text,
    extract_response_citations,
    translate_openai_error,
)


@pytest.mark.parametrize(
    "model,kind",
    [
        ("gemini", ProviderKind.GEMINI),
        ("gemini-2.5-pro", ProviderKind.GEMINI),
        ("grok-4", ProviderKind.GROK),
        ("Azure-O3", ProviderKind.AZURE_O3),
        ("o3-mini", ProviderKind.AZURE_O3),
        (ProviderKind.GROK, ProviderKind.GROK),
    ],
)
def test_provider_kind_from_model(model, kind):
    assert ProviderKind.from_model(model) == kind


def test_unknown_model_is_unsupported():
    with pytest.raises(UnsupportedModelError):
        ProviderKind.from_model("claude")


def test_extract_citations_from_text():
    text = (
        "See [Paris guide](https://example.com/paris) and https://gov.fr/facts. "
        "Again: https://example.com/paris"
    )
    citations = extract_citations_from_text(text)
    assert [(c.title, c.url) for c in citations] == [
        ("Paris guide", "https://example.com/paris"),
        ("https://gov.fr/facts", "https://gov.fr/facts"),
    ]


def _response(content, **extra):
    message = SimpleNamespace(content=content, annotations=extra.pop("annotations", None))
    return SimpleNamespace(choices=[SimpleNamespace(message=message)], **extra)


def test_response_citations_prefer_provider_metadata():
    annotation = SimpleNamespace(url_citation=SimpleNamespace(url="https://a.org", title="A"))
    response = _response("text with https://ignored.org", citations=["https://x.ai/b"], annotations=[annotation])

    citations = extract_response_citations(response, "text with https://ignored.org")

    assert [c.url for c in citations] == ["https://x.ai/b", "https://a.org"]
    assert citations[1].title == "A"


def test_response_citations_fall_back_to_text():
    citations = extract_response_citations(_response("see https://b.org"), "see https://b.org")
    assert [c.url for c in citations] == ["https://b.org"]


def test_unknown_sdk_errors_are_not_retryable():
    error = translate_openai_error(ValueError("odd"), "gemini")
    assert isinstance(error, ResearchError)
    assert error.retryable is False
    assert error.provider == "gemini"


class FakeCompletions:
    def __init__(self, response=None, delay=0.0):
        self.response = response
        self.delay = delay
        self.requests = []

    async def create(self, **request):
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.response


def _client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


@pytest.mark.asyncio
async def test_adapter_builds_request_for_capabilities():
    completions = FakeCompletions(_response("  Paris.  ", citations=["https://x.ai/p"]))
    grok = OpenAICompatibleProvider(ProviderKind.GROK, _client(completions), supports_live_search=True)

    response = await grok.generate("capital?", use_search=True, effort=EffortLevel.HIGH)

    assert response.text == "Paris."
    assert [c.url for c in response.sources] == ["https://x.ai/p"]
    request = completions.requests[0]
    assert request["model"] == "grok-4"
    assert request["messages"] == [{"role": "user", "content": "capital?"}]
    assert request["extra_body"]["search_parameters"]["return_citations"] is True
    assert "reasoning_effort" not in request


@pytest.mark.asyncio
async def test_adapter_passes_reasoning_effort():
    completions = FakeCompletions(_response("ok"))
    o3 = OpenAICompatibleProvider(ProviderKind.AZURE_O3, _client(completions), supports_reasoning_effort=True)

    await o3.generate("q", use_search=True, effort=EffortLevel.LOW)

    assert completions.requests[0]["reasoning_effort"] == "low"
    assert "extra_body" not in completions.requests[0]


@pytest.mark.asyncio
async def test_adapter_empty_response():
    provider = OpenAICompatibleProvider(ProviderKind.GEMINI, _client(FakeCompletions(_response("   "))))
    with pytest.raises(EmptyResponseError):
        await provider.generate("q")


@pytest.mark.asyncio
async def test_adapter_deadline_raises_timeout():
    provider = OpenAICompatibleProvider(
        ProviderKind.GEMINI, _client(FakeCompletions(_response("late"), delay=1.0)), timeout=0.01
    )
    with pytest.raises(NetworkError) as exc_info:
        await provider.generate("q")
    assert exc_info.value.code == "TIMEOUT"
    assert exc_info.value.retryable is True
