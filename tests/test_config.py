"""
Tests for environment-driven settings and provider construction.
"""

import pytest

from reveries.core.config import EngineSettings, ProviderCredentials, resolve_concurrency_limit
from reveries.core.errors import ConfigError
from reveries.services.llm_client import (
    OpenAICompatibleProvider,
    ProviderKind,
    ProviderRegistry,
    build_provider,
)

_ENV_KEYS = (
    "RESEARCH_CONCURRENCY",
    "AZURE_OPENAI_CONCURRENCY",
    "GEMINI_API_KEY",
    "GOOGLE_API_KEY",
    "XAI_API_KEY",
    "GROK_API_KEY",
    "AZURE_OPENAI_API_KEY",
    "AZURE_OPENAI_ENDPOINT",
    "AZURE_OPENAI_DEPLOYMENT",
    "RATE_LIMIT_TOKENS_PER_MINUTE",
    "RESEARCH_DEFAULT_EFFORT",
    "LLM_MAX_RETRIES",
    "RESEARCH_PARADIGM_ROUTING",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults():
    settings = EngineSettings.from_env()
    assert settings.concurrency_limit == 2
    assert settings.provider_timeout == 120.0
    assert settings.cache_ttl_seconds == 30 * 60
    assert settings.memory_ttl_seconds == 24 * 60 * 60
    assert settings.default_effort == "medium"


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("RESEARCH_CONCURRENCY", "4")
    monkeypatch.setenv("RATE_LIMIT_TOKENS_PER_MINUTE", "1000")
    monkeypatch.setenv("LLM_MAX_RETRIES", "not-a-number")
    settings = EngineSettings.from_env()
    assert settings.concurrency_limit == 4
    assert settings.tokens_per_minute == 1000
    assert settings.max_retries == 3


def test_azure_concurrency_alias(monkeypatch):
    monkeypatch.setenv("AZURE_OPENAI_CONCURRENCY", "3")
    assert resolve_concurrency_limit() == 3
    monkeypatch.setenv("RESEARCH_CONCURRENCY", "0")
    assert resolve_concurrency_limit() == 1


@pytest.mark.parametrize("raw, expected", [("0", False), ("off", False), ("yes", True), ("TRUE", True)])
def test_paradigm_routing_flag(monkeypatch, raw, expected):
    assert EngineSettings.from_env().paradigm_routing is True
    monkeypatch.setenv("RESEARCH_PARADIGM_ROUTING", raw)
    assert EngineSettings.from_env().paradigm_routing is expected


def test_invalid_effort_is_a_config_error(monkeypatch):
    monkeypatch.setenv("RESEARCH_DEFAULT_EFFORT", "extreme")
    with pytest.raises(ConfigError):
        EngineSettings.from_env()


def test_credentials_fall_back_to_alternate_names(monkeypatch):
    monkeypatch.setenv("GOOGLE_API_KEY", "g-key")
    monkeypatch.setenv("GROK_API_KEY", "x-key")
    creds = ProviderCredentials.from_env()
    assert creds.gemini_api_key == "g-key"
    assert creds.xai_api_key == "x-key"
    assert creds.azure_configured is False


def test_build_provider_requires_credentials():
    with pytest.raises(ConfigError):
        build_provider(ProviderKind.GROK, ProviderCredentials())
    with pytest.raises(ConfigError):
        build_provider(ProviderKind.AZURE_O3, ProviderCredentials(azure_api_key="k"))


def test_build_provider_capabilities():
    creds = ProviderCredentials(
        gemini_api_key="g",
        xai_api_key="x",
        azure_api_key="a",
        azure_endpoint="https://example.openai.azure.com/",
        azure_deployment="o3-prod",
    )
    gemini = build_provider(ProviderKind.GEMINI, creds, timeout=30)
    grok = build_provider(ProviderKind.GROK, creds)
    azure = build_provider(ProviderKind.AZURE_O3, creds)

    assert isinstance(gemini, OpenAICompatibleProvider)
    assert gemini.timeout == 30
    assert gemini.supports_reasoning_effort and not gemini.supports_live_search
    assert grok.supports_live_search
    assert azure.model == "o3-prod"


def test_registry_without_credentials_is_a_config_error():
    with pytest.raises(ConfigError):
        ProviderRegistry.from_settings(EngineSettings())


def test_registry_skips_unconfigured_providers():
    settings = EngineSettings(credentials=ProviderCredentials(xai_api_key="x"))
    registry = ProviderRegistry.from_settings(settings)
    assert registry.kinds == [ProviderKind.GROK]
    assert registry.fallback_chain(ProviderKind.GEMINI) == [ProviderKind.GROK]
    assert registry.fallback_chain(ProviderKind.GROK) == [ProviderKind.GROK]
