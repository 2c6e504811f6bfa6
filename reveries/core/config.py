"""
Core configuration for the research engine.

Centralises the tunable knobs (rate limits, retry policy, cache lifetimes,
provider credentials) so magic numbers are not scattered through the
services. Every value can be overridden via environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from reveries.core.errors import ConfigError


# ────────────────────────────────────────────────────────────
#  Env helpers
# ────────────────────────────────────────────────────────────

def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)) or default)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)) or default)
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def _env_str(name: str) -> Optional[str]:
    value = (os.getenv(name) or "").strip()
    return value or None


# ────────────────────────────────────────────────────────────
#  Defaults
# ────────────────────────────────────────────────────────────

DEFAULT_CONCURRENCY_LIMIT = 2
DEFAULT_TOKENS_PER_MINUTE = 40000
DEFAULT_REQUESTS_PER_MINUTE = 60
DEFAULT_BURST_CAPACITY = 10000

CACHE_TTL_SECONDS = 30 * 60
MEMORY_TTL_SECONDS = 24 * 60 * 60

# Confidence below this triggers one round of self-healing
HEALING_CONFIDENCE_THRESHOLD = 0.4
# Paradigm probability must exceed this to be applied
PARADIGM_DOMINANCE_THRESHOLD = 0.4

VALID_EFFORTS = ("low", "medium", "high")


def resolve_concurrency_limit(default: int = DEFAULT_CONCURRENCY_LIMIT) -> int:
    """Concurrency limit from ``RESEARCH_CONCURRENCY`` (or the Azure alias)."""
    raw = _env_str("RESEARCH_CONCURRENCY") or _env_str("AZURE_OPENAI_CONCURRENCY")
    if raw is None:
        return default
    try:
        return max(1, int(raw))
    except ValueError:
        return default


@dataclass
class ProviderCredentials:
    gemini_api_key: Optional[str] = None
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    xai_api_key: Optional[str] = None
    xai_base_url: str = "https://api.x.ai/v1"
    azure_api_key: Optional[str] = None
    azure_endpoint: Optional[str] = None
    azure_deployment: Optional[str] = None
    azure_api_version: Optional[str] = None

    @classmethod
    def from_env(cls) -> "ProviderCredentials":
        return cls(
            gemini_api_key=_env_str("GEMINI_API_KEY") or _env_str("GOOGLE_API_KEY"),
            gemini_base_url=_env_str("GEMINI_BASE_URL") or cls.gemini_base_url,
            xai_api_key=_env_str("XAI_API_KEY") or _env_str("GROK_API_KEY"),
            xai_base_url=_env_str("XAI_BASE_URL") or cls.xai_base_url,
            azure_api_key=_env_str("AZURE_OPENAI_API_KEY"),
            azure_endpoint=_env_str("AZURE_OPENAI_ENDPOINT"),
            azure_deployment=_env_str("AZURE_OPENAI_DEPLOYMENT"),
            azure_api_version=_env_str("AZURE_OPENAI_API_VERSION"),
        )

    @property
    def azure_configured(self) -> bool:
        return bool(self.azure_api_key and self.azure_endpoint)


@dataclass
class EngineSettings:
    """Runtime settings for one engine instance."""

    concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT
    tokens_per_minute: int = DEFAULT_TOKENS_PER_MINUTE
    requests_per_minute: int = DEFAULT_REQUESTS_PER_MINUTE
    burst_capacity: int = DEFAULT_BURST_CAPACITY

    max_retries: int = 3
    backoff_initial: float = 1.0
    backoff_max: float = 10.0
    backoff_factor: float = 2.0
    backoff_jitter: str = "none"

    # Per provider call deadline; closes the gap of calls hanging forever
    provider_timeout: float = 120.0

    circuit_max_errors: int = 5
    circuit_window_seconds: float = 60.0

    cache_ttl_seconds: float = CACHE_TTL_SECONDS
    memory_ttl_seconds: float = MEMORY_TTL_SECONDS

    default_model: str = "gemini-2.5-flash"
    default_effort: str = "medium"

    # Route queries with a dominant paradigm to the lens strategy
    paradigm_routing: bool = True

    credentials: ProviderCredentials = field(default_factory=ProviderCredentials)

    def __post_init__(self) -> None:
        if self.default_effort not in VALID_EFFORTS:
            raise ConfigError(
                f"Invalid effort level '{self.default_effort}'; expected one of {', '.join(VALID_EFFORTS)}"
            )
        if self.tokens_per_minute <= 0 or self.requests_per_minute <= 0:
            raise ConfigError("Rate limits must be positive")
        if self.burst_capacity <= 0:
            raise ConfigError("Burst capacity must be positive")
        self.concurrency_limit = max(1, int(self.concurrency_limit))

    @classmethod
    def from_env(cls) -> "EngineSettings":
        return cls(
            concurrency_limit=resolve_concurrency_limit(),
            tokens_per_minute=_env_int("RATE_LIMIT_TOKENS_PER_MINUTE", DEFAULT_TOKENS_PER_MINUTE),
            requests_per_minute=_env_int("RATE_LIMIT_REQUESTS_PER_MINUTE", DEFAULT_REQUESTS_PER_MINUTE),
            burst_capacity=_env_int("RATE_LIMIT_BURST_TOKENS", DEFAULT_BURST_CAPACITY),
            max_retries=_env_int("LLM_MAX_RETRIES", 3),
            backoff_initial=_env_float("LLM_BACKOFF_INITIAL_SEC", 1.0),
            backoff_max=_env_float("LLM_BACKOFF_MAX_SEC", 10.0),
            backoff_factor=_env_float("LLM_BACKOFF_FACTOR", 2.0),
            backoff_jitter=(os.getenv("LLM_BACKOFF_JITTER", "none") or "none").lower(),
            provider_timeout=_env_float("PROVIDER_CALL_TIMEOUT_SEC", 120.0),
            circuit_max_errors=_env_int("CIRCUIT_MAX_ERRORS", 5),
            circuit_window_seconds=_env_float("CIRCUIT_WINDOW_SEC", 60.0),
            cache_ttl_seconds=_env_float("RESEARCH_CACHE_TTL_SEC", CACHE_TTL_SECONDS),
            memory_ttl_seconds=_env_float("RESEARCH_MEMORY_TTL_SEC", MEMORY_TTL_SECONDS),
            default_model=_env_str("RESEARCH_DEFAULT_MODEL") or "gemini-2.5-flash",
            default_effort=(_env_str("RESEARCH_DEFAULT_EFFORT") or "medium").lower(),
            paradigm_routing=_env_bool("RESEARCH_PARADIGM_ROUTING", True),
            credentials=ProviderCredentials.from_env(),
        )
