"""
Core package for the research engine.

Re-exports settings and error kinds so callers can import them from
``reveries.core`` without knowing the internal module layout.
"""

from reveries.core.config import (
    CACHE_TTL_SECONDS,
    MEMORY_TTL_SECONDS,
    HEALING_CONFIDENCE_THRESHOLD,
    PARADIGM_DOMINANCE_THRESHOLD,
    VALID_EFFORTS,
    EngineSettings,
    ProviderCredentials,
    resolve_concurrency_limit,
)
from reveries.core.errors import (
    AllProvidersFailedError,
    AuthError,
    CircuitOpenError,
    ConfigError,
    EmptyResponseError,
    NetworkError,
    ProviderError,
    RateLimitError,
    ResearchError,
    UnsupportedModelError,
    is_retryable,
    normalize_error,
    to_user_message,
)

__all__ = [
    "CACHE_TTL_SECONDS",
    "MEMORY_TTL_SECONDS",
    "HEALING_CONFIDENCE_THRESHOLD",
    "PARADIGM_DOMINANCE_THRESHOLD",
    "VALID_EFFORTS",
    "EngineSettings",
    "ProviderCredentials",
    "resolve_concurrency_limit",
    "AllProvidersFailedError",
    "AuthError",
    "CircuitOpenError",
    "ConfigError",
    "EmptyResponseError",
    "NetworkError",
    "ProviderError",
    "RateLimitError",
    "ResearchError",
    "UnsupportedModelError",
    "is_retryable",
    "normalize_error",
    "to_user_message",
]
