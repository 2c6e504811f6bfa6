"""
Error kinds raised by the research engine.

Every failure that crosses a component boundary is a ``ResearchError``
subclass carrying a stable ``code`` and a ``retryable`` flag; the retry
policy and the provider fallback logic only look at those two attributes.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class ResearchError(Exception):
    """Base class for all engine errors."""

    code: str = "RESEARCH_ERROR"
    retryable: bool = False
    user_message: str = "Research failed. Please try again."

    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        retryable: Optional[bool] = None,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message or self.user_message)
        self.message = message or self.user_message
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable
        self.provider = provider
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "provider": self.provider,
            "status_code": self.status_code,
        }


class NetworkError(ResearchError):
    """Transport-level failure (connection reset, DNS, deadline exceeded)."""

    code = "NETWORK_ERROR"
    retryable = True
    user_message = "Network connection lost. Retrying..."


class RateLimitError(ResearchError):
    """Provider signalled throttling."""

    code = "RATE_LIMIT"
    retryable = True
    user_message = "Rate limit reached. Waiting before retrying..."

    def __init__(self, message: str = "", *, retry_after: Optional[float] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class AuthError(ResearchError):
    """Bad or missing credentials. Never retried; triggers provider fallback."""

    code = "AUTH_ERROR"
    retryable = False
    user_message = "Authentication failed. Check the provider API key."


class EmptyResponseError(ResearchError):
    """Provider answered but returned no usable content."""

    code = "EMPTY_RESPONSE"
    retryable = True
    user_message = "The model returned an empty response."


class ProviderError(ResearchError):
    """Unexpected failure inside a provider adapter. Not retried; triggers fallback."""

    code = "PROVIDER_ERROR"
    retryable = False
    user_message = "The model provider failed unexpectedly."


class UnsupportedModelError(ResearchError):
    code = "UNSUPPORTED_MODEL"
    retryable = False
    user_message = "The selected model is not supported."


class ConfigError(ResearchError):
    """Missing or invalid configuration, raised at construction time."""

    code = "CONFIG_ERROR"
    retryable = False
    user_message = "Research engine is not configured. Check your environment."


class CircuitOpenError(ResearchError):
    """Raised while the circuit breaker is blocking new attempts."""

    code = "CIRCUIT_OPEN"
    retryable = False
    user_message = "Too many recent errors. Please wait a moment before trying again."


class AllProvidersFailedError(ResearchError):
    """Every provider in the fallback chain failed."""

    code = "ALL_PROVIDERS_FAILED"
    retryable = False
    user_message = "All model providers failed. Please try again later."

    def __init__(self, message: str = "", *, attempted: Optional[List[str]] = None,
                 last_error: Optional[BaseException] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.attempted = list(attempted or [])
        self.last_error = last_error


_TRANSPORT_MARKERS = ("failed to fetch", "network", "connection", "timed out", "timeout")


def normalize_error(exc: BaseException) -> BaseException:
    """Map bare transport failures onto ``NetworkError``.

    ``ResearchError`` instances pass through unchanged, as does anything that
    does not look like a transport failure.
    """
    if isinstance(exc, ResearchError):
        return exc
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return NetworkError(str(exc) or exc.__class__.__name__)
    if isinstance(exc, (OSError, TypeError)):
        text = str(exc).lower()
        if any(marker in text for marker in _TRANSPORT_MARKERS):
            return NetworkError(str(exc))
    return exc


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ResearchError) and exc.retryable


def to_user_message(exc: BaseException) -> str:
    """Short, user-facing description of a failure."""
    exc = normalize_error(exc)
    if isinstance(exc, ResearchError):
        return exc.user_message
    return f"Unexpected error: {exc}" if str(exc) else "An unexpected error occurred."
