"""
LLM provider adapters
---------------------
Uniform ``generate(prompt, use_search, effort)`` interface over the supported
model providers. Gemini, Grok and Azure o3 all expose OpenAI-compatible
endpoints, so one ``AsyncOpenAI``-backed adapter serves every provider.
Adapters know nothing about research semantics; provider SDK errors are
translated into the engine's error kinds here.
"""

from __future__ import annotations

import asyncio
import re
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

import openai
import structlog
from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from reveries.core.config import EngineSettings, ProviderCredentials
from reveries.core.errors import (
    AuthError,
    ConfigError,
    EmptyResponseError,
    NetworkError,
    RateLimitError,
    ResearchError,
    UnsupportedModelError,
)
from reveries.models.research import Citation, EffortLevel

# ────────────────────────────────────────────────────────────
#  Logging
# ────────────────────────────────────────────────────────────
logger = structlog.get_logger(__name__)


# ────────────────────────────────────────────────────────────
#  Provider catalogue
# ────────────────────────────────────────────────────────────
class ProviderKind(str, Enum):
    """Closed set of supported providers"""

    GEMINI = "gemini"
    GROK = "grok"
    AZURE_O3 = "azure_o3"

    @property
    def default_model(self) -> str:
        return _DEFAULT_MODELS[self]

    @classmethod
    def from_model(cls, model: Union[str, "ProviderKind"]) -> "ProviderKind":
        """Resolve a provider from a kind name or a model id."""
        if isinstance(model, ProviderKind):
            return model
        key = str(model or "").strip().lower()
        if key in _MODEL_ALIASES:
            return _MODEL_ALIASES[key]
        for prefix, kind in (("gemini", cls.GEMINI), ("grok", cls.GROK), ("o3", cls.AZURE_O3)):
            if key.startswith(prefix):
                return kind
        raise UnsupportedModelError(f"Unsupported model: {model}")


_DEFAULT_MODELS: Dict[ProviderKind, str] = {
    ProviderKind.GEMINI: "gemini-2.5-flash",
    ProviderKind.GROK: "grok-4",
    ProviderKind.AZURE_O3: "o3",
}

_MODEL_ALIASES: Dict[str, ProviderKind] = {
    **{kind.value: kind for kind in ProviderKind},
    **{model: kind for kind, model in _DEFAULT_MODELS.items()},
    "azure-o3": ProviderKind.AZURE_O3,
    "azure": ProviderKind.AZURE_O3,
}

# Fixed fallback order when the preferred provider fails non-retryably
FALLBACK_ORDER: Dict[ProviderKind, List[ProviderKind]] = {
    ProviderKind.AZURE_O3: [ProviderKind.GROK, ProviderKind.GEMINI],
    ProviderKind.GROK: [ProviderKind.GEMINI],
    ProviderKind.GEMINI: [ProviderKind.AZURE_O3, ProviderKind.GROK],
}


class ProviderResponse(BaseModel):
    text: str
    sources: List[Citation] = Field(default_factory=list)


# ────────────────────────────────────────────────────────────
#  Helper Functions
# ────────────────────────────────────────────────────────────
_MARKDOWN_LINK = re.compile(r"\[([^\]]+)\]\((https?://[^\s)]+)\)")
_BARE_URL = re.compile(r"(?<![\(\[])\bhttps?://[^\s<>\")\]]+")


def extract_citations_from_text(text: str) -> List[Citation]:
    """Pull markdown links and bare URLs out of generated text."""
    citations: List[Citation] = []
    seen = set()
    for title, url in _MARKDOWN_LINK.findall(text or ""):
        if url not in seen:
            seen.add(url)
            citations.append(Citation(url=url, title=title.strip()))
    for url in _BARE_URL.findall(text or ""):
        url = url.rstrip(".,;:")
        if url not in seen:
            seen.add(url)
            citations.append(Citation(url=url, title=url))
    return citations


def _coerce_citation(item: Any) -> Optional[Citation]:
    if isinstance(item, str):
        return Citation(url=item, title=item)
    if isinstance(item, dict):
        url = item.get("url") or item.get("uri") or ""
        if not url and not item.get("title"):
            return None
        return Citation(
            url=url,
            title=item.get("title") or url,
            snippet=item.get("snippet"),
            published_date=item.get("published_date"),
        )
    url = getattr(item, "url", None)
    if url:
        return Citation(url=url, title=getattr(item, "title", None) or url)
    return None


def extract_response_citations(response: Any, text: str) -> List[Citation]:
    """Citations from provider metadata, falling back to URLs in the text."""
    raw: List[Any] = []

    # xAI returns a top-level ``citations`` list of URLs
    extra = getattr(response, "model_extra", None) or {}
    raw.extend(getattr(response, "citations", None) or extra.get("citations") or [])

    # OpenAI-style url_citation annotations on the message
    try:
        message = response.choices[0].message
        for ann in getattr(message, "annotations", None) or []:
            citation = getattr(ann, "url_citation", None)
            if citation is not None:
                raw.append(citation)
    except (AttributeError, IndexError):
        pass

    citations = [c for c in (_coerce_citation(item) for item in raw) if c is not None]
    return citations or extract_citations_from_text(text)


def _retry_after_seconds(exc: openai.APIStatusError) -> Optional[float]:
    try:
        value = exc.response.headers.get("retry-after")
        return float(value) if value else None
    except (AttributeError, ValueError):
        return None


def translate_openai_error(exc: Exception, provider: str) -> ResearchError:
    """Map openai SDK exceptions onto engine error kinds."""
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return AuthError(str(exc), provider=provider, status_code=getattr(exc, "status_code", None))
    if isinstance(exc, openai.RateLimitError):
        return RateLimitError(
            str(exc), provider=provider, status_code=429, retry_after=_retry_after_seconds(exc)
        )
    if isinstance(exc, openai.APITimeoutError):
        return NetworkError(str(exc), code="TIMEOUT", provider=provider)
    if isinstance(exc, openai.APIConnectionError):
        return NetworkError(str(exc), provider=provider)
    if isinstance(exc, openai.NotFoundError):
        return UnsupportedModelError(str(exc), provider=provider, status_code=404)
    if isinstance(exc, openai.APIStatusError):
        status = exc.status_code
        if status >= 500:
            return NetworkError(str(exc), code="PROVIDER_UNAVAILABLE", provider=provider, status_code=status)
        return ResearchError(str(exc), code="PROVIDER_ERROR", retryable=False, provider=provider,
                             status_code=status)
    return ResearchError(str(exc), code="PROVIDER_ERROR", retryable=False, provider=provider)


# ────────────────────────────────────────────────────────────
#  Adapter contract
# ────────────────────────────────────────────────────────────
class ProviderAdapter(ABC):
    """Uniform interface to one model provider."""

    kind: ProviderKind
    model: str

    def is_available(self) -> bool:
        return True

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        use_search: bool = False,
        effort: EffortLevel = EffortLevel.MEDIUM,
    ) -> ProviderResponse:
        """Return generated text plus any citations the provider reported."""


class OpenAICompatibleProvider(ProviderAdapter):
    """Adapter for any provider served through an OpenAI-compatible API."""

    def __init__(
        self,
        kind: ProviderKind,
        client: AsyncOpenAI,
        *,
        model: Optional[str] = None,
        timeout: float = 120.0,
        supports_reasoning_effort: bool = False,
        supports_live_search: bool = False,
    ):
        self.kind = kind
        self.model = model or kind.default_model
        self._client = client
        self.timeout = timeout
        self.supports_reasoning_effort = supports_reasoning_effort
        self.supports_live_search = supports_live_search

    def _build_request(self, prompt: str, use_search: bool, effort: EffortLevel) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
        }
        if self.supports_reasoning_effort:
            request["reasoning_effort"] = EffortLevel(effort).value
        if use_search and self.supports_live_search:
            request["extra_body"] = {
                "search_parameters": {"mode": "auto", "return_citations": True}
            }
        return request

    async def generate(
        self,
        prompt: str,
        *,
        use_search: bool = False,
        effort: EffortLevel = EffortLevel.MEDIUM,
    ) -> ProviderResponse:
        request = self._build_request(prompt, use_search, effort)
        logger.debug(
            "Sending request to provider",
            provider=self.kind.value,
            model=self.model,
            use_search=use_search,
            prompt_chars=len(prompt),
        )
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(**request),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise NetworkError(
                f"{self.kind.value} call exceeded {self.timeout:.0f}s deadline",
                code="TIMEOUT",
                provider=self.kind.value,
            ) from exc
        except openai.OpenAIError as exc:
            raise translate_openai_error(exc, self.kind.value) from exc

        text = ""
        if getattr(response, "choices", None):
            text = (response.choices[0].message.content or "").strip()
        if not text:
            logger.warning("Empty response received from provider", provider=self.kind.value)
            raise EmptyResponseError(f"{self.kind.value} returned no content", provider=self.kind.value)

        sources = extract_response_citations(response, text)
        logger.info(
            "Completion received",
            provider=self.kind.value,
            model=self.model,
            response_length=len(text),
            sources=len(sources),
        )
        return ProviderResponse(text=text, sources=sources)


# ────────────────────────────────────────────────────────────
#  Factories
# ────────────────────────────────────────────────────────────
def build_provider(kind: ProviderKind, credentials: ProviderCredentials, timeout: float = 120.0) -> OpenAICompatibleProvider:
    """Construct one provider adapter; raises ``ConfigError`` if credentials are missing."""
    if kind is ProviderKind.GEMINI:
        if not credentials.gemini_api_key:
            raise ConfigError("GEMINI_API_KEY is not set", provider=kind.value)
        client = AsyncOpenAI(api_key=credentials.gemini_api_key, base_url=credentials.gemini_base_url,
                             timeout=timeout)
        return OpenAICompatibleProvider(kind, client, timeout=timeout, supports_reasoning_effort=True)

    if kind is ProviderKind.GROK:
        if not credentials.xai_api_key:
            raise ConfigError("XAI_API_KEY is not set", provider=kind.value)
        client = AsyncOpenAI(api_key=credentials.xai_api_key, base_url=credentials.xai_base_url,
                             timeout=timeout)
        return OpenAICompatibleProvider(kind, client, timeout=timeout, supports_live_search=True)

    if not credentials.azure_configured:
        raise ConfigError("AZURE_OPENAI_API_KEY and AZURE_OPENAI_ENDPOINT must be set", provider=kind.value)
    # OpenAI v1-compatible path on the Azure resource
    azure_base = f"{credentials.azure_endpoint.rstrip('/')}/openai/v1"
    default_query = {"api-version": credentials.azure_api_version} if credentials.azure_api_version else None
    client = AsyncOpenAI(api_key=credentials.azure_api_key, base_url=azure_base, timeout=timeout,
                         default_query=default_query)
    return OpenAICompatibleProvider(
        kind,
        client,
        model=credentials.azure_deployment or kind.default_model,
        timeout=timeout,
        supports_reasoning_effort=True,
    )


class ProviderRegistry:
    """Configured providers plus the fixed fallback order between them."""

    def __init__(self, providers: Iterable[ProviderAdapter]):
        self._providers: Dict[ProviderKind, ProviderAdapter] = {p.kind: p for p in providers}
        if not self._providers:
            raise ConfigError(
                "No LLM provider configured. Set GEMINI_API_KEY, XAI_API_KEY or AZURE_OPENAI_* variables."
            )

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> "ProviderRegistry":
        providers: List[ProviderAdapter] = []
        for kind in ProviderKind:
            try:
                providers.append(build_provider(kind, settings.credentials, settings.provider_timeout))
            except ConfigError as exc:
                logger.info("Provider not configured", provider=kind.value, reason=exc.message)
                continue
            logger.info("✓ Provider initialized", provider=kind.value)
        return cls(providers)

    @property
    def kinds(self) -> List[ProviderKind]:
        return list(self._providers)

    def get(self, kind: ProviderKind) -> Optional[ProviderAdapter]:
        return self._providers.get(kind)

    def is_available(self, kind: ProviderKind) -> bool:
        provider = self._providers.get(kind)
        return provider is not None and provider.is_available()

    def fallback_chain(self, preferred: ProviderKind) -> List[ProviderKind]:
        """Preferred provider followed by its available fallbacks, no repeats."""
        chain: List[ProviderKind] = []
        for kind in [preferred, *FALLBACK_ORDER.get(preferred, [])]:
            if kind not in chain and self.is_available(kind):
                chain.append(kind)
        return chain
