"""
Research Router
Routes one user query through cache, classification, strategy, self-healing,
memory learning and provenance recording
"""

# Standard library imports
import contextlib
import time
import uuid
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

# Third-party imports
import structlog

# Local imports - core
from reveries.core.config import EngineSettings
from reveries.core.errors import ConfigError, ResearchError, to_user_message
from reveries.logging_config import bind_research_context, clear_research_context

# Local imports - models
from reveries.models.paradigms import PARADIGM_FOCUS_AREAS, PARADIGM_MESSAGES, ROUTING_MESSAGES
from reveries.models.research import Citation, EffortLevel, ResearchResult, ResearchStep, StepKind

# Local imports - services
from reveries.services.cache import QueryMemory, ResearchCache
from reveries.services.classification_engine import (
    ParadigmClassifier,
    QueryClassifier,
    calculate_complexity_score,
)
from reveries.services.export_service import ExportFormat, ExportOptions, ExportResult, ExportService
from reveries.services.llm_client import ProviderKind, ProviderRegistry
from reveries.services.progress import ProgressCallback, ProgressReporter
from reveries.services.provider_gateway import ProviderGateway
from reveries.services.rate_limiter import AdmissionController
from reveries.services.research_graph import ResearchGraphManager
from reveries.services.research_strategies import ResearchContext, ResearchToolkit, select_strategy
from reveries.services.self_healing_system import SelfHealingAuditor

# Local imports - utilities
from reveries.utils.circuit_breaker import CircuitBreaker
from reveries.utils.retry import RetryConfig

logger = structlog.get_logger(__name__)

CACHE_HIT_MESSAGE = "Host accessing existing memories... narrative thread recovered..."
ANALYZING_MESSAGE = "Host analyzing guest query pattern... selecting appropriate narrative loop..."


class _Stage:
    """Open step; becomes a graph node when completed."""

    def __init__(self, session: "ResearchSession", kind: StepKind, title: str, metadata: Dict[str, Any]):
        self._session = session
        self.kind = kind
        self.title = title
        self.metadata = metadata
        self.started_at = session.clock()
        self.node_id: Optional[str] = None

    def complete(self, content: Any = "", sources: Optional[List[Citation]] = None, **metadata: Any) -> None:
        if self.node_id is not None:
            return
        self.node_id = self._session.record(
            self.kind,
            self.title,
            content,
            sources,
            started_at=self.started_at,
            **{**self.metadata, **metadata},
        )


class ResearchSession:
    """Records research steps of one session into the provenance graph."""

    def __init__(self, graph: ResearchGraphManager, clock: Callable[[], float]):
        self.graph = graph
        self.clock = clock
        self.base_metadata: Dict[str, Any] = {}

    def begin(self, model: ProviderKind, effort: EffortLevel) -> None:
        self.base_metadata = {"model": model.value, "effort": EffortLevel(effort).value}

    def clear(self) -> None:
        self.base_metadata = {}

    def record(
        self,
        kind: StepKind,
        title: str,
        content: Any = "",
        sources: Optional[List[Citation]] = None,
        started_at: Optional[float] = None,
        **metadata: Any,
    ) -> str:
        step = ResearchStep(id=uuid.uuid4().hex[:12], kind=kind, title=title, content=content,
                            sources=list(sources or []))
        parent = self.graph.get_last_successful_node()
        node = self.graph.add_node(
            step,
            parent_id=parent.id if parent else None,
            metadata={**self.base_metadata, **metadata},
        )
        self.graph.update_node_duration(node.id, started_at)
        return node.id

    @contextlib.contextmanager
    def stage(self, kind: StepKind, title: str, **metadata: Any) -> Iterator[_Stage]:
        handle = _Stage(self, kind, title, metadata)
        yield handle
        # A stage left without an explicit completion still records its step
        handle.complete()

    def record_error(self, error: BaseException) -> str:
        message = to_user_message(error)
        node_id = self.record(
            StepKind.ERROR,
            "Error",
            message,
            error_code=getattr(error, "code", None),
            provider=getattr(error, "provider", None),
        )
        self.graph.mark_node_error(node_id, str(error) or message)
        return node_id

    def annotate_last(self, **metadata: Any) -> None:
        node = self.graph.get_last_successful_node()
        if node is not None:
            self.graph.update_node_metadata(node.id, metadata)


class ResearchRouter:
    """
    Entry point for research queries. Owns the session graph and holds the
    process-wide services (gateway, cache, memory) it was constructed with.
    """

    def __init__(
        self,
        gateway: ProviderGateway,
        cache: Optional[ResearchCache] = None,
        memory: Optional[QueryMemory] = None,
        auditor: Optional[SelfHealingAuditor] = None,
        query_classifier: Optional[QueryClassifier] = None,
        paradigm_classifier: Optional[ParadigmClassifier] = None,
        settings: Optional[EngineSettings] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.settings = settings or EngineSettings()
        self.gateway = gateway
        self.cache = cache or ResearchCache(ttl=self.settings.cache_ttl_seconds)
        self.memory = memory or QueryMemory(ttl=self.settings.memory_ttl_seconds)
        self.auditor = auditor or SelfHealingAuditor()
        self.query_classifier = query_classifier or QueryClassifier(gateway)
        self.paradigm_classifier = paradigm_classifier or ParadigmClassifier()
        self.toolkit = ResearchToolkit(gateway, self.memory)
        self.export_service = ExportService()
        self._clock = clock or time.time

        self.session_id = uuid.uuid4().hex
        self.graph = ResearchGraphManager(clock=self._clock)
        self.session = ResearchSession(self.graph, self._clock)
        self.last_query: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Optional[EngineSettings] = None) -> "ResearchRouter":
        """Build the process-wide services once from settings (env by default)."""
        settings = settings or EngineSettings.from_env()
        registry = ProviderRegistry.from_settings(settings)
        breaker = CircuitBreaker(
            max_errors=settings.circuit_max_errors,
            window_seconds=settings.circuit_window_seconds,
        )
        gateway = ProviderGateway(
            registry,
            AdmissionController.from_settings(settings),
            breaker,
            RetryConfig.from_settings(settings),
        )
        router = cls(gateway, settings=settings)
        logger.info(
            "✓ Research router initialized",
            providers=[kind.value for kind in registry.kinds],
            concurrency_limit=settings.concurrency_limit,
        )
        return router

    # ──────────────────────────────────────────────
    #  Session lifecycle
    # ──────────────────────────────────────────────

    def reset_session(self) -> None:
        self.graph.reset()
        self.session_id = uuid.uuid4().hex
        self.last_query = None
        logger.info("Research session reset", session_id=self.session_id)

    def set_concurrency_limit(self, limit: int) -> None:
        self.gateway.admission.queue.set_concurrency_limit(limit)

    # ──────────────────────────────────────────────
    #  Routing
    # ──────────────────────────────────────────────

    async def route_research_query(
        self,
        query: str,
        model: Union[str, ProviderKind, None] = None,
        effort: Union[str, EffortLevel, None] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ResearchResult:
        progress = ProgressReporter(on_progress)
        started = self._clock()

        bind_research_context(session_id=self.session_id, research_id=uuid.uuid4().hex[:12])
        self.last_query = query
        self.session.clear()
        query_node_id = self.session.record(StepKind.USER_QUERY, query, query)

        try:
            model_kind = ProviderKind.from_model(model or self.settings.default_model)
            try:
                effort_level = EffortLevel(effort or self.settings.default_effort)
            except ValueError:
                raise ConfigError(f"Invalid effort level '{effort}'") from None
            self.session.begin(model_kind, effort_level)
            self.graph.update_node_metadata(query_node_id, self.session.base_metadata)

            cached = self.cache.get(query)
            if cached is not None:
                return self._serve_cached(cached, progress, started)

            learned = bool(self.memory.suggestions(query))

            progress.report(ANALYZING_MESSAGE)
            query_type = await self.query_classifier.classify(query, model_kind, effort_level)
            scores = self.paradigm_classifier.distribution(query, query_type)
            paradigm = scores.dominant
            progress.report(ROUTING_MESSAGES[query_type.value])
            if paradigm is not None:
                progress.report(PARADIGM_MESSAGES[paradigm])

            ctx = ResearchContext(
                query=query,
                model=model_kind,
                effort=effort_level,
                query_type=query_type,
                paradigm=paradigm,
                recorder=self.session,
                progress=progress,
            )
            strategy = select_strategy(
                query_type, self.toolkit, paradigm if self.settings.paradigm_routing else None
            )
            logger.info(
                "Routing research query",
                query_type=query_type.value,
                strategy=strategy.name,
                paradigm=paradigm.value if paradigm else None,
            )

            result = await strategy.execute(ctx)
            result = await self.auditor.heal(ctx, result, self.toolkit)

            meta = result.adaptive_metadata
            meta.cache_hit = False
            meta.learned_patterns = learned
            meta.complexity_score = calculate_complexity_score(query, query_type)
            meta.paradigm = paradigm
            meta.paradigm_probabilities = scores.as_dict()
            meta.focus_areas = list(PARADIGM_FOCUS_AREAS[paradigm]) if paradigm else []
            meta.processing_time = self._clock() - started

            self.memory.learn(query, query_type, result.search_queries)
            self.cache.set(query, result)
            self.session.annotate_last(
                query_type=query_type.value,
                paradigm=paradigm.value if paradigm else None,
                confidence_score=result.confidence_score,
                self_healed=meta.self_healed,
                healing_strategy=meta.healing_strategy,
            )
            logger.info(
                "Research query completed",
                confidence=round(result.confidence_score, 3),
                sources=len(result.sources),
                self_healed=meta.self_healed,
                processing_time=round(meta.processing_time, 3),
            )
            return result

        except ResearchError as exc:
            self.session.record_error(exc)
            progress.report(to_user_message(exc))
            logger.error("Research query failed", error_code=exc.code, error=str(exc))
            raise
        except Exception as exc:
            self.session.record_error(exc)
            progress.report(to_user_message(exc))
            logger.exception("Research query failed unexpectedly")
            raise
        finally:
            clear_research_context()

    def _serve_cached(self, cached: ResearchResult, progress: ProgressReporter, started: float) -> ResearchResult:
        progress.report(CACHE_HIT_MESSAGE)
        cached.adaptive_metadata.cache_hit = True
        cached.adaptive_metadata.processing_time = self._clock() - started
        self.session.record(
            StepKind.SYNTHESIS,
            "Recovered from cache",
            cached.synthesis,
            cached.sources,
            cached=True,
            query_type=cached.query_type.value,
            paradigm=cached.paradigm.value if cached.paradigm else None,
            confidence_score=cached.confidence_score,
        )
        logger.info("Serving cached research result", sources=len(cached.sources))
        return cached

    # ──────────────────────────────────────────────
    #  Export and stats
    # ──────────────────────────────────────────────

    def get_export_data(self, query: Optional[str] = None) -> Dict[str, Any]:
        return self.graph.get_export_data(query or self.last_query or "", self.session_id)

    async def export(
        self,
        format: Union[str, ExportFormat] = ExportFormat.JSON,
        query: Optional[str] = None,
        options: Optional[ExportOptions] = None,
    ) -> ExportResult:
        options = options or ExportOptions(format=ExportFormat(format))
        return await self.export_service.export_research(self.get_export_data(query), options)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "graph": self.graph.get_statistics(),
            "cache": self.cache.get_stats(),
            "memory_entries": len(self.memory),
            "gateway": self.gateway.get_stats(),
        }
