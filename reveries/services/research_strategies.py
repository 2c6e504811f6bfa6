"""
Research strategies
-------------------
The shared research steps (``ResearchToolkit``) and the three interchangeable
strategies built from them:

- ``DirectStrategy``: sub-queries -> web research -> one synthesis (factual)
- ``EvaluatorOptimizerStrategy``: research/synthesize/evaluate loop with
  feedback folded back into the query (analytical)
- ``OrchestratorWorkerStrategy``: plan sub-topics, research them concurrently,
  synthesize from the combined findings (comparative, exploratory)
- ``ParadigmStrategy``: lens-specific queries and a structured lens report,
  used instead of the above whenever a paradigm dominates

Strategies only talk to providers through the gateway and report step
boundaries to a ``StepRecorder`` so the router can build the provenance graph.
"""

from __future__ import annotations

import asyncio
import contextlib
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Protocol, Tuple

import structlog

from reveries.core.errors import CircuitOpenError, ResearchError
from reveries.models.paradigms import (
    EVALUATED_PARADIGMS,
    PARADIGM_RESEARCH_QUERIES,
    PARADIGM_SEARCH_QUALIFIERS,
    PARADIGM_SYNTHESIS_FRAMING,
    PARADIGM_SYNTHESIS_SECTIONS,
    HostParadigm,
)
from reveries.models.research import (
    Citation,
    EffortLevel,
    Evaluation,
    QueryType,
    ResearchResult,
    ResearchSection,
    StepKind,
)
from reveries.services.cache import QueryMemory
from reveries.services.llm_client import ProviderKind
from reveries.services.progress import ProgressReporter
from reveries.services.provider_gateway import ProviderGateway
from reveries.utils.url_utils import dedupe_citations

logger = structlog.get_logger(__name__)

MAX_SEARCH_QUERIES = 3
MAX_MEMORY_HINTS = 3
MAX_REFINEMENT_LOOPS = 3
MAX_SECTIONS = 5
QUALITY_THRESHOLD = 0.7

AUTHORITATIVE_SOURCES_HINT = "site:wikipedia.org OR site:.gov OR site:.edu"


# ────────────────────────────────────────────────────────────
#  Step recording
# ────────────────────────────────────────────────────────────
class StageHandle(Protocol):
    def complete(self, content: Any = "", sources: Optional[List[Citation]] = None, **metadata: Any) -> None:
        ...


class StepRecorder(Protocol):
    """Receives step boundaries from a running strategy."""

    def stage(self, kind: StepKind, title: str, **metadata: Any) -> "contextlib.AbstractContextManager[StageHandle]":
        ...


class _DetachedStage:
    def complete(self, content: Any = "", sources: Optional[List[Citation]] = None, **metadata: Any) -> None:
        return None


@contextlib.contextmanager
def _detached_stage() -> Iterator[_DetachedStage]:
    yield _DetachedStage()


@dataclass
class ResearchContext:
    """Everything one routed query carries through a strategy."""

    query: str
    model: ProviderKind
    effort: EffortLevel = EffortLevel.MEDIUM
    query_type: QueryType = QueryType.EXPLORATORY
    paradigm: Optional[HostParadigm] = None
    recorder: Optional[StepRecorder] = None
    progress: ProgressReporter = field(default_factory=ProgressReporter)

    def stage(self, kind: StepKind, title: str, **metadata: Any):
        if self.recorder is None:
            return _detached_stage()
        return self.recorder.stage(kind, title, **metadata)


@dataclass
class WebResearchResult:
    aggregated_findings: str
    sources: List[Citation]


# ────────────────────────────────────────────────────────────
#  Prompts
# ────────────────────────────────────────────────────────────
SEARCH_QUERIES_PROMPT = """Based on the user query: "{query}", generate a short list of 2-3 concise search queries or key topics that would help in researching an answer.
{hints}
Return them as a comma-separated list. For example: query1, query2, query3"""

WEB_SEARCH_PROMPT = (
    'Perform a web search and provide a concise summary of key information found for the query: "{query}". '
    "Focus on factual information and insights. If no relevant information is found, state that clearly."
)

REFLECTION_PROMPT = """User Query: "{query}"
Current Findings: "{findings}"

Based on the current findings, briefly reflect on what has been found and what might still be needed to fully answer the user's query.
Keep the reflection concise (1-2 sentences)."""

FINAL_ANSWER_PROMPT = """User Query: "{query}"
Relevant Context & Findings: "{context}"

Based on the user query and the provided context, generate a comprehensive answer.
Cite sources within the text or provide a list where possible.
The answer should be helpful, informative, and directly address the user's query.{framing}"""

EVALUATION_PROMPT = """Evaluate this synthesis for the given query. Provide scores (0-1) and feedback.

Original Query: "{query}"
Synthesis: "{synthesis}"

Assess:
1. Completeness (0-1): Does it address all aspects of the query?
2. Accuracy (0-1): Are the facts properly cited and accurate?
3. Clarity (0-1): Is it well-organized and easy to understand?

Provide your evaluation in this format:
Completeness: [score]
Accuracy: [score]
Clarity: [score]
Overall Quality: [good/needs_improvement]
Feedback: [specific feedback if improvement needed, or "None" if good]"""

PLANNING_PROMPT = """Break down this query into 3-5 distinct sub-topics that should be researched separately.
Each sub-topic should focus on a specific aspect that contributes to the overall answer.

Query: "{query}"

Format your response as:
1. [Topic]: [Brief description]
2. [Topic]: [Brief description]
3. [Topic]: [Brief description]

Keep sub-topics focused and non-overlapping."""

PARADIGM_ANSWER_PROMPT = """Based on this research about "{query}", provide:
{sections}

Research findings: {findings}

{framing}"""

_LIST_PREFIX = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")
_SCORE_PATTERNS = {
    "completeness": re.compile(r"Completeness:\s*([0-9.]+)", re.IGNORECASE),
    "accuracy": re.compile(r"Accuracy:\s*([0-9.]+)", re.IGNORECASE),
    "clarity": re.compile(r"Clarity:\s*([0-9.]+)", re.IGNORECASE),
}
_QUALITY_PATTERN = re.compile(r"Overall Quality:\s*(good|needs_improvement)", re.IGNORECASE)
_FEEDBACK_PATTERN = re.compile(r"Feedback:\s*(.+?)(?:\n|$)", re.IGNORECASE)
_PLAN_LINE = re.compile(r"^\s*\d+\.")
_PLAN_ITEM = re.compile(r"^\s*\d+\.\s*([^:]+):\s*(.+)$")


def parse_search_queries(text: str, limit: int = MAX_SEARCH_QUERIES) -> List[str]:
    queries: List[str] = []
    for chunk in re.split(r"[,\n]", text or ""):
        cleaned = _LIST_PREFIX.sub("", chunk).strip().strip('"').strip()
        if cleaned and cleaned not in queries:
            queries.append(cleaned)
    return queries[:limit]


def _parse_score(pattern: re.Pattern, text: str) -> float:
    match = pattern.search(text)
    if not match:
        return 0.5
    try:
        return min(max(float(match.group(1)), 0.0), 1.0)
    except ValueError:
        return 0.5


def parse_evaluation(text: str) -> Evaluation:
    """Parse a structured critique; missing scores default to 0.5."""
    scores = {name: _parse_score(pattern, text) for name, pattern in _SCORE_PATTERNS.items()}
    average = sum(scores.values()) / 3

    quality_match = _QUALITY_PATTERN.search(text)
    quality = quality_match.group(1).lower() if quality_match else (
        "good" if average > QUALITY_THRESHOLD else "needs_improvement"
    )

    feedback_match = _FEEDBACK_PATTERN.search(text)
    feedback = feedback_match.group(1).strip() if feedback_match else None
    if feedback and feedback.strip('"').lower() == "none":
        feedback = None

    return Evaluation(quality=quality, feedback=feedback, **scores)


def paradigm_search_queries(query: str, paradigm: HostParadigm) -> List[str]:
    return [f"{query} {suffix}" for suffix in PARADIGM_RESEARCH_QUERIES[paradigm]]


def parse_research_plan(text: str) -> List[ResearchSection]:
    sections: List[ResearchSection] = []
    for line in (text or "").splitlines():
        if not _PLAN_LINE.match(line):
            continue
        match = _PLAN_ITEM.match(line)
        if match:
            sections.append(ResearchSection(topic=match.group(1).strip(), description=match.group(2).strip()))
        else:
            sections.append(ResearchSection(topic=re.sub(r"^\s*\d+\.\s*", "", line).strip()))
    return sections[:MAX_SECTIONS]


# ────────────────────────────────────────────────────────────
#  Shared research steps
# ────────────────────────────────────────────────────────────
class ResearchToolkit:
    """Provider-backed research primitives shared by every strategy."""

    def __init__(self, gateway: ProviderGateway, memory: Optional[QueryMemory] = None):
        self.gateway = gateway
        self.memory = memory

    async def generate_search_queries(
        self,
        query: str,
        ctx: ResearchContext,
        authoritative: bool = False,
    ) -> List[str]:
        hints = self.memory.suggestions(query)[:MAX_MEMORY_HINTS] if self.memory else []
        hint_lines = []
        if hints:
            hint_lines.append(f"Previous successful queries for similar topics: {', '.join(hints)}")
        if authoritative:
            hint_lines.append(f"Prefer authoritative sources ({AUTHORITATIVE_SOURCES_HINT}).")

        prompt = SEARCH_QUERIES_PROMPT.format(
            query=query,
            hints=("\n" + "\n".join(hint_lines) + "\n") if hint_lines else "",
        )
        response = await self.gateway.generate_text(prompt, ctx.model, ctx.effort)
        queries = parse_search_queries(response.text) or [query]

        if ctx.paradigm is not None:
            qualified = f"{query} {PARADIGM_SEARCH_QUALIFIERS[ctx.paradigm][0]}"
            queries = queries[:2] + [qualified]

        logger.debug("Search queries generated", count=len(queries), memory_hints=len(hints))
        return queries

    async def perform_web_research(self, queries: List[str], ctx: ResearchContext) -> WebResearchResult:
        if not queries:
            return WebResearchResult("No search queries were provided for web research.", [])

        parts: List[str] = []
        sources: List[Citation] = []
        for search_query in queries:
            try:
                response = await self.gateway.generate_text(
                    WEB_SEARCH_PROMPT.format(query=search_query),
                    ctx.model,
                    ctx.effort,
                    use_search=True,
                )
            except CircuitOpenError:
                raise
            except ResearchError as exc:
                logger.warning("Web research failed for query", search_query=search_query, error_code=exc.code)
                parts.append(f'Error researching "{search_query}": Information could not be retrieved.')
                continue
            parts.append(f'Research for "{search_query}":\n{response.text.strip()}')
            sources.extend(response.sources)

        findings = "\n\n".join(parts) or "Web research was attempted, but no specific information was aggregated."
        return WebResearchResult(findings, dedupe_citations(sources))

    async def perform_reflection(self, findings: str, query: str, ctx: ResearchContext) -> str:
        response = await self.gateway.generate_text(
            REFLECTION_PROMPT.format(query=query, findings=findings), ctx.model, ctx.effort
        )
        return response.text

    async def generate_final_answer(self, query: str, context: str, ctx: ResearchContext) -> Tuple[str, List[Citation]]:
        framing = ""
        if ctx.paradigm is not None:
            framing = f"\n\n{PARADIGM_SYNTHESIS_FRAMING[ctx.paradigm]}"
        response = await self.gateway.generate_text(
            FINAL_ANSWER_PROMPT.format(query=query, context=context, framing=framing), ctx.model, ctx.effort
        )
        return response.text, response.sources

    async def generate_paradigm_answer(
        self, query: str, findings: str, paradigm: HostParadigm, ctx: ResearchContext
    ) -> Tuple[str, List[Citation]]:
        sections = "\n".join(
            f"{i}. {section}" for i, section in enumerate(PARADIGM_SYNTHESIS_SECTIONS[paradigm], start=1)
        )
        prompt = PARADIGM_ANSWER_PROMPT.format(
            query=query,
            sections=sections,
            findings=findings,
            framing=PARADIGM_SYNTHESIS_FRAMING[paradigm],
        )
        response = await self.gateway.generate_text(prompt, ctx.model, ctx.effort)
        return response.text, response.sources

    async def evaluate_research(self, query: str, synthesis: str, ctx: ResearchContext) -> Evaluation:
        response = await self.gateway.generate_text(
            EVALUATION_PROMPT.format(query=query, synthesis=synthesis), ctx.model, ctx.effort
        )
        return parse_evaluation(response.text)

    async def plan_research(self, query: str, ctx: ResearchContext) -> List[ResearchSection]:
        response = await self.gateway.generate_text(PLANNING_PROMPT.format(query=query), ctx.model, ctx.effort)
        sections = parse_research_plan(response.text)
        if not sections:
            logger.info("Research plan empty, researching query as one section")
            sections = [ResearchSection(topic=query)]
        return sections

    async def research_section(self, section: ResearchSection, ctx: ResearchContext) -> ResearchSection:
        research = await self.perform_web_research([f"{section.topic}: {section.description}"], ctx)
        return section.model_copy(update={"research": research.aggregated_findings, "sources": research.sources})


# ────────────────────────────────────────────────────────────
#  Strategies
# ────────────────────────────────────────────────────────────
class ResearchStrategy(ABC):
    name: str = "base"

    def __init__(self, toolkit: ResearchToolkit):
        self.toolkit = toolkit

    @abstractmethod
    async def execute(self, ctx: ResearchContext) -> ResearchResult:
        ...

    def _result(self, ctx: ResearchContext, **fields: Any) -> ResearchResult:
        result = ResearchResult(query_type=ctx.query_type, paradigm=ctx.paradigm, **fields)
        result.adaptive_metadata.strategy = self.name
        result.adaptive_metadata.paradigm = ctx.paradigm
        return result


class DirectStrategy(ResearchStrategy):
    """Sub-queries, one research pass, one synthesis."""

    name = "direct"

    async def execute(self, ctx: ResearchContext) -> ResearchResult:
        authoritative = ctx.query_type == QueryType.FACTUAL
        with ctx.stage(StepKind.WEB_RESEARCH, "Researching the web") as stage:
            queries = await self.toolkit.generate_search_queries(ctx.query, ctx, authoritative=authoritative)
            research = await self.toolkit.perform_web_research(queries, ctx)
            stage.complete(research.aggregated_findings, research.sources, search_queries=queries)

        with ctx.stage(StepKind.SYNTHESIS, "Synthesizing answer") as stage:
            synthesis, answer_sources = await self.toolkit.generate_final_answer(
                ctx.query, research.aggregated_findings, ctx
            )
            sources = dedupe_citations([*research.sources, *answer_sources])
            stage.complete(synthesis, sources)

        return self._result(ctx, synthesis=synthesis, sources=sources, search_queries=queries)


class EvaluatorOptimizerStrategy(ResearchStrategy):
    """Research, synthesize, critique; repeat with the critique folded in."""

    name = "evaluator_optimizer"

    async def execute(self, ctx: ResearchContext) -> ResearchResult:
        query = ctx.query
        synthesis = ""
        sources: List[Citation] = []
        all_queries: List[str] = []
        evaluation: Optional[Evaluation] = None
        refinements = 0

        for loop in range(MAX_REFINEMENT_LOOPS):
            ctx.progress.report(f"Host cognitive loop {loop + 1}... analyzing narrative coherence...")

            with ctx.stage(StepKind.WEB_RESEARCH, f"Research pass {loop + 1}", iteration=loop + 1) as stage:
                queries = await self.toolkit.generate_search_queries(query, ctx)
                research = await self.toolkit.perform_web_research(queries, ctx)
                stage.complete(research.aggregated_findings, research.sources, search_queries=queries)
            all_queries.extend(q for q in queries if q not in all_queries)

            with ctx.stage(StepKind.SYNTHESIS, f"Synthesis pass {loop + 1}", iteration=loop + 1) as stage:
                synthesis, answer_sources = await self.toolkit.generate_final_answer(
                    query, research.aggregated_findings, ctx
                )
                sources = dedupe_citations([*research.sources, *answer_sources])
                stage.complete(synthesis, sources)

            with ctx.stage(StepKind.REFLECTION, f"Evaluating pass {loop + 1}", iteration=loop + 1) as stage:
                evaluation = await self.toolkit.evaluate_research(ctx.query, synthesis, ctx)
                refinements = loop + 1
                passed = evaluation.quality == "good" or evaluation.average > QUALITY_THRESHOLD
                if not passed and not evaluation.feedback:
                    evaluation.feedback = await self.toolkit.perform_reflection(
                        research.aggregated_findings, ctx.query, ctx
                    )
                stage.complete(evaluation.model_dump(), evaluation=evaluation.model_dump())

            logger.info(
                "Research pass evaluated",
                iteration=refinements,
                average=round(evaluation.average, 3),
                quality=evaluation.quality,
            )
            if passed:
                break
            if loop + 1 < MAX_REFINEMENT_LOOPS:
                ctx.progress.report("Host detected narrative inconsistencies... refining loop...")
                query = f"{ctx.query}\n\nPlease address the following improvements: {evaluation.feedback}"

        return self._result(
            ctx,
            synthesis=synthesis,
            sources=sources,
            search_queries=all_queries,
            evaluation=evaluation,
            refinement_count=refinements,
        )


class OrchestratorWorkerStrategy(ResearchStrategy):
    """Plan sub-topics, research them concurrently, synthesize once."""

    name = "orchestrator_worker"

    async def execute(self, ctx: ResearchContext) -> ResearchResult:
        ctx.progress.report("Host distributing consciousness across narrative threads...")
        with ctx.stage(StepKind.QUERY_GENERATION, "Planning research threads") as stage:
            sections = await self.toolkit.plan_research(ctx.query, ctx)
            stage.complete([s.model_dump() for s in sections], sections=[s.topic for s in sections])

        ctx.progress.report(f"Activating {len(sections)} parallel host instances...")
        with ctx.stage(StepKind.WEB_RESEARCH, f"Researching {len(sections)} threads") as stage:
            completed = await self._research_sections(sections, ctx)
            section_sources = dedupe_citations(s for section in completed for s in section.sources)
            combined = "\n\n".join(
                f"## {s.topic}\n{s.research or 'No specific findings.'}" for s in completed
            )
            stage.complete(combined, section_sources, sections=[s.topic for s in completed])

        with ctx.stage(StepKind.SYNTHESIS, "Synthesizing threads") as stage:
            synthesis, answer_sources = await self.toolkit.generate_final_answer(ctx.query, combined, ctx)
            sources = dedupe_citations([*section_sources, *answer_sources])
            stage.complete(synthesis, sources)

        search_queries = [f"{s.topic}: {s.description}" for s in completed]
        return self._result(
            ctx,
            synthesis=synthesis,
            sources=sources,
            sections=completed,
            search_queries=search_queries,
        )

    async def _research_sections(self, sections: List[ResearchSection], ctx: ResearchContext) -> List[ResearchSection]:
        tasks = [asyncio.create_task(self.toolkit.research_section(s, ctx)) for s in sections]
        try:
            return list(await asyncio.gather(*tasks))
        finally:
            # One failed worker fails the strategy; stop the rest calling providers
            pending = [t for t in tasks if not t.done()]
            for t in pending:
                t.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)


class ParadigmStrategy(ResearchStrategy):
    """Lens-specific research: fixed lens queries, one structured synthesis."""

    name = "paradigm"

    async def execute(self, ctx: ResearchContext) -> ResearchResult:
        paradigm = ctx.paradigm
        if paradigm is None:
            raise ValueError("ParadigmStrategy requires a dominant paradigm")

        ctx.progress.report(f"Initializing {paradigm.value} host consciousness...")
        with ctx.stage(StepKind.WEB_RESEARCH, f"Researching through the {paradigm.lens} lens") as stage:
            queries = paradigm_search_queries(ctx.query, paradigm)
            research = await self.toolkit.perform_web_research(queries, ctx)
            stage.complete(research.aggregated_findings, research.sources, search_queries=queries)

        with ctx.stage(StepKind.SYNTHESIS, "Synthesizing lens report") as stage:
            synthesis, answer_sources = await self.toolkit.generate_paradigm_answer(
                ctx.query, research.aggregated_findings, paradigm, ctx
            )
            sources = dedupe_citations([*research.sources, *answer_sources])
            stage.complete(synthesis, sources)

        evaluation: Optional[Evaluation] = None
        if paradigm in EVALUATED_PARADIGMS:
            with ctx.stage(StepKind.REFLECTION, "Evaluating analytical rigor") as stage:
                evaluation = await self.toolkit.evaluate_research(ctx.query, synthesis, ctx)
                stage.complete(evaluation.model_dump(), evaluation=evaluation.model_dump())

        return self._result(
            ctx,
            synthesis=synthesis,
            sources=sources,
            search_queries=queries,
            evaluation=evaluation,
        )


STRATEGIES: Dict[QueryType, type] = {
    QueryType.FACTUAL: DirectStrategy,
    QueryType.ANALYTICAL: EvaluatorOptimizerStrategy,
    QueryType.COMPARATIVE: OrchestratorWorkerStrategy,
    QueryType.EXPLORATORY: OrchestratorWorkerStrategy,
}


def select_strategy(
    query_type: QueryType,
    toolkit: ResearchToolkit,
    paradigm: Optional[HostParadigm] = None,
) -> ResearchStrategy:
    """A dominant paradigm takes precedence over the query type."""
    if paradigm is not None:
        return ParadigmStrategy(toolkit)
    return STRATEGIES[QueryType(query_type)](toolkit)
