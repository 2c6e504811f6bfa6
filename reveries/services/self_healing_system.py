"""
Self-Healing Auditor for the research engine
Scores result confidence and runs one-shot remediation on weak results
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Deque, Optional

import structlog

from reveries.core.config import HEALING_CONFIDENCE_THRESHOLD
from reveries.models.research import ResearchResult, StepKind
from reveries.utils.url_utils import dedupe_citations

logger = structlog.get_logger(__name__)

# Synthesis length considered well-formed, in characters
SANE_SYNTHESIS_MIN = 200
SANE_SYNTHESIS_MAX = 5000
# Below this a synthesis is too brief to stand on its own
BRIEF_SYNTHESIS_CHARS = 100

BROADER_SEARCH_SUFFIX = "overview summary general information"

ENHANCED_DETAIL_PROMPT = (
    'Expand and provide more comprehensive details for: "{query}"\n\n'
    "Current brief answer: {synthesis}\n\n"
    "Provide a more thorough and detailed response."
)


@dataclass
class HealingRecord:
    """Outcome of one remediation attempt"""
    query: str
    strategy: Optional[str]
    confidence_before: float
    confidence_after: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SelfHealingAuditor:
    """
    Computes ``confidence_score`` for a result and, when it is weak, applies
    exactly one remediation before scoring again. Healing never recurses.
    """

    def __init__(self, threshold: float = HEALING_CONFIDENCE_THRESHOLD, history_size: int = 100):
        self.threshold = threshold
        self.history: Deque[HealingRecord] = deque(maxlen=history_size)

    def confidence_score(self, result: ResearchResult) -> float:
        score = 0.5

        if result.evaluation is not None:
            # Signed: a poor critique lowers confidence as much as a good one raises it
            score += (result.evaluation.average - 0.5) * 0.6

        score += min(len(result.sources) / 10, 1.0) * 0.2

        if SANE_SYNTHESIS_MIN <= len(result.synthesis) <= SANE_SYNTHESIS_MAX:
            score += 0.1

        if result.refinement_count > 1:
            score += min((result.refinement_count - 1) * 0.05, 0.15)

        return min(max(score, 0.0), 1.0)

    def needs_healing(self, result: ResearchResult, score: Optional[float] = None) -> bool:
        if score is None:
            score = self.confidence_score(result)
        return score < self.threshold or not result.sources

    async def heal(self, ctx, result: ResearchResult, toolkit) -> ResearchResult:
        """Remediate once if needed; always returns a result with a fresh confidence score."""
        before = self.confidence_score(result)
        result.confidence_score = before
        if not self.needs_healing(result, before):
            return result

        ctx.progress.report("Host detecting narrative inconsistencies... initiating self-repair protocols...")

        if not result.sources:
            healed = await self._broader_search(ctx, result, toolkit)
        elif len(result.synthesis) < BRIEF_SYNTHESIS_CHARS:
            healed = await self._enhanced_detail(ctx, result, toolkit)
        else:
            logger.info("Low confidence result has no applicable remediation", confidence=round(before, 3))
            return result

        healed.confidence_score = self.confidence_score(healed)
        self.history.append(HealingRecord(
            query=ctx.query,
            strategy=healed.adaptive_metadata.healing_strategy,
            confidence_before=before,
            confidence_after=healed.confidence_score,
        ))
        logger.info(
            "Self-healing applied",
            strategy=healed.adaptive_metadata.healing_strategy,
            confidence_before=round(before, 3),
            confidence_after=round(healed.confidence_score, 3),
        )
        return healed

    async def _broader_search(self, ctx, result: ResearchResult, toolkit) -> ResearchResult:
        broad_query = f"{ctx.query} {BROADER_SEARCH_SUFFIX}"
        with ctx.stage(StepKind.WEB_RESEARCH, "Broadening search", self_healing=True) as stage:
            queries = await toolkit.generate_search_queries(broad_query, ctx)
            research = await toolkit.perform_web_research(queries, ctx)
            stage.complete(research.aggregated_findings, research.sources, search_queries=queries)

        with ctx.stage(StepKind.SYNTHESIS, "Re-synthesizing answer", self_healing=True) as stage:
            synthesis, answer_sources = await toolkit.generate_final_answer(
                ctx.query, research.aggregated_findings, ctx
            )
            sources = dedupe_citations([*research.sources, *answer_sources])
            stage.complete(synthesis, sources)

        healed = result.model_copy(deep=True)
        healed.synthesis = synthesis
        healed.sources = sources
        healed.search_queries = [*result.search_queries, *(q for q in queries if q not in result.search_queries)]
        healed.adaptive_metadata.self_healed = True
        healed.adaptive_metadata.healing_strategy = "broader_search"
        return healed

    async def _enhanced_detail(self, ctx, result: ResearchResult, toolkit) -> ResearchResult:
        prompt = ENHANCED_DETAIL_PROMPT.format(query=ctx.query, synthesis=result.synthesis)
        with ctx.stage(StepKind.SYNTHESIS, "Expanding answer", self_healing=True) as stage:
            response = await toolkit.gateway.generate_text(prompt, ctx.model, ctx.effort)
            sources = dedupe_citations([*result.sources, *response.sources])
            stage.complete(response.text, sources)

        healed = result.model_copy(deep=True)
        healed.synthesis = response.text
        healed.sources = sources
        healed.adaptive_metadata.self_healed = True
        healed.adaptive_metadata.healing_strategy = "enhanced_detail"
        return healed
