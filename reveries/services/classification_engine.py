"""
Query classification
--------------------
Two independent classifications drive routing:

- ``QueryClassifier`` asks the provider which of the four query types a
  query belongs to (one round-trip against a fixed few-shot prompt).
- ``ParadigmClassifier`` scores the query against the host lenses with
  weighted keyword families. It is pure and makes no provider call.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

import structlog

from reveries.core.config import PARADIGM_DOMINANCE_THRESHOLD
from reveries.models.paradigms import (
    PARADIGM_INTENT_BONUSES,
    PARADIGM_KEYWORD_FAMILIES,
    QUERY_TYPE_AFFINITY,
    QUERY_TYPE_AFFINITY_BONUS,
    HostParadigm,
)
from reveries.models.research import EffortLevel, QueryType

logger = structlog.get_logger(__name__)


CLASSIFICATION_PROMPT = """Analyze this query and classify it into ONE of these categories:

1. "factual" - Seeking specific facts, data, or verifiable information
2. "analytical" - Requires analysis, interpretation, or deep understanding
3. "comparative" - Comparing multiple concepts, items, or alternatives
4. "exploratory" - Open-ended exploration of a broad topic

Examples:
- "What is the population of Tokyo?" -> factual
- "How does climate change affect marine ecosystems?" -> analytical
- "Compare React vs Vue.js for enterprise applications" -> comparative
- "Tell me about artificial intelligence" -> exploratory

Query: "{query}"

Consider the intent and complexity. Return only the category name (factual/analytical/comparative/exploratory)."""


def parse_query_type(text: str) -> QueryType:
    """Map raw provider output onto a query type; anything unclear is exploratory."""
    cleaned = re.sub(r"[^a-z\s]", " ", (text or "").lower()).split()
    if len(cleaned) == 1:
        try:
            return QueryType(cleaned[0])
        except ValueError:
            return QueryType.EXPLORATORY
    found = {word for word in cleaned if word in QueryType._value2member_map_}
    if len(found) == 1:
        return QueryType(found.pop())
    return QueryType.EXPLORATORY


class QueryClassifier:
    """Provider-backed query type classification."""

    def __init__(self, gateway):
        self.gateway = gateway

    async def classify(
        self,
        query: str,
        model,
        effort: Union[str, EffortLevel] = EffortLevel.MEDIUM,
    ) -> QueryType:
        response = await self.gateway.generate_text(
            CLASSIFICATION_PROMPT.format(query=query), model, effort
        )
        query_type = parse_query_type(response.text)
        logger.info("Query classified", query_type=query_type.value, raw=response.text[:40])
        return query_type


@dataclass
class ParadigmScores:
    probabilities: Dict[HostParadigm, float]
    raw_scores: Dict[HostParadigm, float] = field(default_factory=dict)
    dominant: Optional[HostParadigm] = None

    def as_dict(self) -> Dict[str, float]:
        return {p.value: score for p, score in self.probabilities.items()}


class ParadigmClassifier:
    """Keyword-scored host lens selection."""

    BASE_SCORE = 0.25

    def __init__(self, threshold: float = PARADIGM_DOMINANCE_THRESHOLD):
        self.threshold = threshold
        self._families = {
            paradigm: [(re.compile(pattern), weight) for pattern, weight in families]
            for paradigm, families in PARADIGM_KEYWORD_FAMILIES.items()
        }
        self._bonuses = [
            (re.compile(pattern), paradigm, bonus)
            for pattern, paradigm, bonus in PARADIGM_INTENT_BONUSES
        ]

    def raw_scores(self, query: str, query_type: Optional[QueryType] = None) -> Dict[HostParadigm, float]:
        text = (query or "").lower()
        scores = {paradigm: self.BASE_SCORE for paradigm in HostParadigm}

        for paradigm, families in self._families.items():
            for pattern, weight in families:
                matches = len(pattern.findall(text))
                scores[paradigm] += matches * weight

        for pattern, paradigm, bonus in self._bonuses:
            if pattern.search(text):
                scores[paradigm] += bonus

        if query_type is not None:
            affinity = QUERY_TYPE_AFFINITY.get(QueryType(query_type).value)
            if affinity is not None:
                scores[affinity] += QUERY_TYPE_AFFINITY_BONUS

        return scores

    def distribution(self, query: str, query_type: Optional[QueryType] = None) -> ParadigmScores:
        scores = self.raw_scores(query, query_type)
        total = sum(scores.values())
        probabilities = {p: round(score / total, 3) for p, score in scores.items()}
        return ParadigmScores(
            probabilities=probabilities,
            raw_scores=scores,
            dominant=self.dominant(probabilities),
        )

    def dominant(self, probabilities: Dict[HostParadigm, float]) -> Optional[HostParadigm]:
        """Highest-probability lens if it clears the threshold, else None."""
        paradigm, probability = max(probabilities.items(), key=lambda item: item[1])
        return paradigm if probability > self.threshold else None

    def determine_paradigm(self, query: str, query_type: Optional[QueryType] = None) -> Optional[HostParadigm]:
        return self.distribution(query, query_type).dominant


_TYPE_COMPLEXITY: Dict[QueryType, float] = {
    QueryType.FACTUAL: 0.1,
    QueryType.ANALYTICAL: 0.4,
    QueryType.COMPARATIVE: 0.3,
    QueryType.EXPLORATORY: 0.2,
}

_COMPLEXITY_INDICATORS = (
    "compare", "analyze", "evaluate", "explain why", "how does",
    "relationship between", "impact of", "pros and cons",
)


def calculate_complexity_score(query: str, query_type: QueryType) -> float:
    """Heuristic query complexity in [0, 1]."""
    complexity = 0.3
    complexity += min(len((query or "").split()) / 100, 0.3)
    complexity += _TYPE_COMPLEXITY.get(QueryType(query_type), 0.2)
    lowered = (query or "").lower()
    complexity += sum(0.1 for indicator in _COMPLEXITY_INDICATORS if indicator in lowered)
    return round(min(max(complexity, 0.0), 1.0), 3)
