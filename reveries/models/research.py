"""
Research-related Pydantic models
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from reveries.models.paradigms import HostParadigm


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QueryType(str, Enum):
    FACTUAL = "factual"
    ANALYTICAL = "analytical"
    COMPARATIVE = "comparative"
    EXPLORATORY = "exploratory"


class EffortLevel(str, Enum):
    """Reasoning depth requested from the provider"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class StepKind(str, Enum):
    USER_QUERY = "user_query"
    QUERY_GENERATION = "query_generation"
    WEB_RESEARCH = "web_research"
    REFLECTION = "reflection"
    SYNTHESIS = "synthesis"
    ERROR = "error"


class Citation(BaseModel):
    url: str = ""
    title: str = ""
    authors: Optional[List[str]] = None
    published_date: Optional[str] = None
    accessed_date: Optional[str] = None
    snippet: Optional[str] = None


class ResearchStep(BaseModel):
    """One observable unit of work in a research session"""

    id: str
    kind: StepKind
    title: str
    content: Union[str, Dict[str, Any], List[Any]] = ""
    sources: List[Citation] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)
    is_pending: bool = False


class Evaluation(BaseModel):
    completeness: float = 0.5
    accuracy: float = 0.5
    clarity: float = 0.5
    quality: Literal["good", "needs_improvement"] = "needs_improvement"
    feedback: Optional[str] = None

    @property
    def average(self) -> float:
        return (self.completeness + self.accuracy + self.clarity) / 3


class ResearchSection(BaseModel):
    topic: str
    description: str = "Research this topic in detail"
    research: Optional[str] = None
    sources: List[Citation] = Field(default_factory=list)


class AdaptiveMetadata(BaseModel):
    cache_hit: bool = False
    learned_patterns: bool = False
    processing_time: float = 0.0  # seconds
    complexity_score: Optional[float] = None
    strategy: Optional[str] = None
    paradigm: Optional[HostParadigm] = None
    paradigm_probabilities: Dict[str, float] = Field(default_factory=dict)
    focus_areas: List[str] = Field(default_factory=list)
    self_healed: bool = False
    healing_strategy: Optional[Literal["broader_search", "enhanced_detail"]] = None


class ResearchResult(BaseModel):
    synthesis: str = ""
    sources: List[Citation] = Field(default_factory=list)
    query_type: QueryType = QueryType.EXPLORATORY
    paradigm: Optional[HostParadigm] = None
    sections: List[ResearchSection] = Field(default_factory=list)
    search_queries: List[str] = Field(default_factory=list)
    evaluation: Optional[Evaluation] = None
    refinement_count: int = 0
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    adaptive_metadata: AdaptiveMetadata = Field(default_factory=AdaptiveMetadata)
