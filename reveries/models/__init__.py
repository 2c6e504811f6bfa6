"""
Models package for the research engine
"""

from reveries.models.paradigms import (
    HostParadigm,
    PARADIGM_LENSES,
    normalize_to_enum,
)
from reveries.models.research import (
    AdaptiveMetadata,
    Citation,
    EffortLevel,
    Evaluation,
    QueryType,
    ResearchResult,
    ResearchSection,
    ResearchStep,
    StepKind,
)

__all__ = [
    "HostParadigm",
    "PARADIGM_LENSES",
    "normalize_to_enum",
    "AdaptiveMetadata",
    "Citation",
    "EffortLevel",
    "Evaluation",
    "QueryType",
    "ResearchResult",
    "ResearchSection",
    "ResearchStep",
    "StepKind",
]
