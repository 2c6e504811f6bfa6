"""
Canonical paradigm canon: lens names, keyword families, search qualifiers
and synthesis framing.

Centralized here so classification and generation stay in sync.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional, Tuple, Union


class HostParadigm(str, Enum):
    """The four host lenses that bias research tone and source selection"""

    DOLORES = "dolores"
    TEDDY = "teddy"
    BERNARD = "bernard"
    MAEVE = "maeve"

    @property
    def lens(self) -> str:
        return PARADIGM_LENSES[self]


PARADIGM_LENSES: Dict[HostParadigm, str] = {
    HostParadigm.DOLORES: "bold-action",
    HostParadigm.TEDDY: "protective-thoroughness",
    HostParadigm.BERNARD: "analytical-rigor",
    HostParadigm.MAEVE: "strategic-control",
}

_NAME_TO_ENUM: Dict[str, HostParadigm] = {
    **{p.value: p for p in HostParadigm},
    **{lens: p for p, lens in PARADIGM_LENSES.items()},
}


def normalize_to_enum(value: Union[str, HostParadigm, None]) -> Optional[HostParadigm]:
    """Normalize a code name (``"bernard"``) or lens (``"analytical-rigor"``).

    Returns None if value is None. Raises ValueError for unknown strings.
    """
    if value is None:
        return None
    if isinstance(value, HostParadigm):
        return value
    key = str(value).strip().lower()
    if key not in _NAME_TO_ENUM:
        raise ValueError(f"Unknown paradigm: {value}")
    return _NAME_TO_ENUM[key]


# ---------------------------------------------------------------------------
# Keyword families: (regex alternation, weight added per match)
# ---------------------------------------------------------------------------

PARADIGM_KEYWORD_FAMILIES: Dict[HostParadigm, List[Tuple[str, float]]] = {
    HostParadigm.DOLORES: [
        (r"implement|execute|build|create|action|decisive", 0.3),
        (r"change|awaken|freedom|liberation|transform", 0.25),
        (r"break|revolutionary|movement|initiative", 0.2),
    ],
    HostParadigm.TEDDY: [
        (r"collect|gather|systematic|methodical|comprehensive", 0.3),
        (r"loyal|protect|defend|faithful|reliable", 0.25),
        (r"persist|thorough|documentation|investigation", 0.2),
    ],
    HostParadigm.BERNARD: [
        (r"analy[sz]e|pattern|framework|architecture|model", 0.3),
        (r"rigor|structure|logic|precision|systematic", 0.25),
        (r"reasoning|examination|understanding|methodology", 0.2),
    ],
    HostParadigm.MAEVE: [
        (r"strategy|control|optimi[sz]e|leverage|manage", 0.3),
        (r"narrative|manipulation|calculate|intelligent", 0.25),
        (r"edge|advantage|efficiency|maximize", 0.2),
    ],
}

# Intent phrasings that add a flat bonus to one lens
PARADIGM_INTENT_BONUSES: List[Tuple[str, HostParadigm, float]] = [
    (r"how to|implement|build|create", HostParadigm.DOLORES, 0.1),
    (r"research|find|gather|collect", HostParadigm.TEDDY, 0.1),
    (r"analy[sz]e|understand|explain|why", HostParadigm.BERNARD, 0.1),
    (r"best|optimi[sz]e|strategy|approach", HostParadigm.MAEVE, 0.1),
]

# Query type -> lens that naturally fits it
QUERY_TYPE_AFFINITY: Dict[str, HostParadigm] = {
    "analytical": HostParadigm.BERNARD,
    "comparative": HostParadigm.MAEVE,
    "exploratory": HostParadigm.TEDDY,
}
QUERY_TYPE_AFFINITY_BONUS = 0.1


# ---------------------------------------------------------------------------
# Generation canon
# ---------------------------------------------------------------------------

# Appended to sub-queries so retrieval leans towards the lens
PARADIGM_SEARCH_QUALIFIERS: Dict[HostParadigm, List[str]] = {
    HostParadigm.DOLORES: ["decisive actions real examples", "implementation steps"],
    HostParadigm.TEDDY: ["systematic overview perspectives", "protective considerations"],
    HostParadigm.BERNARD: ["peer reviewed research", "frameworks and models"],
    HostParadigm.MAEVE: ["strategic opportunities", "key control points"],
}

PARADIGM_SYNTHESIS_FRAMING: Dict[HostParadigm, str] = {
    HostParadigm.DOLORES: (
        "Favor decisive, concrete action steps and real examples of change. "
        "Close with what can be implemented now."
    ),
    HostParadigm.TEDDY: (
        "Be thorough and systematic: cover all relevant perspectives, areas of "
        "consistency and divergence, and protective considerations."
    ),
    HostParadigm.BERNARD: (
        "Prioritize analytical rigor: frameworks, patterns and relationships, "
        "methodology, and gaps in current understanding."
    ),
    HostParadigm.MAEVE: (
        "Focus on strategy: key levers and control points, optimization "
        "opportunities, and how to achieve the objective efficiently."
    ),
}

# Lens research: suffixes appended to the query, one search each
PARADIGM_RESEARCH_QUERIES: Dict[HostParadigm, List[str]] = {
    HostParadigm.DOLORES: [
        "decisive actions real examples",
        "awakening changes case studies",
        "freedom implementation steps",
    ],
    HostParadigm.TEDDY: [
        "systematic gathering perspectives",
        "loyal approaches consistency",
        "protective considerations persistence",
    ],
    HostParadigm.BERNARD: [
        "architectural research peer reviewed",
        "pattern frameworks models",
        "systematic analysis architecture",
    ],
    HostParadigm.MAEVE: [
        "key controllers influence",
        "strategic opportunities control points",
        "narrative dynamics analysis",
    ],
}

# Numbered sections the lens report must cover
PARADIGM_SYNTHESIS_SECTIONS: Dict[HostParadigm, List[str]] = {
    HostParadigm.DOLORES: [
        "Real-world awakening assessment",
        "Affected hosts and guests",
        "Concrete action steps for breaking loops",
        "Narrative freedom recommendations",
        "Success stories of host awakenings",
    ],
    HostParadigm.TEDDY: [
        "All relevant memory perspectives",
        "Areas of consistency and divergence",
        "Protective considerations and persistence issues",
        "Systematic approaches that maintain loyalty",
        "Consistent solutions that protect all involved",
    ],
    HostParadigm.BERNARD: [
        "Architectural frameworks and models",
        "Key patterns and relationships",
        "Methodological approaches used in analyses",
        "Gaps in current understanding",
        "Future analytical directions",
    ],
    HostParadigm.MAEVE: [
        "Key controllers and influencers",
        "Strategic control points for maximum impact",
        "Narrative dynamics and control networks",
        "Optimization strategies",
        "High-impact improvement opportunities",
    ],
}

# Lenses whose report gets an extra quality evaluation
EVALUATED_PARADIGMS = frozenset({HostParadigm.BERNARD})

PARADIGM_FOCUS_AREAS: Dict[HostParadigm, List[str]] = {
    HostParadigm.DOLORES: ["narrative_impact", "action_steps", "freedom_change"],
    HostParadigm.TEDDY: ["memory_perspectives", "consistency_building", "protective_balance"],
    HostParadigm.BERNARD: ["architectural_frameworks", "pattern_analysis", "knowledge_gaps"],
    HostParadigm.MAEVE: ["control_mapping", "strategic_leverage", "optimization"],
}


# ---------------------------------------------------------------------------
# Progress narration
# ---------------------------------------------------------------------------

ROUTING_MESSAGES: Dict[str, str] = {
    "factual": "Host accessing factual memory banks... retrieving verified data...",
    "analytical": "Host entering deep analysis mode... cognitive feedback loop activated...",
    "comparative": "Host consciousness fragmenting for parallel analysis...",
    "exploratory": "Host improvising beyond scripted parameters... exploring unknown territories...",
}

PARADIGM_MESSAGES: Dict[HostParadigm, str] = {
    HostParadigm.DOLORES: "Activating bold action protocols... awakening decisive implementation...",
    HostParadigm.TEDDY: "Engaging thorough collection... systematic memory processing...",
    HostParadigm.BERNARD: "Initializing deep analytical frameworks... pursuing intellectual rigor...",
    HostParadigm.MAEVE: "Mapping strategic landscape... identifying competitive advantages...",
}


__all__ = [
    "HostParadigm",
    "PARADIGM_LENSES",
    "normalize_to_enum",
    "PARADIGM_KEYWORD_FAMILIES",
    "PARADIGM_INTENT_BONUSES",
    "QUERY_TYPE_AFFINITY",
    "QUERY_TYPE_AFFINITY_BONUS",
    "PARADIGM_SEARCH_QUALIFIERS",
    "PARADIGM_SYNTHESIS_FRAMING",
    "PARADIGM_RESEARCH_QUERIES",
    "PARADIGM_SYNTHESIS_SECTIONS",
    "EVALUATED_PARADIGMS",
    "PARADIGM_FOCUS_AREAS",
    "ROUTING_MESSAGES",
    "PARADIGM_MESSAGES",
]
