"""
In-process research cache and query-pattern memory.

Both stores sit on ``cachetools.TTLCache``. Expired entries are pruned on
every write through a single ``_store`` path, and lookups only ever see
live entries. No background timer is involved.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import structlog
from cachetools import TTLCache

from reveries.core.config import CACHE_TTL_SECONDS, MEMORY_TTL_SECONDS
from reveries.models.research import QueryType, ResearchResult

logger = structlog.get_logger(__name__)

# Queries sharing more than this fraction of words are treated as the same
SIMILARITY_THRESHOLD = 0.3

_WHITESPACE = re.compile(r"\s+")


def normalize_query(query: str) -> str:
    return _WHITESPACE.sub(" ", (query or "").strip().lower())


def jaccard_similarity(query1: str, query2: str) -> float:
    """Intersection over union of the whitespace-separated words."""
    words1 = set(normalize_query(query1).split())
    words2 = set(normalize_query(query2).split())
    union = words1 | words2
    if not union:
        return 0.0
    return len(words1 & words2) / len(union)


def is_query_similar(query1: str, query2: str, threshold: float = SIMILARITY_THRESHOLD) -> bool:
    return jaccard_similarity(query1, query2) > threshold


class _TTLStore:
    """TTLCache wrapper: prune on write, read only live entries."""

    def __init__(self, ttl: float, maxsize: int, timer: Optional[Callable[[], float]] = None):
        self.ttl = ttl
        self._entries: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer or time.monotonic)

    def _store(self, key: str, value) -> None:
        self._entries.expire()
        self._entries[key] = value

    def _get(self, key: str):
        return self._entries.get(key)

    def _live_items(self) -> List[Tuple[str, object]]:
        self._entries.expire()
        return list(self._entries.items())

    def __len__(self) -> int:
        self._entries.expire()
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()


class ResearchCache(_TTLStore):
    """Similarity-keyed result cache (30 minute TTL by default)."""

    def __init__(
        self,
        ttl: float = CACHE_TTL_SECONDS,
        maxsize: int = 500,
        timer: Optional[Callable[[], float]] = None,
    ):
        super().__init__(ttl=ttl, maxsize=maxsize, timer=timer)
        self.hit_count = 0
        self.miss_count = 0

    def lookup(self, query: str) -> Tuple[Optional[ResearchResult], float]:
        """Return ``(result, similarity)``; exact matches report 1.0."""
        key = normalize_query(query)
        exact = self._get(key)
        if exact is not None:
            return exact, 1.0

        best: Optional[ResearchResult] = None
        best_score = 0.0
        for cached_query, result in self._live_items():
            score = jaccard_similarity(key, cached_query)
            if score > SIMILARITY_THRESHOLD and score > best_score:
                best, best_score = result, score
        return best, best_score

    def get(self, query: str) -> Optional[ResearchResult]:
        result, similarity = self.lookup(query)
        if result is None:
            self.miss_count += 1
            return None
        self.hit_count += 1
        logger.info("Research cache hit", query=query, similarity=round(similarity, 3))
        # Callers decorate the hit; keep the stored copy pristine
        return result.model_copy(deep=True)

    def set(self, query: str, result: ResearchResult) -> None:
        self._store(normalize_query(query), result.model_copy(deep=True))

    def get_stats(self) -> Dict[str, float]:
        total = self.hit_count + self.miss_count
        return {
            "entries": len(self),
            "hits": self.hit_count,
            "misses": self.miss_count,
            "hit_rate": round(self.hit_count / total, 3) if total else 0.0,
        }


@dataclass
class MemoryEntry:
    queries: List[str] = field(default_factory=list)
    patterns: List[QueryType] = field(default_factory=list)
    timestamp: float = 0.0


def _merge_unique(existing: List, new: Iterable) -> List:
    merged = list(existing)
    for item in new:
        if item not in merged:
            merged.append(item)
    return merged


class QueryMemory(_TTLStore):
    """Remembers sub-queries generated for past query families (24h TTL)."""

    def __init__(
        self,
        ttl: float = MEMORY_TTL_SECONDS,
        maxsize: int = 5000,
        timer: Optional[Callable[[], float]] = None,
    ):
        super().__init__(ttl=ttl, maxsize=maxsize, timer=timer)
        self._timer = timer or time.monotonic

    def learn(self, query: str, query_type: QueryType, queries: Iterable[str]) -> MemoryEntry:
        key = normalize_query(query)
        cleaned = [q.strip() for q in queries if q and q.strip()]
        existing = self._get(key)
        if existing is not None:
            entry = MemoryEntry(
                queries=_merge_unique(existing.queries, cleaned),
                patterns=_merge_unique(existing.patterns, [query_type]),
                timestamp=self._timer(),
            )
        else:
            entry = MemoryEntry(queries=cleaned, patterns=[query_type], timestamp=self._timer())
        self._store(key, entry)
        return entry

    def suggestions(self, query: str) -> List[str]:
        """Sub-queries remembered for this or similar queries, oldest first."""
        key = normalize_query(query)
        suggestions: List[str] = []
        for remembered, entry in self._live_items():
            if remembered == key or is_query_similar(key, remembered):
                suggestions = _merge_unique(suggestions, entry.queries)
        return suggestions

    def patterns_for(self, query: str) -> List[QueryType]:
        entry = self._get(normalize_query(query))
        return list(entry.patterns) if entry else []
