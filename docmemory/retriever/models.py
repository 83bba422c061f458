"""
Search Models

Options, hits and results exchanged between the retriever components.
Everything here is immutable so cached results can be shared safely.
"""

import json
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple

from ..common.config import SearchConfig
from ..common.errors import InvalidQueryOptions
from ..common.schemas import ALL_BUCKETS, DocumentRecord, MemoryFact
from .vocabulary import SYNONYMS_VERSION


class MatchType(str, Enum):
    """Why a document was retrieved"""
    EXACT = "exact"
    FUZZY = "fuzzy"
    TAG = "tag"
    PARTY = "party"
    MEMORY = "memory"


class SearchPath(str, Enum):
    """Which sources produced a result"""
    CACHE = "cache"
    MEMORY_ONLY = "memory_only"
    DOCUMENT_ONLY = "document_only"
    HYBRID = "hybrid"


@dataclass(frozen=True)
class SearchOptions:
    """Per-query search options. Invalid values raise InvalidQueryOptions."""
    expand_synonyms: bool = True
    fuzzy_threshold: float = 0.6
    max_results: int = 10
    use_cache: bool = True
    buckets: Optional[FrozenSet[str]] = None  # restrict the memory pass

    def __post_init__(self):
        for name in ("expand_synonyms", "use_cache"):
            if not isinstance(getattr(self, name), bool):
                raise InvalidQueryOptions(f"{name} must be a boolean")

        threshold = self.fuzzy_threshold
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
            raise InvalidQueryOptions("fuzzy_threshold must be a number")
        if math.isnan(threshold) or not 0.0 <= threshold <= 1.0:
            raise InvalidQueryOptions(f"fuzzy_threshold must be within [0, 1], got {threshold}")

        if isinstance(self.max_results, bool) or not isinstance(self.max_results, int):
            raise InvalidQueryOptions("max_results must be an integer")
        if self.max_results < 1:
            raise InvalidQueryOptions(f"max_results must be >= 1, got {self.max_results}")

        if self.buckets is not None:
            if isinstance(self.buckets, str):
                raise InvalidQueryOptions("buckets must be a collection of bucket names")
            buckets = frozenset(str(b.value if isinstance(b, Enum) else b) for b in self.buckets)
            unknown = buckets - set(ALL_BUCKETS)
            if unknown:
                raise InvalidQueryOptions(f"unknown buckets: {', '.join(sorted(unknown))}")
            object.__setattr__(self, "buckets", buckets)

    @classmethod
    def from_config(cls, config: SearchConfig, **overrides: Any) -> "SearchOptions":
        values = {
            "expand_synonyms": config.expand_synonyms,
            "fuzzy_threshold": config.fuzzy_threshold,
            "max_results": config.max_results,
            "use_cache": config.use_cache,
        }
        values.update(overrides)
        return cls(**values)

    @property
    def scanned_buckets(self) -> Tuple[str, ...]:
        if self.buckets is None:
            return ALL_BUCKETS
        return tuple(b for b in ALL_BUCKETS if b in self.buckets)

    def cache_token(self) -> str:
        """Stable JSON serialization for cache keys"""
        return json.dumps(
            {
                "expand_synonyms": self.expand_synonyms,
                "fuzzy_threshold": float(self.fuzzy_threshold),
                "max_results": self.max_results,
                "buckets": sorted(self.buckets) if self.buckets is not None else None,
                "synonyms_version": SYNONYMS_VERSION,
            },
            sort_keys=True,
        )


@dataclass(frozen=True)
class SearchQuery:
    """A raw query with its options"""
    raw_text: str
    options: SearchOptions = field(default_factory=SearchOptions)

    def __post_init__(self):
        if not isinstance(self.raw_text, str):
            raise InvalidQueryOptions("raw_text must be a string")
        if not isinstance(self.options, SearchOptions):
            raise InvalidQueryOptions("options must be SearchOptions")


@dataclass(frozen=True)
class DocumentHit:
    """A retrieved document"""
    record: DocumentRecord
    relevance: float
    match_type: MatchType
    match_reason: str = ""

    @property
    def summary(self) -> str:
        return f"{self.record.filename} ({self.record.category}, {self.record.status.value})"


@dataclass(frozen=True)
class MemoryHit:
    """A retrieved memory fact"""
    fact: MemoryFact
    relevance: float


@dataclass(frozen=True)
class AnswerSource:
    """Provenance of one answer sentence"""
    kind: str  # "memory" or "document"
    group: str  # bucket or category
    reference: str  # fact key or record id
    excerpt: str


@dataclass(frozen=True)
class Answer:
    """Assembled answer"""
    text: str
    confidence: float
    sources: Tuple[AnswerSource, ...] = ()


@dataclass(frozen=True)
class Performance:
    total_time_ms: float = 0.0
    stage_times_ms: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class SearchResult:
    """Outcome of one search"""
    documents: Tuple[DocumentHit, ...] = ()
    memory_hits: Tuple[MemoryHit, ...] = ()
    answer: Optional[Answer] = None
    search_path: SearchPath = SearchPath.DOCUMENT_ONLY
    relevance: float = 0.0
    performance: Performance = field(default_factory=Performance)

    @property
    def is_empty(self) -> bool:
        return not self.documents and not self.memory_hits

    @classmethod
    def empty(cls, performance: Optional[Performance] = None) -> "SearchResult":
        return cls(performance=performance or Performance())

    def record_ids(self) -> Iterable[str]:
        return [hit.record.id for hit in self.documents]
