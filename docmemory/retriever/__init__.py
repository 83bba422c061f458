"""
Retriever - Memory-Indexed Document Search

Answers free-text questions from the memory index and the document records.

Key Components:
- QueryProcessor: Normalizes queries, extracts amounts/dates/names, expands synonyms
- Ranker: Memory pass + weighted document pass
- Synthesizer: Short answer with sources
- ResultCache: LRU cache invalidated by index bucket changes
- SearchEngine: Facade owning the read and write paths

Pipeline:
1. Parse the query into features
2. Return a fresh cached result if there is one
3. Score memory facts, then documents
4. Assemble an answer and cache the result
"""

from .models import (
    SearchOptions,
    SearchQuery,
    SearchResult,
    SearchPath,
    DocumentHit,
    MemoryHit,
    MatchType,
    Answer,
    AnswerSource,
    Performance,
)
from .query_processor import QueryProcessor, QueryFeatures, QueryToken
from .ranker import Ranker, Ranking
from .synthesizer import Synthesizer, format_answer_for_display
from .cache import ResultCache, CacheEntry
from .engine import SearchEngine

__all__ = [
    "SearchOptions",
    "SearchQuery",
    "SearchResult",
    "SearchPath",
    "DocumentHit",
    "MemoryHit",
    "MatchType",
    "Answer",
    "AnswerSource",
    "Performance",
    "QueryProcessor",
    "QueryFeatures",
    "QueryToken",
    "Ranker",
    "Ranking",
    "Synthesizer",
    "format_answer_for_display",
    "ResultCache",
    "CacheEntry",
    "SearchEngine",
]
