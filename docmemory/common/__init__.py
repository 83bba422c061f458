"""
docmemory Common Module

Shared infrastructure for the indexer and retriever packages.
"""

from .config import EngineConfig, load_config
from .errors import (
    DocMemoryError,
    MalformedRecord,
    StoreReadError,
    IndexUnavailable,
    InvalidQueryOptions,
)
from .language import LanguageInfo, detect_language

__all__ = [
    "EngineConfig",
    "load_config",
    "DocMemoryError",
    "MalformedRecord",
    "StoreReadError",
    "IndexUnavailable",
    "InvalidQueryOptions",
    "LanguageInfo",
    "detect_language",
]
