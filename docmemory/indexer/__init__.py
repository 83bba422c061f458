"""
Indexer - Document Metadata to Memory Facts

Keeps the memory index in step with the organized folder tree.

Key Components:
- MetadataStore: Reads `.metadata.json` sidecars into DocumentRecords
- extraction_rules: Versioned rule table turning a record into bucket facts
- MemoryIndex: Incremental (bucket, key) -> value index with provenance

Pipeline:
1. Discover sidecars under the organized root (sorted, hidden dirs skipped)
2. Parse each sidecar into a DocumentRecord (malformed ones are skipped)
3. Extract facts per bucket and upsert them into the index
4. Notify subscribers of the buckets that changed
"""

from .metadata_store import MetadataStore, FilenameMatch, StoreStatistics
from .extraction_rules import (
    RULESET_VERSION,
    EXTRACTION_RULES,
    ExtractionRule,
    extract_facts,
    investor_name,
    counterparty_name,
)
from .memory_index import MemoryIndex

__all__ = [
    "MetadataStore",
    "FilenameMatch",
    "StoreStatistics",
    "RULESET_VERSION",
    "EXTRACTION_RULES",
    "ExtractionRule",
    "extract_facts",
    "investor_name",
    "counterparty_name",
    "MemoryIndex",
]
