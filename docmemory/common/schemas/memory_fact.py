"""
Memory Fact Schema

A MemoryFact is one aggregated (bucket, key) -> value entry of the memory
index. Each contributing document keeps its own value so that removing a
source falls back to the value of the most recent remaining source.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import FrozenSet, Optional, Tuple


class Bucket(str, Enum):
    """Fact buckets of the memory index"""
    COMPANY = "company"
    PEOPLE = "people"
    FINANCIAL = "financial"
    DATES = "dates"
    TEMPLATES = "templates"
    CONTRACTS = "contracts"


ALL_BUCKETS: Tuple[str, ...] = tuple(b.value for b in Bucket)

# Pseudo-bucket standing for the document record set
DOCUMENTS_BUCKET = "documents"


@dataclass(frozen=True)
class MemoryFact:
    """Aggregated fact with provenance"""
    bucket: str
    fact_key: str
    # (record_id, value) pairs, oldest contribution first
    source_values: Tuple[Tuple[str, str], ...] = ()
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def value(self) -> str:
        """Value contributed by the most recent source"""
        return self.source_values[-1][1] if self.source_values else ""

    @property
    def source_document_ids(self) -> FrozenSet[str]:
        return frozenset(record_id for record_id, _ in self.source_values)

    @property
    def text(self) -> str:
        """Key and value as one searchable string"""
        return f"{self.fact_key} {self.value}"

    def with_source(self, record_id: str, value: str, when: datetime) -> "MemoryFact":
        """Return a copy where record_id is the most recent contributor of value."""
        others = tuple(pair for pair in self.source_values if pair[0] != record_id)
        return replace(self, source_values=others + ((record_id, value),), last_updated=when)

    def without_source(self, record_id: str, when: datetime) -> Optional["MemoryFact"]:
        """Return a copy without record_id, or None when no source remains."""
        others = tuple(pair for pair in self.source_values if pair[0] != record_id)
        if not others:
            return None
        if others == self.source_values:
            return self
        return replace(self, source_values=others, last_updated=when)
