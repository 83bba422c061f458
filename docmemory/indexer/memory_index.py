"""
Memory Index

Incrementally maintained, bucketed fact index over the document records.
Every mutation is synchronous, bumps a monotonic snapshot version and
notifies subscribers (the result cache) of the buckets it touched.

Invariants:
- every fact has at least one source, and every source is an ingested record
- ingesting the same record twice leaves the index unchanged
- rebuild() replaces the whole state, it never merges
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from ..common.errors import IndexUnavailable, MalformedRecord
from ..common.schemas import (
    ALL_BUCKETS,
    BUCKET_FILES,
    DocumentRecord,
    MemoryFact,
    render_bucket_markdown,
)
from .extraction_rules import EXTRACTION_RULES, RULESET_VERSION, ExtractionRule, extract_facts

logger = logging.getLogger("docmemory.indexer.memory_index")

FactKey = Tuple[str, str]
Listener = Callable[[frozenset], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _IndexState:
    """Facts plus the per-record contributions needed to retract them"""

    def __init__(self):
        self.facts: Dict[FactKey, MemoryFact] = {}
        self.contributions: Dict[str, Dict[FactKey, str]] = {}

    def apply(self, record_id: str, extracted: Dict[FactKey, str], now: datetime) -> Set[str]:
        previous = self.contributions.get(record_id, {})
        affected: Set[str] = set()

        for key in previous:
            if key not in extracted:
                self._retract(key, record_id, now)
                affected.add(key[0])

        for key, value in extracted.items():
            if previous.get(key) == value:
                continue
            fact = self.facts.get(key)
            if fact is None:
                fact = MemoryFact(bucket=key[0], fact_key=key[1], last_updated=now)
            self.facts[key] = fact.with_source(record_id, value, now)
            affected.add(key[0])

        if extracted:
            self.contributions[record_id] = dict(extracted)
        else:
            self.contributions.pop(record_id, None)
        return affected

    def retract_record(self, record_id: str, now: datetime) -> Set[str]:
        previous = self.contributions.pop(record_id, {})
        for key in previous:
            self._retract(key, record_id, now)
        return {key[0] for key in previous}

    def _retract(self, key: FactKey, record_id: str, now: datetime) -> None:
        fact = self.facts.get(key)
        if fact is None:
            return
        remaining = fact.without_source(record_id, now)
        if remaining is None:
            del self.facts[key]
        else:
            self.facts[key] = remaining

    def bucket_contents(self, bucket: str) -> Dict[str, tuple]:
        return {
            key[1]: fact.source_values
            for key, fact in self.facts.items()
            if key[0] == bucket
        }


class MemoryIndex:
    """
    Bucketed fact index.

    Usage:
        index = MemoryIndex()
        index.subscribe(cache.invalidate)
        index.ingest(record)
        facts = index.query(bucket="company")
    """

    def __init__(
        self,
        rules: Iterable[ExtractionRule] = EXTRACTION_RULES,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            rules: Extraction rule table
            clock: Timestamp source for last_updated (tests inject a fixed clock)
        """
        self._rules = tuple(rules)
        self._clock = clock or _utcnow
        self._state = _IndexState()
        self._version = 0
        self._bucket_versions: Dict[str, int] = {}
        self._listeners: List[Listener] = []
        self._closed = False

    @property
    def ruleset_version(self) -> str:
        return RULESET_VERSION

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._state.facts)

    def _ensure_open(self) -> None:
        if self._closed:
            raise IndexUnavailable("Memory index is closed")

    # ------------------------------------------------------------------
    # Versions and notification
    # ------------------------------------------------------------------

    def snapshot_version(self) -> int:
        """
        Monotonic counter bumped by every ingest and remove, even when no
        bucket changed. Bucket versions only move on real changes.
        """
        return self._version

    def bucket_version(self, bucket: str) -> int:
        """Snapshot version of the last change to a bucket (0 if never changed)"""
        return self._bucket_versions.get(bucket, 0)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for affected-bucket notifications. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def touch(self, buckets: Iterable[str]) -> Set[str]:
        """Record a change to buckets the index does not own (e.g. the document set)."""
        self._ensure_open()
        touched = set(buckets)
        self._commit(touched)
        return touched

    def _commit(self, affected: Set[str], bump: bool = False) -> None:
        if not affected and not bump:
            return
        self._version += 1
        if not affected:
            return
        for bucket in affected:
            self._bucket_versions[bucket] = self._version
        notice = frozenset(affected)
        for listener in list(self._listeners):
            listener(notice)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def _extract(self, record: DocumentRecord) -> Optional[Dict[FactKey, str]]:
        try:
            return extract_facts(record, self._rules)
        except MalformedRecord as e:
            logger.warning("Skipping record during fact extraction: %s", e)
            return None

    def ingest(self, record: DocumentRecord) -> Set[str]:
        """
        Upsert the facts a record yields and retract the ones it no longer yields.

        Returns:
            Buckets whose content changed (empty when nothing changed)
        """
        self._ensure_open()
        extracted = self._extract(record)
        if extracted is None:
            self._commit(set(), bump=True)
            return set()

        affected = self._state.apply(record.id, extracted, self._clock())
        if affected:
            logger.debug("Ingested %s: buckets %s", record.id, sorted(affected))
        self._commit(affected, bump=True)
        return affected

    def remove(self, record_id: str) -> Set[str]:
        """Strip a record from every fact, pruning facts left without sources."""
        self._ensure_open()
        affected = self._state.retract_record(record_id, self._clock())
        if affected:
            logger.debug("Removed %s: buckets %s", record_id, sorted(affected))
        self._commit(affected, bump=True)
        return affected

    def rebuild(self, records: Iterable[DocumentRecord]) -> Set[str]:
        """
        Recompute every bucket from scratch and swap the result in.

        Records are ingested in the given order. Returns the buckets whose
        content differs from the previous state.
        """
        self._ensure_open()
        now = self._clock()
        fresh = _IndexState()
        count = 0
        for record in records:
            extracted = self._extract(record)
            if extracted is not None:
                fresh.apply(record.id, extracted, now)
                count += 1

        affected = {
            bucket for bucket in ALL_BUCKETS
            if fresh.bucket_contents(bucket) != self._state.bucket_contents(bucket)
        }
        self._state = fresh
        logger.info(
            "Rebuilt memory index from %d records: %d facts, changed buckets %s",
            count, len(fresh.facts), sorted(affected),
        )
        self._commit(affected)
        return affected

    def close(self) -> None:
        """End the index lifetime. Later reads and writes raise IndexUnavailable."""
        self._closed = True
        self._listeners.clear()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query(
        self,
        bucket: Optional[str] = None,
        predicate: Optional[Callable[[MemoryFact], bool]] = None,
    ) -> List[MemoryFact]:
        """Facts matching bucket and predicate, sorted by bucket then key"""
        self._ensure_open()
        facts = [
            fact for key, fact in self._state.facts.items()
            if (bucket is None or key[0] == bucket) and (predicate is None or predicate(fact))
        ]
        return sorted(facts, key=lambda f: (f.bucket, f.fact_key))

    def get(self, bucket: str, fact_key: str) -> Optional[MemoryFact]:
        self._ensure_open()
        return self._state.facts.get((bucket, fact_key))

    def facts_for(self, record_id: str) -> List[MemoryFact]:
        """Facts a record currently contributes to"""
        self._ensure_open()
        keys = self._state.contributions.get(record_id, {})
        return sorted(
            (self._state.facts[k] for k in keys if k in self._state.facts),
            key=lambda f: (f.bucket, f.fact_key),
        )

    def bucket_sizes(self) -> Dict[str, int]:
        self._ensure_open()
        sizes = {bucket: 0 for bucket in ALL_BUCKETS}
        for bucket, _ in self._state.facts:
            sizes[bucket] = sizes.get(bucket, 0) + 1
        return sizes

    # ------------------------------------------------------------------
    # Markdown export
    # ------------------------------------------------------------------

    def render_markdown(self) -> Dict[str, str]:
        """Markdown document per bucket, keyed by file name"""
        self._ensure_open()
        now = self._clock()
        return {
            BUCKET_FILES[bucket]: render_bucket_markdown(bucket, self.query(bucket=bucket), now)
            for bucket in ALL_BUCKETS
        }

    def export_markdown(self, directory: Path) -> List[Path]:
        """Write one Markdown file per bucket into directory"""
        target = Path(directory)
        target.mkdir(parents=True, exist_ok=True)
        written = []
        for filename, text in self.render_markdown().items():
            path = target / filename
            path.write_text(text, encoding="utf-8")
            written.append(path)
        logger.info("Exported %d memory files to %s", len(written), target)
        return written
