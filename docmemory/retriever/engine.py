"""
Search Engine

Entry point tying the pipeline together:

1. QueryProcessor  - raw text -> QueryFeatures
2. ResultCache     - short-circuit on a fresh hit
3. Ranker          - memory pass, then document pass
4. Synthesizer     - short answer with sources

The engine also owns the write path (ingest / remove / rebuild_all) so that
every change to the record set reaches the index and, through the index
subscription, the cache.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import List, Optional, Set

from ..common.config import EngineConfig, load_config
from ..common.errors import IndexUnavailable, MalformedRecord, StoreReadError
from ..common.schemas import DOCUMENTS_BUCKET, DocumentRecord
from ..indexer.memory_index import MemoryIndex
from ..indexer.metadata_store import FilenameMatch, MetadataStore, StoreStatistics
from .cache import ResultCache, as_cache_hit
from .models import Performance, SearchOptions, SearchQuery, SearchResult
from .query_processor import QueryProcessor
from .ranker import Ranker
from .synthesizer import Synthesizer

logger = logging.getLogger("docmemory.retriever.engine")


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


class SearchEngine:
    """
    Memory-indexed search over an organized document tree.

    Usage:
        async with SearchEngine.from_config() as engine:
            await engine.rebuild_all()
            result = await engine.search("What is our EIN?")
    """

    def __init__(
        self,
        store: MetadataStore,
        index: Optional[MemoryIndex] = None,
        config: Optional[EngineConfig] = None,
        processor: Optional[QueryProcessor] = None,
        ranker: Optional[Ranker] = None,
        synthesizer: Optional[Synthesizer] = None,
        cache: Optional[ResultCache] = None,
    ):
        self._config = config or EngineConfig()
        self._store = store
        self._index = index or MemoryIndex()
        self._processor = processor or QueryProcessor()
        self._ranker = ranker or Ranker(self._config.ranking)
        self._synthesizer = synthesizer or Synthesizer(self._config.synthesis)
        self._cache = cache or ResultCache(self._config.cache.max_entries)

        self._cache.bind(self._index.bucket_version)
        self._unsubscribe = self._index.subscribe(self._cache.invalidate)

    @classmethod
    def from_config(cls, config: Optional[EngineConfig] = None) -> "SearchEngine":
        """Build an engine from configuration (loaded from disk when omitted)"""
        config = config or load_config()
        store = MetadataStore(
            config.store.organized_root,
            metadata_suffix=config.store.metadata_suffix,
            memory_dir=config.store.memory_dir,
        )
        return cls(store, config=config)

    @property
    def store(self) -> MetadataStore:
        return self._store

    @property
    def index(self) -> MemoryIndex:
        return self._index

    @property
    def cache(self) -> ResultCache:
        return self._cache

    def default_options(self, **overrides) -> SearchOptions:
        return SearchOptions.from_config(self._config.search, **overrides)

    async def __aenter__(self) -> "SearchEngine":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(self, raw_text: str, options: Optional[SearchOptions] = None) -> SearchResult:
        """
        Answer a free-text query.

        Raises:
            InvalidQueryOptions: options are out of range
        """
        query = SearchQuery(raw_text=raw_text, options=options or self.default_options())
        options = query.options
        started = time.perf_counter()
        stages = {}

        t = time.perf_counter()
        features = self._processor.parse(query.raw_text, expand_synonyms=options.expand_synonyms)
        stages["normalize"] = _elapsed_ms(t)

        if features.is_empty:
            return SearchResult.empty(Performance(_elapsed_ms(started), stages))

        key = ResultCache.make_key(features.normalized, options, features.filters.describe())
        if options.use_cache:
            t = time.perf_counter()
            cached = self._cache.get(key)
            stages["cache_lookup"] = _elapsed_ms(t)
            if cached is not None:
                logger.debug("Cache hit for %r", features.normalized)
                return as_cache_hit(cached, Performance(_elapsed_ms(started), stages))

        scanned = options.scanned_buckets
        try:
            snapshot = self._index.snapshot_version()
            t = time.perf_counter()
            facts = self._index.query(predicate=lambda f: f.bucket in scanned)
            memory_hits = self._ranker.memory_pass(features, facts, options)
            stages["memory_pass"] = _elapsed_ms(t)
        except IndexUnavailable as e:
            logger.warning("Search degraded to empty result: %s", e)
            return SearchResult.empty(Performance(_elapsed_ms(started), stages))

        t = time.perf_counter()
        documents = self._ranker.document_pass(features, self._store.records(), options, memory_hits)
        stages["document_pass"] = _elapsed_ms(t)

        ranking = self._ranker.assemble(memory_hits, documents, options)

        t = time.perf_counter()
        answer = self._synthesizer.synthesize(ranking.memory_hits, ranking.documents)
        stages["synthesis"] = _elapsed_ms(t)

        result = SearchResult(
            documents=ranking.documents,
            memory_hits=ranking.memory_hits,
            answer=answer,
            search_path=ranking.search_path,
            relevance=ranking.relevance,
            performance=Performance(_elapsed_ms(started), stages),
        )

        if options.use_cache:
            self._cache.put(key, result, set(scanned) | {DOCUMENTS_BUCKET}, snapshot)

        logger.info(
            "Search %r: %d memory hits, %d documents, %s in %.1f ms",
            features.normalized, len(result.memory_hits), len(result.documents),
            result.search_path.value, result.performance.total_time_ms,
        )
        return result

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def ingest(self, record: DocumentRecord) -> Set[str]:
        """Apply a new or changed record. Returns the buckets that changed."""
        if self._index.closed:
            raise IndexUnavailable("Memory index is closed")
        changed = self._store.put(record)
        affected = self._index.ingest(record)
        if changed:
            affected |= self._index.touch({DOCUMENTS_BUCKET})
        return affected

    async def ingest_file(self, path: Path) -> Set[str]:
        """Load one sidecar and ingest it. Malformed sidecars are skipped."""
        try:
            record = await self._store.load_sidecar(Path(path))
        except MalformedRecord as e:
            logger.warning("Skipping malformed sidecar %s: %s", path, e)
            return set()
        return await self.ingest(record)

    async def remove(self, record_id: str) -> Set[str]:
        """Forget a record and every fact it sourced."""
        if self._index.closed:
            raise IndexUnavailable("Memory index is closed")
        discarded = self._store.discard(record_id)
        affected = self._index.remove(record_id)
        if discarded is not None:
            affected |= self._index.touch({DOCUMENTS_BUCKET})
        return affected

    async def rebuild_all(self) -> Set[str]:
        """
        Re-read the whole tree and replace the record set and index.

        Everything is read before any state changes, so a read failure
        leaves the previous records and index in place.

        Raises:
            StoreReadError: the tree could not be read
        """
        if self._index.closed:
            raise IndexUnavailable("Memory index is closed")
        try:
            records = await self._store.scan()
        except StoreReadError as e:
            logger.error("Rebuild aborted, keeping previous index: %s", e)
            raise

        self._store.replace_all(records)
        affected = self._index.rebuild(records)
        affected |= self._index.touch({DOCUMENTS_BUCKET})
        logger.info("Rebuild complete: %d records, %d facts", len(records), len(self._index))
        return affected

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def statistics(self) -> StoreStatistics:
        return self._store.statistics()

    def find_document(self, filename: str) -> Optional[FilenameMatch]:
        """Exact or near-exact filename first, then a looser fuzzy match"""
        match = self._store.find_by_filename(filename, threshold=0.9)
        if match is None:
            match = self._store.find_by_filename(filename, threshold=0.6)
        return match

    async def export_memory(self, directory: Optional[Path] = None) -> List[Path]:
        """Write the Markdown memory files (default: <organized_root>/memory)"""
        target = Path(directory) if directory else self._store.root / self._config.store.memory_dir
        return await asyncio.to_thread(self._index.export_markdown, target)

    async def close(self) -> None:
        self._unsubscribe()
        self._index.close()
        self._cache.clear()
