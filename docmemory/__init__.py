"""
docmemory

Memory-indexed search and retrieval over an organized legal document tree.

Philosophy:
- Every answer is traceable to the metadata sidecar it came from
- Facts are aggregated incrementally, never by re-reading every document per query
- Ranking is a reproducible heuristic, not a black box
- Outdated financial/legal facts are never served from cache

Usage:
    from docmemory.common import load_config
    from docmemory.common.schemas import DocumentRecord
    from docmemory.indexer import MetadataStore, MemoryIndex
    from docmemory.retriever import SearchEngine, SearchOptions
"""

__version__ = "0.1.0"
