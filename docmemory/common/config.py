"""
Configuration Management for docmemory

Loads configuration from ~/.docmemory/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field

logger = logging.getLogger("docmemory.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".docmemory"
CONFIG_PATH = CONFIG_DIR / "config.json"

METADATA_SUFFIX = ".metadata.json"
MEMORY_DIR_NAME = "memory"


@dataclass
class StoreConfig:
    """Organized folder tree configuration"""
    organized_root: str = ""
    metadata_suffix: str = METADATA_SUFFIX
    memory_dir: str = MEMORY_DIR_NAME  # Markdown export, relative to organized_root


@dataclass
class SearchConfig:
    """Default search options"""
    expand_synonyms: bool = True
    fuzzy_threshold: float = 0.6
    max_results: int = 10
    use_cache: bool = True


@dataclass
class RankingConfig:
    """Scoring weights for the retrieval engine"""
    field_weight: float = 0.5  # tag / category / status / exact field matches
    name_weight: float = 0.3  # proper names against parties and signers
    text_weight: float = 0.2  # fuzzy overlap with free-text fields
    memory_weight: float = 0.4
    document_weight: float = 0.6
    name_similarity_floor: float = 0.8
    text_similarity_floor: float = 0.75


@dataclass
class SynthesisConfig:
    """Answer assembly configuration"""
    min_relevance: float = 0.3
    max_memory_hits: int = 3
    max_document_hits: int = 2
    confidence_cap: float = 0.99
    excerpt_chars: int = 200


@dataclass
class CacheConfig:
    """Result cache configuration"""
    max_entries: int = 256


@dataclass
class EngineConfig:
    """Main docmemory configuration"""
    store: StoreConfig = field(default_factory=StoreConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    ranking: RankingConfig = field(default_factory=RankingConfig)
    synthesis: SynthesisConfig = field(default_factory=SynthesisConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)


def _parse_store_config(data: dict) -> StoreConfig:
    """Parse store section from config dict"""
    store_data = data.get("store", {})
    return StoreConfig(
        organized_root=store_data.get("organized_root", ""),
        metadata_suffix=store_data.get("metadata_suffix", METADATA_SUFFIX),
        memory_dir=store_data.get("memory_dir", MEMORY_DIR_NAME),
    )


def _parse_search_config(data: dict) -> SearchConfig:
    """Parse search section from config dict"""
    search_data = data.get("search", {})
    return SearchConfig(
        expand_synonyms=search_data.get("expand_synonyms", True),
        fuzzy_threshold=search_data.get("fuzzy_threshold", 0.6),
        max_results=search_data.get("max_results", 10),
        use_cache=search_data.get("use_cache", True),
    )


def _parse_ranking_config(data: dict) -> RankingConfig:
    """Parse ranking section from config dict"""
    ranking_data = data.get("ranking", {})
    defaults = RankingConfig()
    return RankingConfig(
        field_weight=ranking_data.get("field_weight", defaults.field_weight),
        name_weight=ranking_data.get("name_weight", defaults.name_weight),
        text_weight=ranking_data.get("text_weight", defaults.text_weight),
        memory_weight=ranking_data.get("memory_weight", defaults.memory_weight),
        document_weight=ranking_data.get("document_weight", defaults.document_weight),
        name_similarity_floor=ranking_data.get("name_similarity_floor", defaults.name_similarity_floor),
        text_similarity_floor=ranking_data.get("text_similarity_floor", defaults.text_similarity_floor),
    )


def _parse_synthesis_config(data: dict) -> SynthesisConfig:
    """Parse synthesis section from config dict"""
    synthesis_data = data.get("synthesis", {})
    return SynthesisConfig(
        min_relevance=synthesis_data.get("min_relevance", 0.3),
        max_memory_hits=synthesis_data.get("max_memory_hits", 3),
        max_document_hits=synthesis_data.get("max_document_hits", 2),
        confidence_cap=synthesis_data.get("confidence_cap", 0.99),
        excerpt_chars=synthesis_data.get("excerpt_chars", 200),
    )


def _parse_cache_config(data: dict) -> CacheConfig:
    """Parse cache section from config dict"""
    cache_data = data.get("cache", {})
    return CacheConfig(max_entries=cache_data.get("max_entries", 256))


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config() -> EngineConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (~/.docmemory/config.json)
    3. Default values
    """
    config = EngineConfig()

    # Load from config file if exists
    if CONFIG_PATH.exists():
        try:
            with open(CONFIG_PATH) as f:
                data = json.load(f)

            config.store = _parse_store_config(data)
            config.search = _parse_search_config(data)
            config.ranking = _parse_ranking_config(data)
            config.synthesis = _parse_synthesis_config(data)
            config.cache = _parse_cache_config(data)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Failed to load config file %s: %s", CONFIG_PATH, e)

    # Environment variable overrides
    if os.getenv("DOCMEMORY_ROOT"):
        config.store.organized_root = os.getenv("DOCMEMORY_ROOT")
    if os.getenv("DOCMEMORY_FUZZY_THRESHOLD"):
        config.search.fuzzy_threshold = float(os.getenv("DOCMEMORY_FUZZY_THRESHOLD"))
    if os.getenv("DOCMEMORY_MAX_RESULTS"):
        config.search.max_results = int(os.getenv("DOCMEMORY_MAX_RESULTS"))
    if os.getenv("DOCMEMORY_EXPAND_SYNONYMS"):
        config.search.expand_synonyms = _env_flag(os.getenv("DOCMEMORY_EXPAND_SYNONYMS"))
    if os.getenv("DOCMEMORY_USE_CACHE"):
        config.search.use_cache = _env_flag(os.getenv("DOCMEMORY_USE_CACHE"))
    if os.getenv("DOCMEMORY_CACHE_SIZE"):
        config.cache.max_entries = int(os.getenv("DOCMEMORY_CACHE_SIZE"))

    return config


def save_config(config: EngineConfig) -> None:
    """Save configuration to file."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "organized_root": config.store.organized_root,
            "metadata_suffix": config.store.metadata_suffix,
            "memory_dir": config.store.memory_dir,
        },
        "search": {
            "expand_synonyms": config.search.expand_synonyms,
            "fuzzy_threshold": config.search.fuzzy_threshold,
            "max_results": config.search.max_results,
            "use_cache": config.search.use_cache,
        },
        "ranking": {
            "field_weight": config.ranking.field_weight,
            "name_weight": config.ranking.name_weight,
            "text_weight": config.ranking.text_weight,
            "memory_weight": config.ranking.memory_weight,
            "document_weight": config.ranking.document_weight,
            "name_similarity_floor": config.ranking.name_similarity_floor,
            "text_similarity_floor": config.ranking.text_similarity_floor,
        },
        "synthesis": {
            "min_relevance": config.synthesis.min_relevance,
            "max_memory_hits": config.synthesis.max_memory_hits,
            "max_document_hits": config.synthesis.max_document_hits,
            "confidence_cap": config.synthesis.confidence_cap,
            "excerpt_chars": config.synthesis.excerpt_chars,
        },
        "cache": {
            "max_entries": config.cache.max_entries,
        },
    }

    with open(CONFIG_PATH, "w") as f:
        json.dump(data, f, indent=2)
