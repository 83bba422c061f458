"""
Synthesizer

Assembles a short answer from the ranked hits: memory facts first, then
supporting documents. No text generation beyond fixed sentence patterns.

Key principle: every sentence carries its source.
- memory fact -> bucket + fact key
- document    -> category + record id
"""

import logging
from typing import List, Optional, Sequence

from ..common.config import SynthesisConfig
from .models import Answer, AnswerSource, DocumentHit, MemoryHit, SearchResult

logger = logging.getLogger("docmemory.retriever.synthesizer")


def _sentence_value(value: str) -> str:
    return value.strip().rstrip(".")


def _capitalize(text: str) -> str:
    return text[:1].upper() + text[1:]


class Synthesizer:
    """
    Builds an Answer from memory and document hits.

    Usage:
        synthesizer = Synthesizer(config.synthesis)
        answer = synthesizer.synthesize(memory_hits, documents)
    """

    def __init__(self, config: Optional[SynthesisConfig] = None):
        self._config = config or SynthesisConfig()

    def synthesize(
        self,
        memory_hits: Sequence[MemoryHit],
        documents: Sequence[DocumentHit],
    ) -> Optional[Answer]:
        """
        Assemble an answer, or None when no hit clears the relevance floor.

        Never raises; a failure is logged and yields None.
        """
        try:
            return self._assemble(memory_hits, documents)
        except Exception as e:
            logger.warning("Answer synthesis failed: %s", e)
            return None

    def _assemble(
        self,
        memory_hits: Sequence[MemoryHit],
        documents: Sequence[DocumentHit],
    ) -> Optional[Answer]:
        cfg = self._config
        facts = [h for h in memory_hits if h.relevance >= cfg.min_relevance][: cfg.max_memory_hits]
        docs = [h for h in documents if h.relevance >= cfg.min_relevance][: cfg.max_document_hits]
        if not facts and not docs:
            return None

        sentences: List[str] = []
        sources: List[AnswerSource] = []

        for i, hit in enumerate(facts):
            fact = hit.fact
            value = _sentence_value(fact.value)
            if i == 0:
                sentences.append(f"{_capitalize(fact.fact_key)}: {value}.")
            else:
                sentences.append(f"Also, {fact.fact_key}: {value}.")
            sources.append(AnswerSource(
                kind="memory",
                group=fact.bucket,
                reference=fact.fact_key,
                excerpt=self._excerpt(f"{fact.fact_key}: {fact.value}"),
            ))

        for hit in docs:
            record = hit.record
            details = [record.category, record.status.value]
            if record.contract_value:
                details.append(record.contract_value)
            sentences.append(f"See {record.filename} ({', '.join(details)}).")
            sources.append(AnswerSource(
                kind="document",
                group=record.category,
                reference=record.id,
                excerpt=self._excerpt(self._document_excerpt(hit)),
            ))

        top = max(h.relevance for h in (facts + docs))
        confidence = round(min(top, cfg.confidence_cap), 4)

        return Answer(text=" ".join(sentences), confidence=confidence, sources=tuple(sources))

    @staticmethod
    def _document_excerpt(hit: DocumentHit) -> str:
        free_text = hit.record.free_text_fields
        if free_text.business_context:
            return free_text.business_context
        if free_text.key_terms:
            return "; ".join(free_text.key_terms)
        return hit.match_reason or hit.record.filename

    def _excerpt(self, text: str) -> str:
        limit = self._config.excerpt_chars
        text = " ".join(text.split())
        if len(text) <= limit:
            return text
        return text[: limit - 3].rstrip() + "..."


def format_answer_for_display(result: SearchResult) -> str:
    """Format a search result for CLI/chat display"""
    if result.answer is None:
        lines = ["No matching facts or documents found."]
    else:
        lines = [
            result.answer.text,
            "",
            f"**Confidence**: {result.answer.confidence:.0%}",
        ]
        if result.answer.sources:
            lines.append("")
            lines.append("**Sources**:")
            for s in result.answer.sources:
                lines.append(f"  - [{s.kind}:{s.group}] {s.reference}")

    if result.documents:
        lines.append("")
        lines.append("**Documents**:")
        for hit in result.documents[:5]:
            lines.append(f"  - {hit.summary} [{hit.match_type.value}, {hit.relevance:.2f}]")

    lines.append("")
    lines.append(f"_Path: {result.search_path.value}, {result.performance.total_time_ms:.1f} ms_")
    return "\n".join(lines)
