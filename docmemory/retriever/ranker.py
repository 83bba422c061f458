"""
Ranker

Two-pass retrieval over the memory index and the document records.

Memory pass: fraction of query terms found in a fact's key or value.
Document pass: weighted field / name / text sub-scores, renormalized over
the components that apply to the query.

All scores are rounded to 4 decimals and every sort has a total tie-break
order, so identical inputs always rank identically.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Set, Tuple

from ..common.config import RankingConfig
from ..common.schemas import DocumentRecord, MemoryFact
from ..common.similarity import similarity
from .models import DocumentHit, MatchType, MemoryHit, SearchOptions, SearchPath
from .query_processor import QueryFeatures, QueryToken, extract_amounts, extract_dates

logger = logging.getLogger("docmemory.retriever.ranker")

_WORD_RE = re.compile(r"[a-z0-9]+(?:[-'][a-z0-9]+)*")
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _words(text: str) -> List[str]:
    return _WORD_RE.findall(text.lower())


def _contains_phrase(haystack: str, phrase: str) -> bool:
    """Whole-word containment of phrase in a space-padded word string"""
    return f" {' '.join(_words(phrase))} " in haystack


def _padded(words: Sequence[str]) -> str:
    return f" {' '.join(words)} "


def _timestamp(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


@dataclass(frozen=True)
class DocumentScore:
    """Sub-scores for one record"""
    score: float
    field: float
    name: float
    text: float
    exact: bool
    matched_names: Tuple[str, ...]
    matched_terms: Tuple[str, ...]


@dataclass(frozen=True)
class Ranking:
    """Output of Ranker.rank"""
    memory_hits: Tuple[MemoryHit, ...]
    documents: Tuple[DocumentHit, ...]
    relevance: float
    search_path: SearchPath


class _RecordView:
    """Pre-tokenized searchable views of a record"""

    def __init__(self, record: DocumentRecord):
        field_words: List[str] = []
        for tag in record.tags:
            field_words.extend(_words(tag))
            field_words.append("|")
        field_words.extend(_words(record.category.replace("_", " ")))
        field_words.append("|")
        field_words.extend(_words(record.status.value.replace("_", " ")))
        field_words.append("|")
        if record.document_type:
            field_words.extend(_words(record.document_type))
            field_words.append("|")
        field_words.extend(_words(record.filename.replace("_", " ")))

        self.field_words: Set[str] = {w for w in field_words if w != "|"}
        self.field_text = _padded(field_words)

        free_text = " ".join(record.free_text_fields.texts())
        free_words = _words(free_text)
        self.free_words: Set[str] = set(free_words)
        self.free_text = _padded(free_words)

        self.names = [n.lower() for n in record.party_names()]

        money_text = " ".join(
            [record.contract_value or ""]
            + list(record.financial_terms.values())
            + list(record.critical_facts.values())
        )
        self.amounts = set(extract_amounts(money_text, bare_numbers=True))

        date_text = " ".join(
            [record.effective_date or "", record.expiration_date or "", record.fully_executed_date or ""]
            + [s.date_signed or "" for s in record.signers]
        )
        self.dates = set(extract_dates(date_text))


class Ranker:
    """
    Scores memory facts and document records against query features.

    Usage:
        ranker = Ranker(config.ranking)
        ranking = ranker.rank(features, options, index.query(), store.records())
    """

    def __init__(self, config: Optional[RankingConfig] = None):
        self._config = config or RankingConfig()

    # ------------------------------------------------------------------
    # Memory pass
    # ------------------------------------------------------------------

    def score_fact(self, fact: MemoryFact, features: QueryFeatures) -> float:
        """Matched terms / total terms for one fact"""
        text = fact.text.lower()
        total = 0
        matched = 0

        for token in features.term_tokens:
            total += 1
            if any(term in text for term in token.terms):
                matched += 1

        for name in features.proper_names:
            total += 1
            if name in text:
                matched += 1

        if features.amounts:
            fact_amounts = set(extract_amounts(fact.text, bare_numbers=True))
            for amount in features.amounts:
                total += 1
                if amount in fact_amounts:
                    matched += 1

        if features.dates:
            fact_dates = set(extract_dates(fact.text))
            for value in features.dates:
                total += 1
                if value in fact_dates:
                    matched += 1

        if total == 0:
            return 0.0
        return round(matched / total, 4)

    def memory_pass(
        self,
        features: QueryFeatures,
        facts: Sequence[MemoryFact],
        options: SearchOptions,
    ) -> List[MemoryHit]:
        """Facts at or above the threshold, best first"""
        threshold = options.fuzzy_threshold
        hits = []
        for fact in facts:
            score = self.score_fact(fact, features)
            if score >= threshold:
                hits.append(MemoryHit(fact=fact, relevance=score))

        if threshold == 0:
            hits.sort(key=lambda h: (-_timestamp(h.fact.last_updated), h.fact.bucket, h.fact.fact_key))
        else:
            hits.sort(key=lambda h: (
                -h.relevance,
                -_timestamp(h.fact.last_updated),
                h.fact.bucket,
                h.fact.fact_key,
            ))
        return hits

    # ------------------------------------------------------------------
    # Document pass
    # ------------------------------------------------------------------

    def _field_score(self, view: _RecordView, features: QueryFeatures) -> Tuple[float, bool, List[str]]:
        terms = features.term_tokens
        total = len(terms) + len(features.amounts) + len(features.dates)
        if total == 0:
            return 0.0, False, []

        matched = 0
        exact = False
        reasons = []
        for token in terms:
            if token.original in view.field_words:
                matched += 1
                exact = True
                reasons.append(token.original)
                continue
            for expansion in token.expansions:
                if _contains_phrase(view.field_text, expansion):
                    matched += 1
                    reasons.append(f"{expansion} ({token.original})")
                    break

        for amount in features.amounts:
            if amount in view.amounts:
                matched += 1
                exact = True
                reasons.append(amount)
        for value in features.dates:
            if value in view.dates:
                matched += 1
                exact = True
                reasons.append(value)

        return matched / total, exact, reasons

    def _name_score(self, view: _RecordView, features: QueryFeatures) -> Tuple[float, List[str]]:
        if not features.proper_names:
            return 0.0, []
        floor = self._config.name_similarity_floor
        total = 0.0
        matched = []
        for name in features.proper_names:
            best = 0.0
            padded_name = f" {name} "
            for candidate in view.names:
                if padded_name in f" {candidate} ":
                    best = 1.0
                    break
                best = max(best, similarity(name, candidate))
            if best >= floor:
                total += best
                matched.append(name)
        return total / len(features.proper_names), matched

    def _token_text_score(self, view: _RecordView, token: QueryToken) -> float:
        floor = self._config.text_similarity_floor
        best = 0.0
        for term in token.terms:
            if " " in term or "-" in term:
                if _contains_phrase(view.free_text, term):
                    return 1.0
                continue
            if term in view.free_words:
                return 1.0
            for word in view.free_words:
                # Edit distance cannot reach the floor when lengths differ too much
                if abs(len(word) - len(term)) > max(len(word), len(term)) * (1 - floor):
                    continue
                score = similarity(term, word)
                if score >= floor and score > best:
                    best = score
        return best

    def _text_score(self, view: _RecordView, features: QueryFeatures) -> float:
        terms = features.term_tokens
        if not terms or not view.free_words:
            return 0.0
        return sum(self._token_text_score(view, t) for t in terms) / len(terms)

    def score_document(self, record: DocumentRecord, features: QueryFeatures) -> DocumentScore:
        """Weighted field / name / text score for one record"""
        view = _RecordView(record)
        field_score, exact, field_terms = self._field_score(view, features)
        name_score, names = self._name_score(view, features)
        text_score = self._text_score(view, features)

        cfg = self._config
        weights = {}
        if features.proper_names:
            weights["name"] = cfg.name_weight
        if features.term_tokens or features.amounts or features.dates:
            weights["field"] = cfg.field_weight
        if features.term_tokens:
            weights["text"] = cfg.text_weight

        total_weight = sum(weights.values())
        if total_weight <= 0:
            score = 0.0
        else:
            score = (
                weights.get("field", 0.0) * field_score
                + weights.get("name", 0.0) * name_score
                + weights.get("text", 0.0) * text_score
            ) / total_weight

        return DocumentScore(
            score=round(score, 4),
            field=weights.get("field", 0.0) * field_score,
            name=weights.get("name", 0.0) * name_score,
            text=weights.get("text", 0.0) * text_score,
            exact=exact,
            matched_names=tuple(names),
            matched_terms=tuple(field_terms),
        )

    def _match_type(self, scored: DocumentScore) -> MatchType:
        if scored.matched_names:
            return MatchType.PARTY
        if scored.exact:
            return MatchType.EXACT
        if scored.text > scored.field:
            return MatchType.FUZZY
        if scored.field > 0:
            return MatchType.TAG
        return MatchType.FUZZY

    @staticmethod
    def _match_reason(scored: DocumentScore) -> str:
        parts = []
        if scored.matched_names:
            parts.append(f"party: {', '.join(scored.matched_names)}")
        if scored.matched_terms:
            parts.append(f"fields: {', '.join(scored.matched_terms)}")
        if scored.text > 0:
            parts.append(f"text: {scored.text:.2f}")
        return "; ".join(parts) or "no direct match"

    def document_pass(
        self,
        features: QueryFeatures,
        records: Sequence[DocumentRecord],
        options: SearchOptions,
        memory_hits: Sequence[MemoryHit] = (),
    ) -> List[DocumentHit]:
        """
        Records at or above the threshold plus records cited by memory hits.

        Records rejected by the query filters are never returned. A query
        made of filters alone returns every accepted record at relevance 1.0.
        """
        threshold = options.fuzzy_threshold
        filters = features.filters
        hits: Dict[str, DocumentHit] = {}
        by_id = {}

        for record in records:
            if not filters.accepts(record):
                continue
            by_id[record.id] = record
            if not features.has_terms:
                hits[record.id] = DocumentHit(
                    record=record,
                    relevance=1.0,
                    match_type=MatchType.EXACT,
                    match_reason=f"filter: {filters.describe()}",
                )
                continue
            scored = self.score_document(record, features)
            if scored.score >= threshold:
                hits[record.id] = DocumentHit(
                    record=record,
                    relevance=scored.score,
                    match_type=self._match_type(scored),
                    match_reason=self._match_reason(scored),
                )

        for memory_hit in memory_hits:
            fact = memory_hit.fact
            for record_id in sorted(fact.source_document_ids):
                record = by_id.get(record_id)
                if record is None or record_id in hits:
                    continue
                hits[record_id] = DocumentHit(
                    record=record,
                    relevance=memory_hit.relevance,
                    match_type=MatchType.MEMORY,
                    match_reason=f"cited by {fact.bucket}: {fact.fact_key}",
                )

        ordered = list(hits.values())
        if threshold == 0:
            ordered.sort(key=lambda h: (-_timestamp(h.record.updated_at), h.record.id))
        else:
            ordered.sort(key=lambda h: (-h.relevance, -_timestamp(h.record.updated_at), h.record.id))
        return ordered

    # ------------------------------------------------------------------
    # Combined
    # ------------------------------------------------------------------

    def rank(
        self,
        features: QueryFeatures,
        options: SearchOptions,
        facts: Sequence[MemoryFact],
        records: Sequence[DocumentRecord],
    ) -> Ranking:
        """Run both passes and assemble the truncated ranking."""
        if features.is_empty:
            return self.assemble([], [], options)
        memory_hits = self.memory_pass(features, facts, options)
        documents = self.document_pass(features, records, options, memory_hits)
        return self.assemble(memory_hits, documents, options)

    def assemble(
        self,
        memory_hits: Sequence[MemoryHit],
        documents: Sequence[DocumentHit],
        options: SearchOptions,
    ) -> Ranking:
        memory_hits = tuple(memory_hits[: options.max_results])
        documents = tuple(documents[: options.max_results])

        top_memory = max((h.relevance for h in memory_hits), default=0.0)
        top_document = max((h.relevance for h in documents), default=0.0)
        relevance = round(
            self._config.memory_weight * top_memory + self._config.document_weight * top_document, 4
        )

        if memory_hits and documents:
            path = SearchPath.HYBRID
        elif memory_hits:
            path = SearchPath.MEMORY_ONLY
        else:
            path = SearchPath.DOCUMENT_ONLY

        logger.debug(
            "Ranked %d memory hits, %d documents (relevance %.4f, %s)",
            len(memory_hits), len(documents), relevance, path.value,
        )
        return Ranking(memory_hits=memory_hits, documents=documents, relevance=relevance, search_path=path)
