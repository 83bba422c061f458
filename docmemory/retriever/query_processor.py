"""
Query Processor

Turns a raw question into deterministic search features: normalized text,
stop-word-free tokens with synonym expansions, monetary amounts, dates,
proper names and structured filters (status:/category:, value comparisons
such as "over $50k", relative dates such as "last 3 months").
"""

import calendar
import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional, Tuple

from ..common.language import ENGLISH, LanguageInfo, detect_language
from ..common.schemas import DocumentRecord
from .vocabulary import STOP_WORDS, expansions_for

_MULTIPLIERS = {
    "k": 1_000, "thousand": 1_000,
    "m": 1_000_000, "mm": 1_000_000, "million": 1_000_000,
    "b": 1_000_000_000, "bn": 1_000_000_000, "billion": 1_000_000_000,
}
_SCALE = r"(?:\s*(thousand|million|billion|mm|bn|k|m|b))?"
_NUMBER = r"(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)"

# $25,000 / $ 1.5M / €10k
_CURRENCY_AMOUNT_RE = re.compile(r"[$€£¥]\s?" + _NUMBER + _SCALE + r"(?![\w,])", re.IGNORECASE)
# 25k USD / 1,000 dollars
_SUFFIX_AMOUNT_RE = re.compile(r"\b" + _NUMBER + _SCALE + r"\s*(?:usd|dollars?)\b", re.IGNORECASE)
_BARE_NUMBER_RE = re.compile(r"(?<![\w.-])" + _NUMBER + r"(?![\w-])")

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "sept": 9, "oct": 10, "nov": 11, "dec": 12,
}
_ISO_DATE_RE = re.compile(r"\b(\d{4})[-/](\d{1,2})[-/](\d{1,2})\b")
_US_DATE_RE = re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{4})\b")
_NAMED_DATE_RE = re.compile(
    r"\b(jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.?\s+"
    r"(\d{1,2})(?:st|nd|rd|th)?,?\s+(\d{4})\b",
    re.IGNORECASE,
)

_POSSESSIVE_RE = re.compile(r"(\w)['’]s\b")
_PUNCT_RE = re.compile(r"[^\w\s]|_")

# status:executed / category:Templates
_STATUS_FILTER_RE = re.compile(r"\bstatus:(\w+)", re.IGNORECASE)
_CATEGORY_FILTER_RE = re.compile(r"\bcategory:([\w-]+)", re.IGNORECASE)

# A comparison value; "3 months" is a period, not a value
_VALUE = (
    r"(?:[$€£¥]\s?)?(?P<number>\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)"
    r"(?:\s*(?P<scale>thousand|million|billion|mm|bn|k|m|b))?(?![\w,/-])(?:\s*(?:usd|dollars?)\b)?"
    r"(?!\s*(?:days?|weeks?|months?|years?)\b)"
)
_COMPARISONS = (
    (re.compile(_VALUE + r"\s+or\s+(?:more|greater|higher|above)\b", re.IGNORECASE), ">="),
    (re.compile(_VALUE + r"\s+or\s+(?:less|fewer|lower|below)\b", re.IGNORECASE), "<="),
    (re.compile(r"\bat\s+least\s+" + _VALUE, re.IGNORECASE), ">="),
    (re.compile(r"\bat\s+most\s+" + _VALUE, re.IGNORECASE), "<="),
    (re.compile(r"\b(?:more|greater|higher)\s+than\s+" + _VALUE, re.IGNORECASE), ">"),
    (re.compile(r"\b(?:less|fewer|lower)\s+than\s+" + _VALUE, re.IGNORECASE), "<"),
    (re.compile(r"\b(?:over|above|exceeding)\s+" + _VALUE, re.IGNORECASE), ">"),
    (re.compile(r"\b(?:under|below)\s+" + _VALUE, re.IGNORECASE), "<"),
)

_RELATIVE_PERIOD_RE = re.compile(
    r"\b(last|past|previous|next)\s+(?:(\d{1,4})\s+)?(day|week|month|year)s?\b", re.IGNORECASE
)
_CURRENT_PERIOD_RE = re.compile(r"\bthis\s+(week|month|year)\b", re.IGNORECASE)
_RELATIVE_DAY_RE = re.compile(r"\b(yesterday|today|tomorrow)\b", re.IGNORECASE)
_DAY_OFFSETS = {"yesterday": -1, "today": 0, "tomorrow": 1}


@dataclass(frozen=True)
class QueryToken:
    """One query word and its synonym OR-set"""
    original: str
    expansions: Tuple[str, ...] = ()
    proper: bool = False  # part of a proper name

    @property
    def terms(self) -> Tuple[str, ...]:
        return (self.original,) + self.expansions


@dataclass(frozen=True)
class QueryFilters:
    """
    Structured constraints on which documents a query may return.

    Records missing the compared field (no contract value, no executed or
    effective date) are not excluded by value or date bounds.
    """
    statuses: Tuple[str, ...] = ()
    categories: Tuple[str, ...] = ()
    min_value: Optional[Decimal] = None
    min_inclusive: bool = False
    max_value: Optional[Decimal] = None
    max_inclusive: bool = False
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    @property
    def is_empty(self) -> bool:
        return self == QueryFilters()

    def describe(self) -> str:
        """Stable one-line rendering, also used in cache keys"""
        parts = []
        if self.statuses:
            parts.append(f"status={'|'.join(self.statuses)}")
        if self.categories:
            parts.append(f"category={'|'.join(self.categories)}")
        if self.min_value is not None:
            parts.append(f"value{'>=' if self.min_inclusive else '>'}{self.min_value}")
        if self.max_value is not None:
            parts.append(f"value{'<=' if self.max_inclusive else '<'}{self.max_value}")
        if self.date_from:
            parts.append(f"date>={self.date_from.isoformat()}")
        if self.date_to:
            parts.append(f"date<={self.date_to.isoformat()}")
        return "; ".join(parts)

    def accepts(self, record: DocumentRecord) -> bool:
        if self.statuses and record.status.value not in self.statuses:
            return False

        if self.categories:
            names = {record.category.lower()}
            if record.folder is not None:
                names.add(record.folder.value.lower())
            if not names & set(self.categories):
                return False

        if self.date_from or self.date_to:
            found = extract_dates(record.fully_executed_date or record.effective_date or "")
            if found:
                when = date.fromisoformat(found[0])
                if self.date_from and when < self.date_from:
                    return False
                if self.date_to and when > self.date_to:
                    return False

        if self.min_value is not None or self.max_value is not None:
            found = extract_amounts(record.contract_value or "", bare_numbers=True)
            if found:
                value = Decimal(found[0])
                if self.min_value is not None:
                    if value < self.min_value or (value == self.min_value and not self.min_inclusive):
                        return False
                if self.max_value is not None:
                    if value > self.max_value or (value == self.max_value and not self.max_inclusive):
                        return False
        return True


@dataclass(frozen=True)
class QueryFeatures:
    """Parsed representation of a search query"""
    normalized: str
    tokens: Tuple[QueryToken, ...] = ()
    amounts: Tuple[str, ...] = ()
    dates: Tuple[str, ...] = ()
    proper_names: Tuple[str, ...] = ()
    language: LanguageInfo = field(default=ENGLISH)
    filters: QueryFilters = field(default_factory=QueryFilters)

    @property
    def has_terms(self) -> bool:
        return bool(self.tokens or self.amounts or self.dates or self.proper_names)

    @property
    def is_empty(self) -> bool:
        return not self.has_terms and self.filters.is_empty

    @property
    def term_tokens(self) -> Tuple[QueryToken, ...]:
        """Tokens outside proper names"""
        return tuple(t for t in self.tokens if not t.proper)


# ============================================================================
# Amount / date extraction (shared with the ranker)
# ============================================================================

def canonical_amount(number: str, scale: Optional[str] = None) -> Optional[str]:
    """'1.5', 'm' -> '1500000'"""
    try:
        value = Decimal(number.replace(",", ""))
    except InvalidOperation:
        return None
    if scale:
        value *= _MULTIPLIERS.get(scale.lower(), 1)
    value = value.normalize()
    if value == value.to_integral_value():
        return str(value.quantize(Decimal(1)))
    return format(value, "f")


def _amount_spans(text: str, bare_numbers: bool = False) -> List[Tuple[int, int, str]]:
    spans = []
    patterns = [_CURRENCY_AMOUNT_RE, _SUFFIX_AMOUNT_RE]
    for pattern in patterns:
        for m in pattern.finditer(text):
            amount = canonical_amount(m.group(1), m.group(2))
            if amount is not None:
                spans.append((m.start(), m.end(), amount))
    if bare_numbers:
        for m in _BARE_NUMBER_RE.finditer(text):
            amount = canonical_amount(m.group(1))
            if amount is not None:
                spans.append((m.start(), m.end(), amount))
    return spans


def _date_spans(text: str) -> List[Tuple[int, int, str]]:
    spans = []
    candidates = []
    for m in _ISO_DATE_RE.finditer(text):
        candidates.append((m, int(m.group(1)), int(m.group(2)), int(m.group(3))))
    for m in _US_DATE_RE.finditer(text):
        candidates.append((m, int(m.group(3)), int(m.group(1)), int(m.group(2))))
    for m in _NAMED_DATE_RE.finditer(text):
        month = _MONTHS[m.group(1).lower()]
        candidates.append((m, int(m.group(3)), month, int(m.group(2))))

    for m, year, month, day in candidates:
        try:
            iso = date(year, month, day).isoformat()
        except ValueError:
            continue
        spans.append((m.start(), m.end(), iso))
    return spans


def _non_overlapping(spans: Iterable[Tuple[int, int, str]]) -> List[Tuple[int, int, str]]:
    """Keep the earliest, then longest, span of every overlapping group"""
    chosen: List[Tuple[int, int, str]] = []
    for span in sorted(spans, key=lambda s: (s[0], -(s[1] - s[0]))):
        if chosen and span[0] < chosen[-1][1]:
            continue
        chosen.append(span)
    return chosen


def extract_amounts(text: str, bare_numbers: bool = False) -> List[str]:
    """Canonical amounts in text, in order of appearance"""
    if not text:
        return []
    date_spans = _date_spans(text)
    spans = _non_overlapping(date_spans + _amount_spans(text, bare_numbers))
    date_set = set(date_spans)
    return list(dict.fromkeys(s[2] for s in spans if s not in date_set))


def extract_dates(text: str) -> List[str]:
    """ISO dates in text, in order of appearance"""
    if not text:
        return []
    return list(dict.fromkeys(s[2] for s in _non_overlapping(_date_spans(text))))


# ============================================================================
# Filter extraction
# ============================================================================

def _shift(day: date, unit: str, count: int) -> date:
    """day moved by count units; month ends are clamped (Mar 31 - 1 month = Feb 29)"""
    if unit == "day":
        return day + timedelta(days=count)
    if unit == "week":
        return day + timedelta(weeks=count)
    months = count * 12 if unit == "year" else count
    year, month = divmod(day.year * 12 + day.month - 1 + months, 12)
    month += 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def _relative_date_spans(text: str, today: date) -> List[tuple]:
    """(start, end, (date_from, date_to)) for every relative date phrase"""
    spans = []
    for m in _RELATIVE_PERIOD_RE.finditer(text):
        direction = m.group(1).lower()
        count = int(m.group(2) or 1)
        unit = m.group(3).lower()
        try:
            if direction == "next":
                window = (today, _shift(today, unit, count))
            else:
                window = (_shift(today, unit, -count), today)
        except (ValueError, OverflowError):
            continue
        spans.append((m.start(), m.end(), window))

    for m in _CURRENT_PERIOD_RE.finditer(text):
        unit = m.group(1).lower()
        if unit == "week":
            begin = today - timedelta(days=(today.weekday() + 1) % 7)
        elif unit == "month":
            begin = today.replace(day=1)
        else:
            begin = today.replace(month=1, day=1)
        spans.append((m.start(), m.end(), (begin, None)))

    for m in _RELATIVE_DAY_RE.finditer(text):
        day = today + timedelta(days=_DAY_OFFSETS[m.group(1).lower()])
        spans.append((m.start(), m.end(), (day, day)))
    return spans


def extract_filters(text: str, today: Optional[date] = None) -> Tuple[QueryFilters, List[Tuple[int, int, str]]]:
    """
    Pull structured filters out of a query.

    Returns the filters and the (start, end, label) spans they came from, so
    the caller can keep that text out of the search terms. The first lower
    and the first upper value bound win, as does the first date phrase.
    """
    today = today or date.today()
    spans = []

    statuses = []
    for m in _STATUS_FILTER_RE.finditer(text):
        statuses.append(m.group(1).lower())
        spans.append((m.start(), m.end(), "status"))
    categories = []
    for m in _CATEGORY_FILTER_RE.finditer(text):
        categories.append(m.group(1).lower())
        spans.append((m.start(), m.end(), "category"))

    bounds = {}
    comparisons = _non_overlapping(
        (m.start(), m.end(), (operator, m))
        for pattern, operator in _COMPARISONS
        for m in pattern.finditer(text)
    )
    for start, end, (operator, m) in comparisons:
        spans.append((start, end, "value"))
        amount = canonical_amount(m.group("number"), m.group("scale"))
        side = "min" if operator.startswith(">") else "max"
        if amount is not None and side not in bounds:
            bounds[side] = (Decimal(amount), operator.endswith("="))

    window = None
    for start, end, found in _non_overlapping(_relative_date_spans(text, today)):
        spans.append((start, end, "date"))
        if window is None:
            window = found

    min_value, min_inclusive = bounds.get("min", (None, False))
    max_value, max_inclusive = bounds.get("max", (None, False))
    date_from, date_to = window or (None, None)
    filters = QueryFilters(
        statuses=tuple(dict.fromkeys(statuses)),
        categories=tuple(dict.fromkeys(categories)),
        min_value=min_value,
        min_inclusive=min_inclusive,
        max_value=max_value,
        max_inclusive=max_inclusive,
        date_from=date_from,
        date_to=date_to,
    )
    return filters, spans


def _mask(text: str, spans: Iterable[Tuple[int, int, str]]) -> str:
    """Blank out spans, keeping every other offset in place"""
    chars = list(text)
    for start, end, _ in spans:
        chars[start:end] = " " * (end - start)
    return "".join(chars)


# ============================================================================
# Processor
# ============================================================================

class QueryProcessor:
    """
    Processes raw questions into QueryFeatures.

    Responsibilities:
    1. Pull filters, then amounts and dates, out of the raw text
    2. Normalize case, possessives and punctuation
    3. Drop stop words and one-character tokens
    4. Detect proper names (capitalized multi-word spans)
    5. Expand tokens with synonyms (English queries only)
    """

    STOP_WORDS = STOP_WORDS

    def parse(
        self,
        query: str,
        expand_synonyms: bool = True,
        today: Optional[date] = None,
    ) -> QueryFeatures:
        """
        Parse a raw query.

        Args:
            query: Raw user query string
            expand_synonyms: Attach synonym OR-sets to tokens
            today: Reference date for relative date filters (default: today)

        Returns:
            QueryFeatures; identical input (and reference date) always yields
            identical output
        """
        language = detect_language(query)
        filters, filter_spans = extract_filters(query, today)
        query = _mask(query, filter_spans)

        date_spans = _date_spans(query)
        spans = _non_overlapping(date_spans + _amount_spans(query))
        date_set = set(date_spans)
        amounts = tuple(dict.fromkeys(s[2] for s in spans if s not in date_set))
        dates = tuple(dict.fromkeys(s[2] for s in spans if s in date_set))

        # Text outside the amount/date spans
        pieces = []
        normalized_parts = []
        last = 0
        for start, end, canonical in spans:
            pieces.append(query[last:start])
            normalized_parts.append(self._clean_query(query[last:start]))
            normalized_parts.append(canonical)
            last = end
        pieces.append(query[last:])
        normalized_parts.append(self._clean_query(query[last:]))
        remaining = " ".join(pieces)

        normalized = " ".join(p for p in normalized_parts if p)
        proper_names = tuple(self._extract_proper_names(remaining))
        name_words = {w for name in proper_names for w in name.split()}

        expand = expand_synonyms and language.is_english
        tokens = []
        for word in dict.fromkeys(self._clean_query(remaining).split()):
            if word in self.STOP_WORDS or len(word) < 2:
                continue
            proper = word in name_words
            expansions = expansions_for(word) if expand and not proper else ()
            tokens.append(QueryToken(original=word, expansions=expansions, proper=proper))

        return QueryFeatures(
            normalized=normalized,
            tokens=tuple(tokens),
            amounts=amounts,
            dates=dates,
            proper_names=proper_names,
            language=language,
            filters=filters,
        )

    def _clean_query(self, text: str) -> str:
        """Lowercase, drop possessives and punctuation, collapse whitespace"""
        cleaned = _POSSESSIVE_RE.sub(r"\1", text.lower())
        cleaned = _PUNCT_RE.sub(" ", cleaned)
        return re.sub(r"\s+", " ", cleaned).strip()

    def _extract_proper_names(self, text: str) -> List[str]:
        """Capitalized multi-word spans, lower-cased.

        A name needs at least two capitalized words, so a sentence-case
        first word alone is ignored while a leading "Bo Ren" is kept.
        All-caps words (SAFE, EIN, NDA) are acronyms and end a name; a
        possessive word is the last word of its name.
        """
        names = []
        run: List[str] = []

        def _flush() -> None:
            if len(run) >= 2:
                names.append(" ".join(run).lower())
            run.clear()

        for raw in text.split():
            word = _POSSESSIVE_RE.sub(r"\1", raw)
            possessive = word != raw
            stripped = word.strip("\"'“”‘’()[]{}")
            ends_phrase = possessive or bool(re.search(r"[,.;:!?)\]]$", stripped))
            stripped = re.sub(r"[^\w&.-]+$", "", stripped).rstrip(".")
            capitalized = bool(stripped) and stripped[0].isupper()
            acronym = len(stripped) > 1 and stripped.isupper()

            if not capitalized or acronym or stripped.lower() in self.STOP_WORDS:
                _flush()
            else:
                run.append(stripped)

            if ends_phrase:
                _flush()
        _flush()

        return list(dict.fromkeys(names))
