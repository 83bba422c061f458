"""
Query Language Detection

Per-query language detection using langdetect + Unicode script fallback.
The stop-word list and synonym table are English, so non-English queries
skip synonym expansion.
"""

import re
from dataclasses import dataclass
from typing import Optional

from langdetect import DetectorFactory, detect_langs
from langdetect.lang_detect_exception import LangDetectException

# Seed langdetect for deterministic results
DetectorFactory.seed = 0

# Latin queries with fewer words are English; langdetect is unreliable on them
MIN_DETECT_WORDS = 8
# Minimum langdetect probability for calling a Latin query non-English
MIN_LATIN_CONFIDENCE = 0.9

_LETTER_WORD_RE = re.compile(r"[^\W\d_]+")

# Matches any Hangul, Kana, or CJK character
_NON_LATIN_RE = re.compile(
    r'[\u1100-\u11FF\u3040-\u309F\u30A0-\u30FF\u3130-\u318F'
    r'\u3400-\u4DBF\u4E00-\u9FFF\uAC00-\uD7AF]'
)

# Unicode range based script detection
_SCRIPT_RANGES = [
    (0xAC00, 0xD7AF, "Hangul", "ko"),
    (0x1100, 0x11FF, "Hangul", "ko"),
    (0x3130, 0x318F, "Hangul", "ko"),
    (0x3040, 0x309F, "Kana", "ja"),
    (0x30A0, 0x30FF, "Kana", "ja"),
    (0x4E00, 0x9FFF, "CJK", "zh"),
    (0x3400, 0x4DBF, "CJK", "zh"),
]


@dataclass(frozen=True)
class LanguageInfo:
    """Detected language information"""
    code: str           # ISO 639-1: "en", "ko", "ja"
    confidence: float   # 0.0~1.0
    script: str         # "Latin", "Hangul", "CJK", "Kana"

    @property
    def is_english(self) -> bool:
        return self.code == "en"


ENGLISH = LanguageInfo(code="en", confidence=1.0, script="Latin")


def _detect_script(text: str) -> tuple[str, Optional[str]]:
    """Detect dominant non-Latin script from Unicode character ranges.

    Returns:
        (script_name, language_code) or ("Latin", None) for Latin-dominant text
    """
    counts: dict[tuple[str, str], int] = {}
    total = 0

    for ch in text:
        if ch.isspace() or not ch.isalnum():
            continue
        total += 1
        cp = ord(ch)
        for start, end, script, lang in _SCRIPT_RANGES:
            if start <= cp <= end:
                counts[(script, lang)] = counts.get((script, lang), 0) + 1
                break

    if total == 0 or not counts:
        return "Latin", None

    # CJK ideographs mixed with Kana are Japanese
    if any(script == "Kana" for script, _ in counts):
        return "Kana", "ja"

    (script, lang), count = max(counts.items(), key=lambda item: (item[1], item[0]))
    if count > total * 0.15:
        return script, lang
    return "Latin", None


def detect_language(text: str) -> LanguageInfo:
    """Detect language of a query.

    Short Latin-script text is treated as English: langdetect misclassifies
    short English questions ("What is our EIN?") as fr, af, nl and so on.
    Longer Latin queries are labelled non-English only when langdetect is
    confident about it.

    Args:
        text: Raw query text

    Returns:
        LanguageInfo with detected language code, confidence, and script
    """
    if not text or not text.strip():
        return ENGLISH

    cleaned = text.strip()
    script, script_lang = _detect_script(cleaned)

    if not _NON_LATIN_RE.search(cleaned):
        return _detect_latin(cleaned)

    # Too short for langdetect
    if len(cleaned) < 10 and script_lang:
        return LanguageInfo(code=script_lang, confidence=0.6, script=script)

    try:
        results = detect_langs(cleaned)
    except LangDetectException:
        results = []

    if results:
        top = results[0]
        return LanguageInfo(code=top.lang, confidence=round(top.prob, 4), script=script)

    if script_lang:
        return LanguageInfo(code=script_lang, confidence=0.7, script=script)

    return LanguageInfo(code="en", confidence=0.5, script="Latin")


def _detect_latin(text: str) -> LanguageInfo:
    if len(_LETTER_WORD_RE.findall(text)) < MIN_DETECT_WORDS:
        return LanguageInfo(code="en", confidence=0.5, script="Latin")

    try:
        results = detect_langs(text)
    except LangDetectException:
        results = []

    if not results:
        return LanguageInfo(code="en", confidence=0.5, script="Latin")
    top = results[0]
    if top.lang == "en":
        return LanguageInfo(code="en", confidence=round(top.prob, 4), script="Latin")
    if top.prob >= MIN_LATIN_CONFIDENCE:
        return LanguageInfo(code=top.lang, confidence=round(top.prob, 4), script="Latin")
    return LanguageInfo(code="en", confidence=0.5, script="Latin")
