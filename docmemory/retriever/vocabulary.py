"""
Search Vocabulary

Stop words and the versioned synonym / abbreviation table for legal and
corporate documents. Bump SYNONYMS_VERSION whenever an entry changes; cached
results keyed on an older table must not be reused across versions.
"""

from typing import Dict, FrozenSet, Tuple

SYNONYMS_VERSION = "2"

STOP_WORDS: FrozenSet[str] = frozenset({
    "the", "a", "an", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "must", "shall", "can", "need",
    "to", "of", "in", "for", "on", "with", "at", "by",
    "from", "up", "about", "into", "over", "after", "we", "our", "us",
    "i", "me", "my", "you", "your", "it", "its", "they", "them", "their",
    "this", "that", "these", "those", "what", "which", "who", "whom",
    "when", "where", "why", "how", "and", "or", "but", "if", "because",
    "as", "until", "while", "just", "also", "any", "all", "there",
    "much", "many", "tell", "show", "find", "give", "list", "please",
    "get", "know", "whose",
})

# Legal / corporate synonyms
_SYNONYMS: Dict[str, Tuple[str, ...]] = {
    # Investment documents
    "investment": ("safe", "convertible note", "investment agreement", "funding", "capital", "equity"),
    "invest": ("investment", "investor", "funding", "safe"),
    "invested": ("investment", "investor", "funding", "safe"),
    "investing": ("investment", "investor", "funding", "safe"),
    "safe": ("safe agreement", "simple agreement for future equity", "investment"),
    "convertible": ("convertible note", "convertible debt", "conversion agreement"),
    "funding": ("investment", "capital raise", "financing", "round"),
    "investor": ("shareholder", "stockholder", "equity holder", "partner"),
    "investors": ("investor", "shareholder", "stockholder"),

    # Employment documents
    "employment": ("offer letter", "employment agreement", "contractor agreement", "work agreement", "job offer"),
    "contractor": ("independent contractor", "consultant", "freelancer", "1099", "consulting agreement"),
    "offer": ("offer letter", "employment offer", "job offer"),
    "employee": ("employment", "staff", "w2"),

    # Legal entities
    "company": ("corporation", "entity", "business", "organization", "firm"),
    "founder": ("co-founder", "founding member", "entrepreneur"),

    # IP documents
    "ip": ("intellectual property", "patent", "trademark", "copyright", "invention"),
    "nda": ("non-disclosure agreement", "nondisclosure agreement", "confidentiality agreement", "confidential"),
    "assignment": ("invention assignment", "ip assignment", "transfer agreement"),

    # Corporate documents
    "bylaws": ("by-laws", "corporate bylaws", "company bylaws"),
    "incorporation": ("articles of incorporation", "certificate of incorporation", "charter"),
    "board": ("board resolution", "board consent", "director resolution"),

    # Financial terms
    "revenue": ("sales", "income", "earnings", "receipts"),
    "expense": ("cost", "spending", "expenditure", "outlay"),
    "equity": ("stock", "shares", "ownership", "stake"),
    "debt": ("loan", "liability", "obligation", "borrowing"),

    # Status terms
    "signed": ("executed", "completed", "finalized"),
    "unsigned": ("draft", "pending", "not executed", "incomplete"),
    "template": ("blank", "form", "sample", "model"),
    "templates": ("template", "blank", "form"),

    # Time-related
    "recent": ("latest", "newest", "current", "last"),
    "expired": ("lapsed", "terminated", "ended"),
    "active": ("current", "valid", "in effect", "ongoing"),
}

_ABBREVIATIONS: Dict[str, Tuple[str, ...]] = {
    # Legal
    "tos": ("terms of service",),
    "sla": ("service level agreement",),
    "msa": ("master service agreement",),
    "sow": ("statement of work",),
    "loi": ("letter of intent",),
    "mou": ("memorandum of understanding",),

    # Corporate
    "llc": ("limited liability company",),
    "inc": ("incorporated", "incorporation"),
    "corp": ("corporation",),
    "dba": ("doing business as",),
    "ein": ("employer identification number", "tax id"),
    "tin": ("taxpayer identification number", "tax id"),
    "ceo": ("chief executive officer",),
    "cfo": ("chief financial officer",),
    "cto": ("chief technology officer",),

    # Financial
    "arr": ("annual recurring revenue",),
    "mrr": ("monthly recurring revenue",),
    "cap": ("capitalization", "cap table", "valuation cap"),
    "vc": ("venture capital", "venture capitalist"),
    "ipo": ("initial public offering",),

    # Employment
    "pto": ("paid time off",),
    "hr": ("human resources",),
    "w2": ("employee", "w-2 employee"),
    "1099": ("contractor", "independent contractor"),
}


def _merge(*tables: Dict[str, Tuple[str, ...]]) -> Dict[str, Tuple[str, ...]]:
    merged: Dict[str, Dict[str, None]] = {}
    for table in tables:
        for term, related in table.items():
            bucket = merged.setdefault(term.lower(), {})
            for r in related:
                if r.lower() != term.lower():
                    bucket[r.lower()] = None
    return {term: tuple(related) for term, related in merged.items()}


SYNONYMS: Dict[str, Tuple[str, ...]] = _merge(_SYNONYMS, _ABBREVIATIONS)


def expansions_for(term: str) -> Tuple[str, ...]:
    """Synonym OR-set for a lowercase term, in table order"""
    return SYNONYMS.get(term.lower(), ())
