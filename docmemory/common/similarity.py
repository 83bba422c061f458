"""
String Similarity

Normalized edit-distance similarity used for typo-tolerant name, word and
filename matching. Rows of the Levenshtein table are computed with numpy.
"""

from typing import Any, Callable, Iterable, Optional, Tuple

import numpy as np


def levenshtein(a: str, b: str) -> int:
    """Edit distance (insert, delete, substitute) between two strings"""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    if len(a) < len(b):
        a, b = b, a

    b_codes = np.array([ord(c) for c in b], dtype=np.int64)
    idx = np.arange(len(b) + 1, dtype=np.int64)
    prev = idx.copy()

    for i, ch in enumerate(a, 1):
        cost = (b_codes != ord(ch)).astype(np.int64)
        cur = np.empty_like(prev)
        cur[0] = i
        cur[1:] = np.minimum(prev[1:] + 1, prev[:-1] + cost)
        # Insertions: cur[j] = min_k(cur[k] + j - k)
        cur = np.minimum.accumulate(cur - idx) + idx
        prev = cur

    return int(prev[-1])


def similarity(a: str, b: str) -> float:
    """
    Normalized similarity in [0, 1]: 1 - distance / max(len).

    Comparison is case-insensitive; two empty strings are identical.
    """
    a = a.lower().strip()
    b = b.lower().strip()
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein(a, b) / longest


def best_match(
    term: str,
    candidates: Iterable[Any],
    key: Optional[Callable[[Any], str]] = None,
) -> Tuple[Optional[Any], float]:
    """
    Most similar candidate for a term.

    Candidates are compared as strings, or through key when given. Ties
    resolve to the first candidate in iteration order.

    Returns:
        (candidate, score), or (None, 0.0) when there are no candidates
    """
    pool = list(candidates)
    if not pool:
        return None, 0.0
    scores = np.array([similarity(term, key(c) if key else c) for c in pool])
    best = int(np.argmax(scores))
    return pool[best], float(scores[best])
