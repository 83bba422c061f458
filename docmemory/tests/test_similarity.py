"""
Tests for edit-distance similarity
"""

import pytest


class TestLevenshtein:
    @pytest.mark.parametrize("a, b, distance", [
        ("", "", 0),
        ("abc", "", 3),
        ("", "abc", 3),
        ("kitten", "sitting", 3),
        ("flaw", "lawn", 2),
        ("safe", "safe", 0),
        ("ab", "ba", 2),
    ])
    def test_distance(self, a, b, distance):
        from docmemory.common.similarity import levenshtein

        assert levenshtein(a, b) == distance
        assert levenshtein(b, a) == distance


class TestSimilarity:
    def test_case_insensitive(self):
        from docmemory.common.similarity import similarity

        assert similarity("Bo Ren", "bo ren") == 1.0

    def test_empty_strings_are_identical(self):
        from docmemory.common.similarity import similarity

        assert similarity("", "") == 1.0
        assert similarity("abc", "") == 0.0

    def test_typo_tolerance(self):
        from docmemory.common.similarity import similarity

        assert similarity("investmnet", "investment") == pytest.approx(0.8)
        assert similarity("nda", "bylaws") < 0.5


class TestBestMatch:
    def test_best_match(self):
        from docmemory.common.similarity import best_match

        candidate, score = best_match("Mutual_NDA", ["Bylaws.pdf", "Mutual_NDA.docx", "NDA.pdf"])

        assert candidate == "Mutual_NDA.docx"
        assert score == pytest.approx(1 - 5 / 15)

    def test_ties_resolve_to_first(self):
        from docmemory.common.similarity import best_match

        assert best_match("ab", ["ax", "xb"])[0] == "ax"

    def test_no_candidates(self):
        from docmemory.common.similarity import best_match

        assert best_match("anything", []) == (None, 0.0)

    def test_key_selects_compared_text(self):
        from pathlib import PurePath
        from docmemory.common.similarity import best_match

        paths = [PurePath("01/Bylaws.pdf"), PurePath("05/Mutual_NDA.docx")]

        candidate, score = best_match("mutual_nda", paths, key=lambda p: p.stem)

        assert candidate == PurePath("05/Mutual_NDA.docx")
        assert score == 1.0
