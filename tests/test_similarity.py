"""
Tests — similarity kernel (names, Levenshtein ratio, cosine).
"""

import pytest

from activity_core.services.similarity import (
    SEMANTIC_SIMILARITY_THRESHOLD,
    cosine_similarity,
    distance_to_similarity,
    find_best_match,
    format_embedding_for_query,
    names_equal,
    normalize_name,
    string_similarity,
)


class _Named:
    def __init__(self, name):
        self.name = name


# ═══════════════════════════════════════════════════════════════════════════
#  normalize_name / names_equal
# ═══════════════════════════════════════════════════════════════════════════

class TestNormalizeName:

    def test_lowercases_and_trims(self):
        assert normalize_name("  Project Alpha  ") == "project alpha"

    def test_collapses_whitespace(self):
        assert normalize_name("Project \t  Alpha") == "project alpha"

    def test_strips_trailing_punctuation(self):
        assert normalize_name("Ship the release!!.") == "ship the release"

    @pytest.mark.parametrize("raw", [
        "Website redesign (50k)",
        "Website redesign ($300)",
        "Website redesign (1 200 руб.)",
        "Website redesign (2 млн)",
        "Website redesign (500 EUR)",
    ])
    def test_removes_cost_annotations(self, raw):
        assert normalize_name(raw) == "website redesign"

    def test_keeps_non_cost_parentheses(self):
        assert normalize_name("Website redesign (phase two)") == "website redesign (phase two)"

    def test_none_and_empty(self):
        assert normalize_name(None) == ""
        assert normalize_name("   ") == ""

    def test_names_equal_ignores_annotations_and_case(self):
        assert names_equal("Project Alpha (10k)", "project   alpha.")
        assert not names_equal("Project Alpha", "Project Beta")


# ═══════════════════════════════════════════════════════════════════════════
#  string_similarity / find_best_match
# ═══════════════════════════════════════════════════════════════════════════

class TestStringSimilarity:

    def test_kitten_sitting(self):
        assert string_similarity("kitten", "sitting") == pytest.approx(1 - 3 / 7, abs=1e-4)

    def test_identity(self):
        assert string_similarity("alpha", "alpha") == 1.0

    def test_case_insensitive(self):
        assert string_similarity("ALPHA", "alpha") == 1.0

    def test_empty_strings(self):
        assert string_similarity("", "") == 1.0
        assert string_similarity("", "x") == 0.0
        assert string_similarity("x", "") == 0.0

    @pytest.mark.parametrize("a,b", [
        ("kitten", "sitting"),
        ("Project Alpha", "Projekt Alfa"),
        ("a", "abc"),
    ])
    def test_symmetric(self, a, b):
        assert string_similarity(a, b) == string_similarity(b, a)

    def test_find_best_match_above_threshold(self):
        candidates = [_Named("Project Beta"), _Named("Project Alpha"), _Named("Gamma")]
        best, score = find_best_match("project alpah", candidates, threshold=0.8)
        assert best is candidates[1]
        assert score >= 0.8

    def test_find_best_match_none_below_threshold(self):
        best, _score = find_best_match("zzz", [_Named("Project Alpha")], threshold=0.8)
        assert best is None

    def test_find_best_match_custom_key(self):
        candidates = [{"title": "Alpha"}, {"title": "Beta"}]
        best, score = find_best_match("beta", candidates, threshold=0.5, key=lambda c: c["title"])
        assert best == {"title": "Beta"}
        assert score == 1.0


# ═══════════════════════════════════════════════════════════════════════════
#  Vectors
# ═══════════════════════════════════════════════════════════════════════════

class TestCosine:

    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_dimension_mismatch_raises(self):
        with pytest.raises(ValueError):
            cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])

    def test_zero_and_empty_vectors(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
        assert cosine_similarity([], []) == 0.0

    def test_distance_to_similarity(self):
        assert distance_to_similarity(0.25) == pytest.approx(0.75)

    def test_format_embedding_for_query(self):
        assert format_embedding_for_query([1, 0.5, -2]) == "[1.0,0.5,-2.0]"

    def test_semantic_threshold_constant(self):
        assert SEMANTIC_SIMILARITY_THRESHOLD == 0.85
