"""
Activity Core
Similarity kernel — pure functions shared by every dedup heuristic.

    - normalize_name / names_equal: canonical form for exact matching
    - string_similarity / find_best_match: Levenshtein ratio for fuzzy matching
    - cosine_similarity & helpers: embedding vectors supplied by the caller
"""

from __future__ import annotations

import math
import re
from typing import Iterable, Sequence

import Levenshtein

# Minimum cosine similarity to treat two embeddings as the same concept
SEMANTIC_SIMILARITY_THRESHOLD = 0.85

DEFAULT_MATCH_THRESHOLD = 0.8

# "(50k)", "(1 200 руб.)", "($300)", "(2 млн)" ...
_COST_ANNOTATION_RE = re.compile(
    r"\s*\([^)]*(?:₽|руб|rub|тыс|млн|usd|eur|\$|k\b|m\b)[^)]*\)",
    re.IGNORECASE,
)
_WHITESPACE_RE = re.compile(r"\s+")
_TRAILING_PUNCT_RE = re.compile(r"[.,;:!]+$")


# ── Names ────────────────────────────────────────────────────────────────────

def normalize_name(name: str | None) -> str:
    """Lower-case, drop cost annotations, collapse spaces, strip trailing punctuation."""
    if not name:
        return ""
    value = name.strip().lower()
    value = _COST_ANNOTATION_RE.sub("", value)
    value = _WHITESPACE_RE.sub(" ", value)
    value = _TRAILING_PUNCT_RE.sub("", value)
    return value.strip()


def names_equal(a: str | None, b: str | None) -> bool:
    return normalize_name(a) == normalize_name(b)


def string_similarity(a: str | None, b: str | None) -> float:
    """Levenshtein ratio in [0, 1], case-insensitive and symmetric.

    "" vs "" is 1.0 (identical); "" vs anything else is 0.0.
    """
    s1 = (a or "").lower()
    s2 = (b or "").lower()
    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    distance = Levenshtein.distance(s1, s2)
    return 1.0 - distance / max(len(s1), len(s2))


def find_best_match(
    name: str,
    candidates: Iterable,
    threshold: float = DEFAULT_MATCH_THRESHOLD,
    key=lambda c: c.name,
):
    """Return ``(candidate, score)`` for the most similar candidate at or above threshold.

    Ties keep the first candidate seen. Returns ``(None, 0.0)`` when nothing
    qualifies.
    """
    best = None
    best_score = 0.0
    for candidate in candidates:
        score = string_similarity(name, key(candidate))
        if score >= threshold and score > best_score:
            best, best_score = candidate, score
    return best, best_score


# ── Vectors ──────────────────────────────────────────────────────────────────

def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors.

    Raises ValueError on a dimension mismatch. Empty or zero-magnitude
    vectors score 0.0.
    """
    if len(a) != len(b):
        raise ValueError(f"Vector dimension mismatch: {len(a)} vs {len(b)}")
    if not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    mag_a = math.sqrt(sum(x * x for x in a))
    mag_b = math.sqrt(sum(y * y for y in b))
    if mag_a == 0 or mag_b == 0:
        return 0.0
    return dot / (mag_a * mag_b)


def distance_to_similarity(distance: float) -> float:
    """pgvector `<=>` returns cosine distance; convert to similarity."""
    return 1.0 - distance


def format_embedding_for_query(vector: Sequence[float]) -> str:
    """Render a vector as a pgvector literal: ``[0.1,0.2,0.3]``."""
    return "[" + ",".join(str(float(x)) for x in vector) + "]"
