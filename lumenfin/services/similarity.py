# =============================================================================
# Exact Cosine Similarity — Full-Scan Ranking
# =============================================================================
#
# Used when no managed vector index is configured (search_mode="exact").
# Every in-scope chunk is scored against the query:
#
#   similarity = dot(q, v) / (‖q‖ · ‖v‖)      (0 when either norm is 0)
#
# and the scores are sorted descending. Python's sort is stable, so chunks
# with equal scores keep the order they were passed in (insertion order).
# Scores are not rounded.
# =============================================================================

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from typing import TypeVar

from lumenfin.exceptions import DimensionMismatchError

T = TypeVar("T")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two equal-length vectors, in [-1, 1].

    Raises:
        DimensionMismatchError: If the vectors differ in length.
    """
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def rank_exact(
    query_vector: Sequence[float],
    candidates: Iterable[tuple[T, Sequence[float]]],
) -> list[tuple[T, float]]:
    """
    Score every (item, vector) pair against the query, best first.

    Ties keep their input order.
    """
    scored = [
        (item, cosine_similarity(query_vector, vector))
        for item, vector in candidates
    ]
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored
