"""Cosine similarity and candidate ranking."""

from typing import Hashable, Iterable, Sequence

import numpy as np

from narrative_market.errors import DimensionMismatch, InvalidInput
from narrative_market.models import SimilarityResult


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors.

    Inputs need not be normalized. A zero-magnitude vector has no direction,
    so any comparison involving one is 0.0.

    Raises:
        DimensionMismatch: if the vectors differ in length
    """
    if len(a) != len(b):
        raise DimensionMismatch(len(a), len(b))

    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    dot = np.dot(a, b)
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(dot / (norm_a * norm_b))


def find_similar(
    query: Sequence[float],
    candidates: Iterable[tuple[Hashable, Sequence[float]]],
    threshold: float,
    limit: int = 50,
) -> list[SimilarityResult]:
    """Rank candidates against a query vector.

    Args:
        query: The query vector
        candidates: (key, vector) pairs
        threshold: Minimum similarity to keep (inclusive)
        limit: Max results; 0 returns nothing

    Returns:
        Results sorted by similarity descending. Candidates with equal
        similarity keep their input order.
    """
    if limit < 0:
        raise InvalidInput(f"Limit cannot be negative: {limit}")
    if limit == 0:
        return []

    results = []
    for key, vector in candidates:
        similarity = cosine_similarity(query, vector)
        if similarity >= threshold:
            results.append(SimilarityResult(key=key, similarity=similarity))

    # list.sort is stable, so ties stay in input order
    results.sort(key=lambda r: r.similarity, reverse=True)
    return results[:limit]


def are_similar(
    a: Sequence[float], b: Sequence[float], threshold: float = 0.95
) -> bool:
    """Whether two vectors are at least `threshold` similar."""
    return cosine_similarity(a, b) >= threshold


def normalize(vector: Sequence[float]) -> list[float]:
    """Scale a vector to unit L2 norm. A zero vector is returned unchanged."""
    arr = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(arr)
    if norm == 0:
        return arr.tolist()
    return (arr / norm).tolist()
