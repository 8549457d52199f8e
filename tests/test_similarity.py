"""Tests for cosine similarity and candidate ranking."""

import math

import pytest
from narrative_market import (
    DimensionMismatch,
    HashEmbedding,
    InvalidInput,
    are_similar,
    cosine_similarity,
    find_similar,
)
from narrative_market.similarity import normalize


@pytest.fixture
def vectors():
    backend = HashEmbedding(dimensions=16)
    return [backend.embed(text) for text in ("alpha", "beta", "gamma", "delta")]


def test_symmetry(vectors):
    """Similarity does not depend on argument order."""
    for a in vectors:
        for b in vectors:
            assert cosine_similarity(a, b) == cosine_similarity(b, a)


def test_self_similarity(vectors):
    for v in vectors:
        assert cosine_similarity(v, v) == pytest.approx(1.0)


def test_scale_invariance():
    """Inputs are not assumed normalized."""
    assert cosine_similarity([1, 2, 3], [10, 20, 30]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [-5, 0]) == pytest.approx(-1.0)


def test_zero_vector_is_zero_not_nan():
    result = cosine_similarity([0, 0, 0], [1, 2, 3])
    assert result == 0
    assert not math.isnan(result)
    assert cosine_similarity([0, 0], [0, 0]) == 0


def test_dimension_mismatch():
    with pytest.raises(DimensionMismatch):
        cosine_similarity([1, 2, 3], [1, 2])


def test_dimension_mismatch_is_invalid_input():
    with pytest.raises(InvalidInput):
        cosine_similarity([1], [1, 2])


def test_orthogonal_vectors():
    assert cosine_similarity([1, 0], [0, 1]) == 0


def test_find_similar_identical_and_orthogonal():
    """Two copies of the query pass the threshold; the orthogonal one does not."""
    query = [1.0, 0.0, 0.0]
    candidates = [
        ("copy-1", [1.0, 0.0, 0.0]),
        ("orthogonal", [0.0, 1.0, 0.0]),
        ("copy-2", [1.0, 0.0, 0.0]),
    ]

    results = find_similar(query, candidates, threshold=0.5, limit=10)

    assert [r.key for r in results] == ["copy-1", "copy-2"]
    assert all(r.similarity == pytest.approx(1.0) for r in results)


def test_find_similar_never_below_threshold(vectors):
    query = vectors[0]
    candidates = list(enumerate(vectors))

    for threshold in (-1.0, -0.2, 0.0, 0.3, 0.99):
        results = find_similar(query, candidates, threshold=threshold)
        assert all(r.similarity >= threshold for r in results)


def test_find_similar_threshold_is_inclusive():
    results = find_similar([1, 0], [("same", [2, 0])], threshold=1.0)
    assert [r.key for r in results] == ["same"]


def test_find_similar_sorted_descending():
    query = [1.0, 0.0]
    candidates = [
        ("far", [0.2, 1.0]),
        ("near", [1.0, 0.1]),
        ("middle", [1.0, 1.0]),
    ]

    results = find_similar(query, candidates, threshold=-1.0)

    assert [r.key for r in results] == ["near", "middle", "far"]
    sims = [r.similarity for r in results]
    assert sims == sorted(sims, reverse=True)


def test_find_similar_ties_keep_input_order():
    query = [1.0, 0.0]
    candidates = [
        ("b", [2.0, 0.0]),
        ("low", [3.0, 4.0]),
        ("a", [1.0, 0.0]),
        ("c", [5.0, 0.0]),
    ]

    results = find_similar(query, candidates, threshold=0.0)

    assert [r.key for r in results] == ["b", "a", "c", "low"]


def test_find_similar_limit():
    candidates = [(i, [1.0, float(i)]) for i in range(10)]

    assert len(find_similar([1.0, 0.0], candidates, threshold=-1.0, limit=3)) == 3
    assert find_similar([1.0, 0.0], candidates, threshold=-1.0, limit=0) == []


def test_find_similar_default_limit_is_50():
    candidates = [(i, [1.0, 0.0]) for i in range(60)]
    assert len(find_similar([1.0, 0.0], candidates, threshold=0.5)) == 50


def test_find_similar_negative_limit():
    with pytest.raises(InvalidInput):
        find_similar([1.0], [("a", [1.0])], threshold=0.0, limit=-1)


def test_find_similar_candidate_dimension_mismatch():
    with pytest.raises(DimensionMismatch):
        find_similar([1.0, 0.0], [("bad", [1.0])], threshold=0.0)


def test_find_similar_does_not_mutate_inputs():
    query = [1.0, 2.0]
    candidates = [("a", [2.0, 1.0]), ("b", [1.0, 2.0])]
    before = [(k, list(v)) for k, v in candidates]

    find_similar(query, candidates, threshold=0.0)

    assert query == [1.0, 2.0]
    assert candidates == before


def test_are_similar():
    assert are_similar([1, 0], [1, 0.01])
    assert not are_similar([1, 0], [1, 1])
    assert are_similar([1, 0], [1, 1], threshold=0.7)


def test_returns_plain_float():
    """Results serialize as JSON numbers, not numpy scalars."""
    assert type(cosine_similarity([1.0, 2.0], [2.0, 1.0])) is float
    assert type(cosine_similarity([0.0, 0.0], [2.0, 1.0])) is float


def test_normalize():
    assert normalize([3.0, 4.0]) == pytest.approx([0.6, 0.8])
    assert normalize([0.0, 0.0]) == [0.0, 0.0]
    assert isinstance(normalize([1.0]), list)
