"""Tests for embedding comparison and the in-memory similarity store."""

from __future__ import annotations

import numpy as np
import pytest

from facevector.errors import DimensionMismatchError, InvalidEmbeddingError
from facevector.ml.similarity import (
    InMemorySimilarityStore,
    compare_embeddings,
    cosine_similarity,
    euclidean_distance,
    l2_normalize,
)

# ---------------------------------------------------------------------------
# Pairwise comparison
# ---------------------------------------------------------------------------


class TestCompareEmbeddings:
    def test_self_comparison(self) -> None:
        vec = np.random.default_rng(0).normal(size=512)
        result = compare_embeddings(vec, vec)
        assert result.cosine == pytest.approx(1.0)
        assert result.euclidean == pytest.approx(0.0)

    def test_orthogonal(self) -> None:
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
        assert euclidean_distance([1.0, 0.0], [0.0, 1.0]) == pytest.approx(2**0.5)

    def test_self_comparison_clamped_to_one(self) -> None:
        rng = np.random.default_rng(5)
        for _ in range(200):
            vec = rng.normal(size=512)
            assert cosine_similarity(vec, vec) <= 1.0
            assert cosine_similarity(vec, -vec) >= -1.0

    def test_opposite(self) -> None:
        assert cosine_similarity([1.0, 2.0], [-1.0, -2.0]) == pytest.approx(-1.0)

    def test_inputs_not_normalized_for_distance(self) -> None:
        result = compare_embeddings([3.0, 0.0], [6.0, 0.0])
        assert result.cosine == pytest.approx(1.0)
        assert result.euclidean == pytest.approx(3.0)

    def test_symmetric(self) -> None:
        rng = np.random.default_rng(1)
        a, b = rng.normal(size=8), rng.normal(size=8)
        assert compare_embeddings(a, b) == compare_embeddings(b, a)

    def test_dimension_mismatch(self) -> None:
        with pytest.raises(DimensionMismatchError):
            compare_embeddings(np.ones(512), np.ones(128))

    def test_zero_vector(self) -> None:
        with pytest.raises(InvalidEmbeddingError, match="norm"):
            cosine_similarity(np.zeros(4), np.ones(4))

    @pytest.mark.parametrize("bad", [float("nan"), float("inf")])
    def test_non_finite_values(self, bad: float) -> None:
        with pytest.raises(InvalidEmbeddingError):
            compare_embeddings([1.0, bad], [1.0, 1.0])

    def test_empty(self) -> None:
        with pytest.raises(InvalidEmbeddingError, match="empty"):
            compare_embeddings([], [])


class TestL2Normalize:
    def test_unit_length_float32(self) -> None:
        vec = l2_normalize([3.0, 4.0])
        assert vec.dtype == np.float32
        np.testing.assert_allclose(vec, [0.6, 0.8], rtol=1e-6)

    def test_zero_vector_rejected(self) -> None:
        with pytest.raises(InvalidEmbeddingError):
            l2_normalize(np.zeros(3))


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class TestInMemorySimilarityStore:
    def test_query_ranks_best_first(self) -> None:
        store = InMemorySimilarityStore(dimension=2)
        store.add("right", [1.0, 0.0])
        store.add("diagonal", [1.0, 1.0])
        store.add("up", [0.0, 1.0])

        results = store.query([1.0, 0.1], k=3)

        assert [r.id for r in results] == ["right", "diagonal", "up"]
        assert results[0].score == pytest.approx(cosine_similarity([1.0, 0.0], [1.0, 0.1]), rel=1e-6)

    def test_query_truncates_to_k(self) -> None:
        store = InMemorySimilarityStore(dimension=2)
        for i in range(5):
            store.add(f"id{i}", [1.0, float(i)])
        assert len(store.query([1.0, 0.0], k=2)) == 2

    def test_ties_keep_insertion_order(self) -> None:
        store = InMemorySimilarityStore(dimension=2)
        store.add("first", [1.0, 0.0])
        store.add("second", [2.0, 0.0])

        assert [r.id for r in store.query([1.0, 0.0], k=2)] == ["first", "second"]

    def test_deterministic(self) -> None:
        rng = np.random.default_rng(3)
        store = InMemorySimilarityStore(dimension=16)
        for i in range(20):
            store.add(str(i), rng.normal(size=16))
        query = rng.normal(size=16)

        assert store.query(query, k=5) == store.query(query, k=5)

    def test_empty_store(self) -> None:
        assert InMemorySimilarityStore(dimension=4).query(np.ones(4), k=3) == []

    def test_non_positive_k(self) -> None:
        store = InMemorySimilarityStore(dimension=2)
        with pytest.raises(ValueError, match="k must be positive"):
            store.query([1.0, 0.0], k=0)

    def test_wrong_dimension_rejected(self) -> None:
        store = InMemorySimilarityStore(dimension=4)
        with pytest.raises(DimensionMismatchError):
            store.add("a", np.ones(3))
        with pytest.raises(DimensionMismatchError):
            store.query(np.ones(5), k=1)

    def test_delete(self) -> None:
        store = InMemorySimilarityStore(dimension=2)
        store.add("a", [1.0, 0.0])

        assert store.delete("a") is True
        assert store.delete("a") is False
        assert len(store) == 0

    def test_add_replaces_existing_id(self) -> None:
        store = InMemorySimilarityStore(dimension=2)
        store.add("a", [1.0, 0.0])
        store.add("a", [0.0, 1.0])

        assert len(store) == 1
        assert store.query([0.0, 1.0], k=1)[0].score == pytest.approx(1.0)

    def test_self_query_score_never_exceeds_one(self) -> None:
        rng = np.random.default_rng(11)
        store = InMemorySimilarityStore(dimension=512)
        vectors = rng.normal(size=(50, 512))
        for i, vec in enumerate(vectors):
            store.add(str(i), vec)

        for i, vec in enumerate(vectors):
            top = store.query(vec, k=1)[0]
            assert top.id == str(i)
            assert -1.0 <= top.score <= 1.0

    def test_identity_returned_with_matches(self) -> None:
        store = InMemorySimilarityStore(dimension=2)
        store.add("a", [1.0, 0.0], identifier="cust-1", name="Grace")
        store.add("b", [0.0, 1.0])

        first, second = store.query([1.0, 0.0], k=2)

        assert (first.identifier, first.name) == ("cust-1", "Grace")
        assert (second.identifier, second.name) == (None, None)

    def test_recent_newest_first(self) -> None:
        store = InMemorySimilarityStore(dimension=2)
        for embedding_id in ("a", "b", "c"):
            store.add(embedding_id, [1.0, 0.0])

        assert [e.id for e in store.recent(2)] == ["c", "b"]
        assert [e.id for e in store.recent(10)] == ["c", "b", "a"]

    def test_replaced_id_moves_to_front(self) -> None:
        store = InMemorySimilarityStore(dimension=2)
        store.add("a", [1.0, 0.0])
        store.add("b", [1.0, 0.0])
        store.add("a", [1.0, 0.0], identifier="x")

        assert [e.id for e in store.recent(5)] == ["a", "b"]
        assert store.recent(1)[0].identifier == "x"

    def test_recent_rejects_non_positive_limit(self) -> None:
        with pytest.raises(ValueError, match="limit must be positive"):
            InMemorySimilarityStore(dimension=2).recent(0)

    def test_identities_are_distinct(self) -> None:
        store = InMemorySimilarityStore(dimension=2)
        store.add("a", [1.0, 0.0], identifier="p")
        store.add("b", [0.0, 1.0], identifier="p")
        store.add("c", [1.0, 1.0])

        assert store.identities() == {"p"}
        store.delete("a")
        store.delete("b")
        assert store.identities() == set()
