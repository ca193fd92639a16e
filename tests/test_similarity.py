"""Tests for cosine scoring and top-K ranking."""

import pytest

from acrag.similarity import DEFAULT_THRESHOLD, DEFAULT_TOP_K, cosine_similarity, is_zero_vector, rank
from conftest import make_record


class TestCosineSimilarity:
    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 1.0], [-1.0, -1.0]) == pytest.approx(-1.0)

    def test_symmetric(self):
        a, b = [0.3, 0.1, 0.9], [0.5, 0.7, 0.2]
        assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))

    def test_scale_invariant(self):
        assert cosine_similarity([1.0, 2.0], [10.0, 20.0]) == pytest.approx(1.0)

    def test_length_mismatch_scores_zero(self):
        assert cosine_similarity([1.0, 0.0, 0.0], [1.0, 0.0]) == 0.0

    def test_zero_vector_scores_zero(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
        assert cosine_similarity([1.0, 0.0], [0.0, 0.0]) == 0.0

    def test_empty_vectors_score_zero(self):
        assert cosine_similarity([], []) == 0.0

    def test_result_clamped(self):
        score = cosine_similarity([1e-8, 1e-8], [1e-8, 1e-8])
        assert -1.0 <= score <= 1.0

    def test_self_similarity_is_exactly_one(self):
        vector = [3.0, 7.0, 11.0, 13.0]
        assert cosine_similarity(vector, list(vector)) == 1.0
        assert cosine_similarity(vector, [-x for x in vector]) == -1.0

    def test_near_parallel_vectors_not_snapped(self):
        score = cosine_similarity([1.0, 0.0], [1.0, 1e-4])
        assert score < 1.0
        assert score == pytest.approx(1.0)


class TestIsZeroVector:
    def test_zero(self):
        assert is_zero_vector([0.0, 0.0])
        assert is_zero_vector([])

    def test_non_zero(self):
        assert not is_zero_vector([0.0, 0.1])


class TestRank:
    def test_defaults(self):
        assert DEFAULT_THRESHOLD == 0.75
        assert DEFAULT_TOP_K == 5

    def test_sorted_descending(self):
        records = [
            make_record("low", embedding=[0.8, 0.6]),
            make_record("high", embedding=[1.0, 0.0]),
        ]
        results = rank([1.0, 0.0], records, top_k=5, threshold=0.5)
        assert [r.record.id for r in results] == ["high", "low"]
        assert results[0].score >= results[1].score

    def test_threshold_filters(self):
        records = [
            make_record("match", embedding=[1.0, 0.0]),
            make_record("miss", embedding=[0.0, 1.0]),
        ]
        results = rank([1.0, 0.0], records, top_k=5, threshold=0.75)
        assert [r.record.id for r in results] == ["match"]

    def test_threshold_inclusive(self):
        record = make_record("edge", embedding=[0.6, 0.8])
        exact = cosine_similarity([1.0, 0.0], record.embedding)
        results = rank([1.0, 0.0], [record], top_k=5, threshold=exact)
        assert len(results) == 1

    def test_ties_keep_input_order(self):
        records = [make_record(f"r{i}", embedding=[1.0, 0.0]) for i in range(4)]
        results = rank([1.0, 0.0], records, top_k=4, threshold=0.0)
        assert [r.record.id for r in results] == ["r0", "r1", "r2", "r3"]

    def test_top_k_limits(self):
        records = [make_record(f"r{i}", embedding=[1.0, 0.0]) for i in range(10)]
        assert len(rank([1.0, 0.0], records, top_k=3, threshold=0.0)) == 3

    def test_top_k_zero_returns_empty(self):
        records = [make_record("r", embedding=[1.0, 0.0])]
        assert rank([1.0, 0.0], records, top_k=0, threshold=0.0) == []

    def test_degraded_records_never_match(self):
        records = [make_record("zero", embedding=[0.0, 0.0]), make_record("empty", embedding=[])]
        assert rank([1.0, 0.0], records, top_k=5, threshold=0.01) == []

    def test_empty_corpus(self):
        assert rank([1.0, 0.0], [], top_k=5, threshold=0.0) == []
