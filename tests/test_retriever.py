"""
Tests for execution/legal_assistant/retriever.py

Covers: cosine_similarity, ranking order, tie-breaking, top_k handling,
        empty candidate sets, and dimension mismatches.
"""

import random

import pytest

from tests.conftest import make_chunks, unit_vector


class TestCosineSimilarity:

    def test_identical_vectors(self):
        from execution.legal_assistant.retriever import cosine_similarity
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        from execution.legal_assistant.retriever import cosine_similarity
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_vectors(self):
        from execution.legal_assistant.retriever import cosine_similarity
        assert cosine_similarity([1.0, 1.0], [-1.0, -1.0]) == pytest.approx(-1.0)

    def test_zero_vector_returns_zero(self):
        from execution.legal_assistant.retriever import cosine_similarity
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_length_mismatch(self):
        from execution.legal_assistant.retriever import cosine_similarity
        from execution.legal_assistant.errors import DimensionMismatch
        with pytest.raises(DimensionMismatch):
            cosine_similarity([1.0], [1.0, 0.0])


class TestRetrieve:

    def test_ranks_by_similarity(self):
        from execution.legal_assistant.retriever import SimilarityRetriever
        chunks = make_chunks("doc", [[0.0, 1.0], [1.0, 0.0], [1.0, 1.0]])
        ranked = SimilarityRetriever().retrieve([1.0, 0.0], chunks, top_k=3)
        assert [r.chunk_index for r in ranked] == [1, 2, 0]
        assert ranked[0].similarity == pytest.approx(1.0)
        assert ranked[1].similarity == pytest.approx(0.7071, abs=1e-4)

    def test_returns_min_of_k_and_candidates(self):
        from execution.legal_assistant.retriever import SimilarityRetriever
        chunks = make_chunks("doc", [unit_vector(i) for i in range(4)])
        retriever = SimilarityRetriever()
        assert len(retriever.retrieve(unit_vector(0), chunks, top_k=2)) == 2
        assert len(retriever.retrieve(unit_vector(0), chunks, top_k=10)) == 4

    def test_default_top_k(self):
        from execution.legal_assistant.retriever import SimilarityRetriever
        chunks = make_chunks("doc", [unit_vector(i % 8) for i in range(12)])
        assert len(SimilarityRetriever().retrieve(unit_vector(0), chunks)) == 5
        assert len(SimilarityRetriever(default_top_k=3).retrieve(unit_vector(0), chunks)) == 3

    def test_sorted_non_increasing_for_random_inputs(self):
        from execution.legal_assistant.retriever import SimilarityRetriever
        rng = random.Random(7)
        vectors = [[rng.uniform(-1, 1) for _ in range(8)] for _ in range(40)]
        query = [rng.uniform(-1, 1) for _ in range(8)]
        ranked = SimilarityRetriever().retrieve(query, make_chunks("doc", vectors), top_k=15)
        scores = [r.similarity for r in ranked]
        assert len(ranked) == 15
        assert scores == sorted(scores, reverse=True)
        assert all(-1.0 <= s <= 1.0 for s in scores)

    def test_ties_broken_by_document_then_index(self):
        from execution.legal_assistant.retriever import SimilarityRetriever
        same = [1.0, 0.0]
        chunks = (
            make_chunks("doc-b", [same, same])
            + make_chunks("doc-a", [same, same])
        )
        ranked = SimilarityRetriever().retrieve(same, chunks, top_k=4)
        assert [(r.document_id, r.chunk_index) for r in ranked] == [
            ("doc-a", 0), ("doc-a", 1), ("doc-b", 0), ("doc-b", 1),
        ]

    def test_deterministic_regardless_of_candidate_order(self):
        from execution.legal_assistant.retriever import SimilarityRetriever
        chunks = make_chunks("a", [[1.0, 0.0], [0.5, 0.5]]) + make_chunks("b", [[1.0, 0.0]])
        retriever = SimilarityRetriever()
        forward = retriever.retrieve([1.0, 0.0], chunks, top_k=3)
        backward = retriever.retrieve([1.0, 0.0], list(reversed(chunks)), top_k=3)
        assert [r.chunk.key for r in forward] == [r.chunk.key for r in backward]

    def test_empty_candidates_returns_empty(self):
        from execution.legal_assistant.retriever import SimilarityRetriever
        assert SimilarityRetriever().retrieve([1.0, 0.0], [], top_k=5) == []

    def test_zero_query_vector_scores_zero(self):
        from execution.legal_assistant.retriever import SimilarityRetriever
        ranked = SimilarityRetriever().retrieve([0.0, 0.0], make_chunks("d", [[1.0, 0.0]]), top_k=1)
        assert ranked[0].similarity == 0.0

    @pytest.mark.parametrize("top_k", [0, -1])
    def test_non_positive_top_k(self, top_k):
        from execution.legal_assistant.retriever import SimilarityRetriever
        from execution.legal_assistant.errors import InvalidArgument
        with pytest.raises(InvalidArgument):
            SimilarityRetriever().retrieve([1.0], make_chunks("d", [[1.0]]), top_k=top_k)

    def test_non_positive_top_k_even_without_candidates(self):
        from execution.legal_assistant.retriever import SimilarityRetriever
        from execution.legal_assistant.errors import InvalidArgument
        with pytest.raises(InvalidArgument):
            SimilarityRetriever().retrieve([1.0], [], top_k=0)

    def test_dimension_mismatch_raises_before_ranking(self):
        from execution.legal_assistant.retriever import SimilarityRetriever
        from execution.legal_assistant.errors import DimensionMismatch
        chunks = make_chunks("good", [[1.0, 0.0]]) + make_chunks("bad", [[1.0, 0.0, 0.0]])
        with pytest.raises(DimensionMismatch) as exc_info:
            SimilarityRetriever().retrieve([1.0, 0.0], chunks, top_k=1)
        assert exc_info.value.document_id == "bad"
        assert exc_info.value.expected == 2
        assert exc_info.value.actual == 3

    def test_ranked_chunk_to_dict(self):
        from execution.legal_assistant.retriever import SimilarityRetriever
        ranked = SimilarityRetriever().retrieve([1.0, 0.0], make_chunks("d", [[1.0, 0.0]]), top_k=1)
        assert ranked[0].to_dict() == {"documentId": "d", "chunkIndex": 0, "similarity": 1.0}
