"""
Similarity Retriever

Ranks candidate chunks against a query vector by cosine similarity using a
linear scan. Ties are broken by ascending (document_id, chunk index) so the
same inputs always produce the same ranking.

The scan is fine for per-user, per-conversation document sets. An indexed
nearest-neighbour backend can replace ``SimilarityRetriever.retrieve``
behind the same signature.
"""

import logging
import numpy as np
from typing import Sequence
from dataclasses import dataclass

from .document_store import StoredChunk
from .errors import DimensionMismatch, InvalidArgument

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 5


@dataclass(frozen=True)
class RankedChunk:
    """A chunk plus its similarity to the query. Never persisted."""
    chunk: StoredChunk
    similarity: float

    @property
    def document_id(self) -> str:
        return self.chunk.document_id

    @property
    def chunk_index(self) -> int:
        return self.chunk.index

    @property
    def text(self) -> str:
        return self.chunk.text

    def to_dict(self) -> dict:
        return {
            "documentId": self.chunk.document_id,
            "chunkIndex": self.chunk.index,
            "similarity": round(self.similarity, 4),
        }


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Compute cosine similarity between two vectors (0.0 if either is all zeros)."""
    if len(a) != len(b):
        raise DimensionMismatch(len(a), len(b))
    a_arr = np.asarray(a, dtype=np.float64)
    b_arr = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(a_arr)
    norm_b = np.linalg.norm(b_arr)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.clip(np.dot(a_arr, b_arr) / (norm_a * norm_b), -1.0, 1.0))


class SimilarityRetriever:
    """
    Linear-scan cosine retriever.

    Usage:
        retriever = SimilarityRetriever()
        ranked = retriever.retrieve(query_vector, candidate_chunks, top_k=5)
    """

    def __init__(self, default_top_k: int = DEFAULT_TOP_K):
        if default_top_k <= 0:
            raise InvalidArgument(f"top_k must be positive, got {default_top_k}")
        self.default_top_k = default_top_k

    def retrieve(
        self,
        query_vector: Sequence[float],
        candidate_chunks: Sequence[StoredChunk],
        top_k: int = None,
    ) -> list[RankedChunk]:
        """
        Rank candidates by cosine similarity to the query vector.

        Args:
            query_vector: Embedding of the user message
            candidate_chunks: Chunks eligible for this turn
            top_k: Maximum results (defaults to ``default_top_k``)

        Returns:
            At most top_k RankedChunks, highest similarity first

        Raises:
            InvalidArgument: top_k <= 0
            DimensionMismatch: any candidate embedding differs in length from
                the query vector (checked before any scoring)
        """
        if top_k is None:
            top_k = self.default_top_k
        if top_k <= 0:
            raise InvalidArgument(f"top_k must be positive, got {top_k}")

        expected = len(query_vector)
        if expected == 0:
            raise InvalidArgument("query_vector must not be empty")

        for chunk in candidate_chunks:
            if len(chunk.embedding) != expected:
                raise DimensionMismatch(
                    expected, len(chunk.embedding), chunk.document_id, chunk.index
                )

        if not candidate_chunks:
            return []

        scores = self._score(np.asarray(query_vector, dtype=np.float64), candidate_chunks)

        ranked = [
            RankedChunk(chunk=chunk, similarity=float(score))
            for chunk, score in zip(candidate_chunks, scores)
        ]
        ranked.sort(key=lambda r: (-r.similarity, r.chunk.document_id, r.chunk.index))

        logger.debug(
            f"Ranked {len(ranked)} candidates, returning top {min(top_k, len(ranked))}"
        )
        return ranked[:top_k]

    def _score(self, query: np.ndarray, chunks: Sequence[StoredChunk]) -> np.ndarray:
        """Cosine similarity of every chunk embedding against the query."""
        matrix = np.asarray([chunk.embedding for chunk in chunks], dtype=np.float64)
        query_norm = np.linalg.norm(query)
        row_norms = np.linalg.norm(matrix, axis=1)

        if query_norm == 0:
            return np.zeros(len(chunks))

        denominators = row_norms * query_norm
        dots = matrix @ query
        scores = np.divide(
            dots, denominators, out=np.zeros_like(dots), where=denominators != 0
        )
        return np.clip(scores, -1.0, 1.0)
