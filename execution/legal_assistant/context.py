"""
Context Assembler

Decides, per chat turn, which documents supply evidence and builds the
evidence bundle handed to the chat orchestrator.

Scope policy (exclusive, never a merge):
    1. attached document ids non-empty -> scope is exactly those ids
    2. otherwise -> the conversation's accumulated document ids, deduplicated
    3. both empty -> empty scope, the turn is answered without grounding

Only ``processed`` documents contribute candidate chunks. Documents that are
still ``uploaded``/``processing`` or ended ``failed`` are left out silently
and reported on the bundle so the prompt can mention them.
"""

import logging
from typing import Iterable, Optional, Sequence
from dataclasses import dataclass, field

from .config import RAGSettings
from .document_store import DocumentStore, DocumentStatus, StoredChunk
from .retriever import SimilarityRetriever, RankedChunk

logger = logging.getLogger(__name__)


def _dedupe(ids: Iterable[str]) -> tuple:
    seen = []
    for document_id in ids or ():
        if document_id and document_id not in seen:
            seen.append(document_id)
    return tuple(seen)


@dataclass(frozen=True)
class RetrievalQuery:
    """
    Immutable per-turn retrieval request.

    Built once per chat turn and passed down; nothing mutates the attached
    set after construction.
    """
    message: str
    attached_document_ids: tuple = ()
    conversation_document_ids: tuple = ()

    @classmethod
    def build(
        cls,
        message: str,
        attached_document_ids: Iterable[str] = (),
        conversation_document_ids: Iterable[str] = (),
    ) -> "RetrievalQuery":
        return cls(
            message=message,
            attached_document_ids=_dedupe(attached_document_ids),
            conversation_document_ids=_dedupe(conversation_document_ids),
        )

    @property
    def is_explicit(self) -> bool:
        return bool(self.attached_document_ids)


@dataclass(frozen=True)
class CandidateSet:
    """Flattened chunks of the processed documents in scope."""
    chunks: tuple = ()
    pending_document_ids: tuple = ()
    failed_document_ids: tuple = ()
    document_names: dict = field(default_factory=dict)
    truncated: bool = False


@dataclass(frozen=True)
class EvidenceBundle:
    """Everything the orchestrator needs to ground one turn."""
    query: RetrievalQuery
    scope: tuple
    ranked_chunks: tuple = ()
    pending_document_ids: tuple = ()
    failed_document_ids: tuple = ()
    document_names: dict = field(default_factory=dict)
    candidate_count: int = 0
    truncated: bool = False

    @property
    def has_evidence(self) -> bool:
        return bool(self.ranked_chunks)

    @property
    def used_chunks(self) -> list[tuple[str, int]]:
        return [(r.document_id, r.chunk_index) for r in self.ranked_chunks]


class ContextAssembler:
    """
    Resolves scope, gathers candidate chunks and ranks them.

    Usage:
        assembler = ContextAssembler(store, SimilarityRetriever(), settings)
        query = RetrievalQuery.build(message, attached_ids, conversation.document_ids)
        bundle = assembler.assemble(query, query_vector, owner_id="u1")
    """

    def __init__(
        self,
        store: DocumentStore,
        retriever: Optional[SimilarityRetriever] = None,
        settings: Optional[RAGSettings] = None,
    ):
        self.store = store
        self.settings = settings or RAGSettings()
        self.retriever = retriever or SimilarityRetriever(self.settings.retrieval_top_k)

    def resolve_scope(self, query: RetrievalQuery) -> tuple:
        """Return the document ids eligible for this turn, in first-seen order."""
        if query.attached_document_ids:
            return tuple(query.attached_document_ids)
        return _dedupe(query.conversation_document_ids)

    def build_candidate_chunks(
        self,
        scope: Sequence[str],
        owner_id: Optional[str] = None,
    ) -> CandidateSet:
        """
        Flatten the chunks of processed documents in scope.

        Chunks are ordered by (document_id, index) so truncation at the
        candidate ceiling is deterministic. Unknown ids and documents of
        another owner contribute nothing.
        """
        records = self.store.find_documents(scope, owner_id=owner_id)
        missing = len(_dedupe(scope)) - len(records)
        if missing:
            logger.debug(f"{missing} scoped document(s) not found for owner {owner_id}")

        chunks: list[StoredChunk] = []
        pending, failed = [], []
        names = {}

        for record in sorted(records, key=lambda r: r.document_id):
            names[record.document_id] = record.filename
            if record.status == DocumentStatus.PROCESSED:
                chunks.extend(record.chunks)
            elif record.status == DocumentStatus.FAILED:
                failed.append(record.document_id)
            else:
                pending.append(record.document_id)

        limit = self.settings.max_candidate_chunks
        truncated = len(chunks) > limit
        if truncated:
            logger.warning(
                f"Candidate set of {len(chunks)} chunks exceeds ceiling {limit}; "
                f"scanning the first {limit}"
            )
            chunks = chunks[:limit]

        return CandidateSet(
            chunks=tuple(chunks),
            pending_document_ids=tuple(pending),
            failed_document_ids=tuple(failed),
            document_names=names,
            truncated=truncated,
        )

    def assemble(
        self,
        query: RetrievalQuery,
        query_vector: Sequence[float],
        owner_id: Optional[str] = None,
        top_k: Optional[int] = None,
    ) -> EvidenceBundle:
        """Resolve scope, gather candidates and rank them against the query vector."""
        scope = self.resolve_scope(query)
        candidates = self.build_candidate_chunks(scope, owner_id=owner_id)

        ranked: list[RankedChunk] = self.retriever.retrieve(
            query_vector, candidates.chunks, top_k=top_k or self.settings.retrieval_top_k
        )

        if not ranked:
            logger.info(
                f"No grounding evidence: scope={len(scope)} documents, "
                f"pending={len(candidates.pending_document_ids)}, "
                f"failed={len(candidates.failed_document_ids)}"
            )
        else:
            logger.info(
                f"Selected {len(ranked)} of {len(candidates.chunks)} chunks "
                f"from {len(scope)} documents ({'explicit' if query.is_explicit else 'conversation'} scope)"
            )

        return EvidenceBundle(
            query=query,
            scope=scope,
            ranked_chunks=tuple(ranked),
            pending_document_ids=candidates.pending_document_ids,
            failed_document_ids=candidates.failed_document_ids,
            document_names=candidates.document_names,
            candidate_count=len(candidates.chunks),
            truncated=candidates.truncated,
        )
