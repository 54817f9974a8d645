"""
Document Record Store and Status Tracker

Holds every uploaded document's lifecycle status, its ordered chunk list
(text + embedding) and provenance (owner, filename, MIME type, chat).

Lifecycle:
    uploaded -> processing -> processed
                           -> failed
    uploaded -> failed      (cancelled before ingestion started)

``processed`` and ``failed`` are terminal. Re-processing a file means
uploading it again under a new document id.

Chunks are published in one step on the processing -> processed transition
and are immutable afterwards, so concurrent readers never see a partially
indexed document. The in-memory layout is not a persistence format.
"""

import uuid
import logging
import threading
from enum import Enum
from typing import Optional, Iterable
from datetime import datetime, timezone
from dataclasses import dataclass, field, replace

from .errors import (
    DocumentNotFound,
    DimensionMismatch,
    InvalidArgument,
    InvalidStatusTransition,
)

logger = logging.getLogger(__name__)


class DocumentStatus(str, Enum):
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DocumentStatus.PROCESSED, DocumentStatus.FAILED)


_ALLOWED_TRANSITIONS = {
    DocumentStatus.UPLOADED: {DocumentStatus.PROCESSING, DocumentStatus.FAILED},
    DocumentStatus.PROCESSING: {DocumentStatus.PROCESSED, DocumentStatus.FAILED},
    DocumentStatus.PROCESSED: set(),
    DocumentStatus.FAILED: set(),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StoredChunk:
    """An indexed slice of a document: position, text and embedding."""
    document_id: str
    index: int
    text: str
    embedding: tuple

    @property
    def key(self) -> tuple[str, int]:
        """(document_id, index): the citation identity and ranking tie-break."""
        return (self.document_id, self.index)


@dataclass(frozen=True)
class StatusSnapshot:
    """Read-only view returned to pollers."""
    document_id: str
    status: DocumentStatus
    processing_error: Optional[str] = None
    chunk_count: int = 0

    def to_dict(self) -> dict:
        data = {"id": self.document_id, "status": self.status.value}
        if self.status == DocumentStatus.FAILED:
            data["processingError"] = self.processing_error
        if self.status == DocumentStatus.PROCESSED:
            data["chunkCount"] = self.chunk_count
        return data


@dataclass
class DocumentRecord:
    """A document's status, chunks and provenance."""
    document_id: str
    owner_id: str
    filename: str
    mime_type: str = "text/plain"
    size_bytes: int = 0
    chat_id: Optional[str] = None
    status: DocumentStatus = DocumentStatus.UPLOADED
    processing_error: Optional[str] = None
    chunks: tuple = ()
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)

    def snapshot(self) -> StatusSnapshot:
        return StatusSnapshot(
            document_id=self.document_id,
            status=self.status,
            processing_error=self.processing_error,
            chunk_count=self.chunk_count,
        )

    def to_dict(self) -> dict:
        """Listing entry without chunk payloads."""
        return {
            "id": self.document_id,
            "filename": self.filename,
            "status": self.status.value,
            "mimeType": self.mime_type,
            "sizeBytes": self.size_bytes,
            "chunkCount": self.chunk_count,
            "processingError": self.processing_error,
            "chatId": self.chat_id,
            "uploadedAt": self.created_at.isoformat(),
        }


class DocumentStore:
    """
    Thread-safe in-memory document store with lifecycle enforcement.

    Usage:
        store = DocumentStore(embedding_dimensions=1024)
        doc = store.create_document(owner_id="u1", filename="lease.pdf")
        store.mark_processing(doc.document_id)
        store.mark_processed(doc.document_id, chunks)
        store.get_status(doc.document_id)

    Every getter returns a copy; callers cannot mutate stored state.
    """

    def __init__(self, embedding_dimensions: Optional[int] = None):
        """
        Args:
            embedding_dimensions: If set, every stored chunk embedding must
                have exactly this length.
        """
        self._embedding_dimensions = embedding_dimensions
        self._documents: dict[str, DocumentRecord] = {}
        self._lock = threading.RLock()

    # =========================================================================
    # Record CRUD
    # =========================================================================

    def create_document(
        self,
        owner_id: str,
        filename: str,
        mime_type: str = "text/plain",
        size_bytes: int = 0,
        chat_id: Optional[str] = None,
        document_id: Optional[str] = None,
    ) -> DocumentRecord:
        """Create a record in the ``uploaded`` state."""
        record = DocumentRecord(
            document_id=document_id or str(uuid.uuid4()),
            owner_id=owner_id,
            filename=filename,
            mime_type=mime_type,
            size_bytes=size_bytes,
            chat_id=chat_id,
        )
        with self._lock:
            if record.document_id in self._documents:
                raise InvalidArgument(f"Document id already exists: {record.document_id}")
            self._documents[record.document_id] = record

        logger.info(f"Created document {record.document_id} ({filename}) for {owner_id}")
        return replace(record)

    def get_document(self, document_id: str, owner_id: Optional[str] = None) -> DocumentRecord:
        """Return a copy of the record; raises DocumentNotFound."""
        with self._lock:
            return replace(self._get(document_id, owner_id))

    def find_documents(
        self,
        document_ids: Iterable[str],
        owner_id: Optional[str] = None,
    ) -> list[DocumentRecord]:
        """Return copies of the records that exist (and belong to owner_id), in input order."""
        found = []
        with self._lock:
            for document_id in document_ids:
                record = self._documents.get(document_id)
                if record is None:
                    continue
                if owner_id is not None and record.owner_id != owner_id:
                    continue
                found.append(replace(record))
        return found

    def list_documents(self, owner_id: Optional[str] = None) -> list[DocumentRecord]:
        """List documents, newest first."""
        with self._lock:
            records = [
                replace(r) for r in self._documents.values()
                if owner_id is None or r.owner_id == owner_id
            ]
        records.sort(key=lambda r: (r.created_at, r.document_id), reverse=True)
        return records

    def delete_document(self, document_id: str, owner_id: Optional[str] = None) -> bool:
        """
        Remove a document and its chunks.

        Returns:
            True if a document was deleted, False if not found (or wrong owner)
        """
        with self._lock:
            record = self._documents.get(document_id)
            if record is None or (owner_id is not None and record.owner_id != owner_id):
                logger.warning(f"Document {document_id} not found (or wrong owner)")
                return False
            del self._documents[document_id]

        logger.info(f"Deleted document {document_id} ({record.chunk_count} chunks)")
        return True

    def count(self) -> int:
        with self._lock:
            return len(self._documents)

    # =========================================================================
    # Status tracking
    # =========================================================================

    def get_status(self, document_id: str, owner_id: Optional[str] = None) -> StatusSnapshot:
        """Side-effect free status query used by pollers."""
        with self._lock:
            return self._get(document_id, owner_id).snapshot()

    def mark_processing(self, document_id: str) -> None:
        with self._lock:
            self._transition(document_id, DocumentStatus.PROCESSING)

    def mark_processed(self, document_id: str, chunks: list[StoredChunk]) -> None:
        """
        Publish the chunk list and move the document to ``processed``.

        Raises:
            InvalidArgument: Empty list, non-contiguous indices, empty text,
                or chunks belonging to another document
            DimensionMismatch: Embeddings of inconsistent length
        """
        self._validate_chunks(document_id, chunks)
        with self._lock:
            record = self._transition(document_id, DocumentStatus.PROCESSED, commit=False)
            record.chunks = tuple(chunks)
            self._commit(record, DocumentStatus.PROCESSED)

    def mark_failed(self, document_id: str, error: str) -> None:
        """Move the document to ``failed`` with a human-readable cause."""
        with self._lock:
            record = self._transition(document_id, DocumentStatus.FAILED, commit=False)
            record.processing_error = error or "Unknown processing error"
            record.chunks = ()
            self._commit(record, DocumentStatus.FAILED)

    # =========================================================================
    # Internals
    # =========================================================================

    def _get(self, document_id: str, owner_id: Optional[str]) -> DocumentRecord:
        record = self._documents.get(document_id)
        if record is None or (owner_id is not None and record.owner_id != owner_id):
            raise DocumentNotFound(document_id)
        return record

    def _transition(
        self,
        document_id: str,
        new_status: DocumentStatus,
        commit: bool = True,
    ) -> DocumentRecord:
        record = self._get(document_id, None)
        if new_status not in _ALLOWED_TRANSITIONS[record.status]:
            raise InvalidStatusTransition(document_id, record.status.value, new_status.value)
        if commit:
            self._commit(record, new_status)
        return record

    def _commit(self, record: DocumentRecord, new_status: DocumentStatus) -> None:
        previous = record.status
        record.status = new_status
        record.updated_at = _utcnow()
        logger.info(f"Document {record.document_id}: {previous.value} -> {new_status.value}")

    def _validate_chunks(self, document_id: str, chunks: list[StoredChunk]) -> None:
        if not chunks:
            raise InvalidArgument(f"Document {document_id}: cannot publish an empty chunk list")

        expected_dims = self._embedding_dimensions or len(chunks[0].embedding)
        for position, chunk in enumerate(chunks):
            if chunk.document_id != document_id:
                raise InvalidArgument(
                    f"Chunk {position} belongs to {chunk.document_id}, not {document_id}"
                )
            if chunk.index != position:
                raise InvalidArgument(
                    f"Document {document_id}: chunk indices must be contiguous from 0, "
                    f"found {chunk.index} at position {position}"
                )
            if not chunk.text or not chunk.text.strip():
                raise InvalidArgument(f"Document {document_id}: chunk {position} is empty")
            if len(chunk.embedding) != expected_dims:
                raise DimensionMismatch(
                    expected_dims, len(chunk.embedding), document_id, chunk.index
                )
