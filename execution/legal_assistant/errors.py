"""
Error taxonomy for the Legal Assistant RAG core.

Ingestion errors (extraction, embedding) end up recorded on the document as
``processing_error`` and are discovered by polling. Retrieval errors are
contract violations and are raised immediately. Chat-turn errors carry
enough context for the caller to retry the turn.
"""

from typing import Optional


class RAGError(Exception):
    """Base class for all errors raised by the retrieval core."""


class InvalidArgument(RAGError, ValueError):
    """Raised when a caller passes an out-of-range or malformed argument."""


class ExtractionFailure(RAGError):
    """Raised when text cannot be extracted from an uploaded file."""


class UnsupportedFileType(ExtractionFailure):
    """Raised when the uploaded file's MIME type is not accepted."""

    def __init__(self, mime_type: str):
        super().__init__(f"Unsupported file type: {mime_type}")
        self.mime_type = mime_type


class FileTooLarge(RAGError):
    """Raised when an upload exceeds the configured size limit."""

    def __init__(self, size: int, limit: int):
        super().__init__(f"File is {size} bytes, limit is {limit} bytes")
        self.size = size
        self.limit = limit


class EmbeddingFailure(RAGError):
    """Raised when the embedding service fails for any chunk of a document."""

    def __init__(self, message: str, chunk_index: Optional[int] = None):
        super().__init__(message)
        self.chunk_index = chunk_index


class IngestionCancelled(RAGError):
    """Raised inside an ingestion task whose cancellation token was set."""


class DimensionMismatch(RAGError):
    """Raised when a stored embedding and the query vector differ in length."""

    def __init__(
        self,
        expected: int,
        actual: int,
        document_id: Optional[str] = None,
        chunk_index: Optional[int] = None,
    ):
        location = ""
        if document_id is not None:
            location = f" (document {document_id}, chunk {chunk_index})"
        super().__init__(
            f"Embedding dimension mismatch{location}: expected {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual
        self.document_id = document_id
        self.chunk_index = chunk_index


class InvalidStatusTransition(RAGError):
    """Raised when a document status change violates the lifecycle."""

    def __init__(self, document_id: str, current: str, requested: str):
        super().__init__(
            f"Document {document_id}: cannot move from '{current}' to '{requested}'"
        )
        self.document_id = document_id
        self.current = current
        self.requested = requested


class DocumentNotFound(RAGError):
    """Raised when a document id is unknown (or owned by someone else)."""

    def __init__(self, document_id: str):
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class ConversationNotFound(RAGError):
    """Raised when a conversation id is unknown (or owned by someone else)."""

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class ProcessingTimeout(RAGError):
    """
    Soft timeout: polling gave up before the document reached a terminal state.

    This is not a document state. The document may still complete later.
    """

    def __init__(self, document_id: str, attempts: int):
        super().__init__(
            f"Document {document_id} is still processing after {attempts} status checks"
        )
        self.document_id = document_id
        self.attempts = attempts


class DocumentProcessingFailed(RAGError):
    """Raised by polling helpers when the document ended in ``failed``."""

    def __init__(self, document_id: str, processing_error: str):
        super().__init__(f"Processing failed for {document_id}: {processing_error}")
        self.document_id = document_id
        self.processing_error = processing_error


class ModelUnavailable(RAGError):
    """
    Raised when the language model call fails during a chat turn.

    The user message has already been recorded on the conversation, so the
    turn can be retried with ``ChatOrchestrator.retry_turn`` without
    re-running ingestion.
    """

    def __init__(
        self,
        message: str,
        conversation_id: Optional[str] = None,
        used_chunks: Optional[list] = None,
    ):
        super().__init__(message)
        self.conversation_id = conversation_id
        self.used_chunks = used_chunks or []
