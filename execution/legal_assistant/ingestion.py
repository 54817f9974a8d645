"""
Asynchronous Document Ingestion

Turns an uploaded file into an indexed document in the background:
extract text -> chunk -> embed every chunk -> publish chunks.

The caller gets control back as soon as the record exists and polls
``DocumentStore.get_status`` for progress. Each document is owned by exactly
one ingestion task, which is the only writer of its status and chunks.

Failure policy: any extraction, chunking or embedding error fails the whole
document (no partial index) and is recorded as ``processing_error``. Errors
never propagate out of a background task.

Run as a script to ingest a local file:
    python -m execution.legal_assistant.ingestion path/to/contract.pdf
"""

import time
import logging
import threading
import mimetypes
from typing import Optional
from concurrent.futures import ThreadPoolExecutor, Future

from .config import RAGSettings
from .chunker import TextChunker
from .extraction import TextExtractor
from .document_store import DocumentStore, StoredChunk, StatusSnapshot
from .errors import (
    RAGError,
    DocumentNotFound,
    EmbeddingFailure,
    ExtractionFailure,
    IngestionCancelled,
)
from .metrics import get_metrics_collector

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Processing cancelled"


class IngestionPipeline:
    """
    Runs extraction, chunking and embedding for uploaded documents.

    Usage:
        pipeline = IngestionPipeline(store, embeddings, settings=settings)
        doc = store.create_document(owner_id, "lease.pdf", mime_type=PDF_MIME)
        pipeline.submit(doc.document_id, raw_bytes, PDF_MIME)   # returns at once
        ...
        store.get_status(doc.document_id)
    """

    def __init__(
        self,
        store: DocumentStore,
        embeddings,
        settings: Optional[RAGSettings] = None,
        chunker: Optional[TextChunker] = None,
        extractor: Optional[TextExtractor] = None,
        metrics=None,
    ):
        self.store = store
        self.embeddings = embeddings
        self.settings = settings or RAGSettings()
        self.chunker = chunker or TextChunker.from_settings(self.settings)
        self.extractor = extractor or TextExtractor()
        self.metrics = metrics or get_metrics_collector()

        self._executor = ThreadPoolExecutor(
            max_workers=self.settings.ingestion_workers,
            thread_name_prefix="ingestion",
        )
        self._cancel_tokens: dict[str, threading.Event] = {}
        self._tokens_lock = threading.Lock()

    # =========================================================================
    # Public API
    # =========================================================================

    def submit(self, document_id: str, content: bytes, mime_type: str) -> Future:
        """Queue a document for background processing and return immediately."""
        self._token_for(document_id)
        logger.info(f"Queued document {document_id} for ingestion")
        return self._executor.submit(self.process, document_id, content, mime_type)

    def submit_text(self, document_id: str, text: str) -> Future:
        """Queue already-extracted text for background processing."""
        self._token_for(document_id)
        return self._executor.submit(self.process_text, document_id, text)

    def process(self, document_id: str, content: bytes, mime_type: str) -> Optional[StatusSnapshot]:
        """Synchronously ingest raw file bytes. Returns the final status snapshot."""
        return self._run(document_id, lambda: self.extractor.extract(content, mime_type))

    def process_text(self, document_id: str, text: str) -> Optional[StatusSnapshot]:
        """Synchronously ingest text that was extracted elsewhere."""
        return self._run(document_id, lambda: text)

    def cancel(self, document_id: str) -> bool:
        """
        Request cancellation of a queued or running ingestion.

        The task stops at its next checkpoint (before extraction or between
        embedding batches) and marks the document ``failed``.

        Returns:
            True if a task for the document was pending or running
        """
        with self._tokens_lock:
            token = self._cancel_tokens.get(document_id)
        if token is None:
            return False
        token.set()
        logger.info(f"Cancellation requested for document {document_id}")
        return True

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    # =========================================================================
    # Task body
    # =========================================================================

    def _run(self, document_id: str, load_text) -> Optional[StatusSnapshot]:
        token = self._token_for(document_id)
        start = time.time()
        owner_id = None

        try:
            owner_id = self.store.get_document(document_id).owner_id
            if token.is_set():
                raise IngestionCancelled(CANCELLED_MESSAGE)

            self.store.mark_processing(document_id)

            text = load_text()
            texts = self.chunker.chunk(text)
            if not texts:
                raise ExtractionFailure("No text could be extracted from document")

            vectors = self._embed_chunks(texts, token)
            chunks = [
                StoredChunk(
                    document_id=document_id,
                    index=i,
                    text=chunk_text,
                    embedding=tuple(vector),
                )
                for i, (chunk_text, vector) in enumerate(zip(texts, vectors))
            ]
            self.store.mark_processed(document_id, chunks)

            duration_ms = (time.time() - start) * 1000
            self.metrics.record_ingestion(owner_id, document_id, len(chunks), duration_ms)
            logger.info(
                f"Document {document_id} processed: {len(chunks)} chunks in {duration_ms:.0f}ms"
            )

        except DocumentNotFound:
            # Deleted while being processed; nothing left to update
            logger.warning(f"Document {document_id} disappeared during ingestion")
            return None

        except RAGError as e:
            logger.error(f"Ingestion failed for {document_id}: {type(e).__name__}: {e}")
            self._fail(document_id, str(e), type(e).__name__)

        except Exception as e:
            logger.exception(f"Unexpected ingestion error for {document_id}")
            self._fail(document_id, f"Unexpected processing error: {e}", type(e).__name__)

        finally:
            with self._tokens_lock:
                self._cancel_tokens.pop(document_id, None)

        try:
            return self.store.get_status(document_id)
        except DocumentNotFound:
            return None

    def _embed_chunks(self, texts: list[str], token: threading.Event) -> list[list[float]]:
        """Embed chunk texts batch by batch, checking for cancellation in between."""
        batch_size = self.settings.embedding_batch_size
        expected = self.settings.embedding_dimensions
        vectors = []

        for start in range(0, len(texts), batch_size):
            if token.is_set():
                raise IngestionCancelled(CANCELLED_MESSAGE)

            batch = texts[start:start + batch_size]
            try:
                batch_vectors = self.embeddings.embed_documents(batch)
            except EmbeddingFailure as e:
                if e.chunk_index is None:
                    e.chunk_index = start
                raise
            except Exception as e:
                raise EmbeddingFailure(
                    f"Embedding failed for chunk {start}: {e}", chunk_index=start
                ) from e

            if len(batch_vectors) != len(batch):
                raise EmbeddingFailure(
                    f"Embedding service returned {len(batch_vectors)} vectors "
                    f"for {len(batch)} chunks",
                    chunk_index=start,
                )
            for offset, vector in enumerate(batch_vectors):
                if len(vector) != expected:
                    raise EmbeddingFailure(
                        f"Chunk {start + offset} embedding has {len(vector)} dimensions, "
                        f"expected {expected}",
                        chunk_index=start + offset,
                    )
            vectors.extend(batch_vectors)

        return vectors

    def _fail(self, document_id: str, error: str, error_type: str) -> None:
        self.metrics.record_ingestion_failure(error_type)
        try:
            self.store.mark_failed(document_id, error)
        except DocumentNotFound:
            logger.warning(f"Document {document_id} deleted before failure could be recorded")

    def _token_for(self, document_id: str) -> threading.Event:
        with self._tokens_lock:
            return self._cancel_tokens.setdefault(document_id, threading.Event())


# CLI for testing
if __name__ == "__main__":
    import sys
    import argparse
    from pathlib import Path
    from dotenv import load_dotenv

    from .embeddings import get_embedding_service
    from .polling import poll_until_complete

    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    parser = argparse.ArgumentParser(description="Ingest a local file and wait for it")
    parser.add_argument("path", help="File to ingest (.pdf, .docx, .txt, .md)")
    parser.add_argument("--owner", default="cli-user")
    args = parser.parse_args()

    path = Path(args.path)
    mime_type = mimetypes.guess_type(path.name)[0] or "text/plain"

    settings = RAGSettings.from_env()
    store = DocumentStore(embedding_dimensions=settings.embedding_dimensions)
    pipeline = IngestionPipeline(store, get_embedding_service(settings), settings=settings)

    record = store.create_document(args.owner, path.name, mime_type, path.stat().st_size)
    pipeline.submit(record.document_id, path.read_bytes(), mime_type)

    result = poll_until_complete(
        lambda: store.get_status(record.document_id),
        interval_seconds=settings.poll_interval_seconds,
        max_attempts=settings.poll_max_attempts,
    )
    pipeline.shutdown(wait=False)

    print(f"Outcome: {result.outcome.value} after {result.attempts} checks")
    if result.snapshot is not None:
        print(f"Status: {result.snapshot.to_dict()}")
    sys.exit(0 if result.succeeded else 1)
