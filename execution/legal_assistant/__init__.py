"""
Legal Assistant - Retrieval Core for Document-Grounded Legal Chat

This module provides:
- Asynchronous ingestion of uploaded files (extract, chunk, embed)
- A document status state machine that callers poll with bounded retries
- Cosine-similarity retrieval over the documents in scope for a chat turn
- An exclusive scope policy: attached documents override conversation documents
- Chat orchestration that returns the reply with the chunks it was grounded on
"""

__version__ = "0.1.0"

from .config import RAGSettings
from .chunker import TextChunker
from .document_store import DocumentStore, DocumentStatus
from .conversations import ConversationStore
from .retriever import SimilarityRetriever
from .context import ContextAssembler, RetrievalQuery
from .polling import poll_until_complete, PollOutcome
from .ingestion import IngestionPipeline
from .orchestrator import ChatOrchestrator

__all__ = [
    "RAGSettings",
    "TextChunker",
    "DocumentStore",
    "DocumentStatus",
    "ConversationStore",
    "SimilarityRetriever",
    "ContextAssembler",
    "RetrievalQuery",
    "poll_until_complete",
    "PollOutcome",
    "IngestionPipeline",
    "ChatOrchestrator",
]
