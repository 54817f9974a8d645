"""
FastAPI Backend for the Legal Assistant

Document upload with background ingestion, status polling, deletion,
grounded chat, and conversation management.

The caller's identity comes from the ``X-User-Id`` header; authentication
happens upstream.

Run with: uvicorn execution.legal_assistant.api:app --host 0.0.0.0 --port 8000
"""

import os
import time
import logging
import mimetypes
import threading
from typing import Optional
from contextlib import asynccontextmanager
from collections import defaultdict

from fastapi import FastAPI, HTTPException, UploadFile, File, Form, Depends, Header, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from . import __version__
from .api_models import (
    ChatRequest, ChatResponse, ChunkRef, SourceInfo,
    UploadResponse, DocumentStatusResponse, DocumentInfo,
    ConversationSummary, ConversationDetail, MessageInfo,
    HealthResponse,
)
from .config import RAGSettings
from .document_store import DocumentStore
from .conversations import ConversationStore
from .errors import (
    InvalidArgument,
    DocumentNotFound,
    ConversationNotFound,
    UnsupportedFileType,
    FileTooLarge,
    EmbeddingFailure,
    ModelUnavailable,
)
from .metrics import get_metrics_collector

# Load environment variables
load_dotenv()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Stop background ingestion when the server shuts down."""
    yield
    if _container is not None:
        logger.info("Shutting down ingestion workers")
        _container.shutdown(wait=False)


app = FastAPI(
    title="Legal Assistant API",
    description="Retrieval-augmented chat over a user's own legal documents",
    version=__version__,
    lifespan=lifespan,
)

# Configure CORS: use CORS_ORIGINS env var (comma-separated) or default to localhost
_cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in _cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Rate Limiting
# =============================================================================

class RateLimiter:
    """Simple in-memory rate limiter using sliding window."""

    def __init__(self, max_requests: int = 60, window_seconds: int = 60):
        self._max_requests = max_requests
        self._window = window_seconds
        self._requests: dict[str, list[float]] = defaultdict(list)
        self._lock = threading.Lock()

    def is_allowed(self, key: str) -> bool:
        """Check if request is allowed for the given key."""
        now = time.time()
        window_start = now - self._window

        with self._lock:
            self._requests[key] = [t for t in self._requests[key] if t > window_start]
            if len(self._requests[key]) >= self._max_requests:
                return False
            self._requests[key].append(now)
            return True


_rate_limiter = RateLimiter(
    max_requests=int(os.getenv("RATE_LIMIT_RPM", "60")),
    window_seconds=60,
)


async def check_rate_limit(request: Request):
    """FastAPI dependency that enforces rate limiting per user."""
    key = request.headers.get("x-user-id") or (request.client.host if request.client else "anonymous")
    if not _rate_limiter.is_allowed(key):
        raise HTTPException(status_code=429, detail="Rate limit exceeded. Try again later.")


# =============================================================================
# Service Container
# =============================================================================

class ServiceContainer:
    """Holds the stores and lazily builds the embedding, ingestion and chat services."""

    def __init__(self, settings: Optional[RAGSettings] = None, embeddings=None, llm_client=None):
        self.settings = settings or RAGSettings.from_env()
        self.documents = DocumentStore(embedding_dimensions=self.settings.embedding_dimensions)
        self.conversations = ConversationStore()
        self._embeddings = embeddings
        self._llm_client = llm_client
        self._pipeline = None
        self._orchestrator = None
        self._lock = threading.Lock()

    def get_embeddings(self):
        with self._lock:
            if self._embeddings is None:
                from .embeddings import get_embedding_service
                self._embeddings = get_embedding_service(self.settings)
            return self._embeddings

    def get_pipeline(self):
        embeddings = self.get_embeddings()
        with self._lock:
            if self._pipeline is None:
                from .ingestion import IngestionPipeline
                self._pipeline = IngestionPipeline(
                    self.documents, embeddings, settings=self.settings,
                )
            return self._pipeline

    def get_orchestrator(self):
        embeddings = self.get_embeddings()
        with self._lock:
            if self._orchestrator is None:
                from .orchestrator import ChatOrchestrator
                self._orchestrator = ChatOrchestrator(
                    self.documents,
                    self.conversations,
                    embeddings,
                    llm_client=self._llm_client,
                    settings=self.settings,
                )
            return self._orchestrator

    def cancel_ingestion(self, document_id: str) -> bool:
        """Stop a queued or running ingestion, if the pipeline was ever started."""
        if self._pipeline is None:
            return False
        return self._pipeline.cancel(document_id)

    def shutdown(self, wait: bool = True) -> None:
        if self._pipeline is not None:
            self._pipeline.shutdown(wait=wait)


_container: Optional[ServiceContainer] = None
_container_lock = threading.Lock()


def get_container() -> ServiceContainer:
    """FastAPI dependency returning the process-wide service container."""
    global _container
    with _container_lock:
        if _container is None:
            _container = ServiceContainer()
        return _container


async def get_owner_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Owner of the request, as asserted by the upstream auth layer."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


# =============================================================================
# Error mapping
# =============================================================================

_ERROR_STATUS = {
    DocumentNotFound: 404,
    ConversationNotFound: 404,
    InvalidArgument: 422,
    UnsupportedFileType: 415,
    FileTooLarge: 413,
    EmbeddingFailure: 503,
}


def _make_handler(status_code: int):
    async def handler(request: Request, exc: Exception):
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})
    return handler


for _error_cls, _status in _ERROR_STATUS.items():
    app.add_exception_handler(_error_cls, _make_handler(_status))


@app.exception_handler(ModelUnavailable)
async def model_unavailable_handler(request: Request, exc: ModelUnavailable):
    return JSONResponse(
        status_code=503,
        content={
            "detail": str(exc),
            "conversationId": exc.conversation_id,
            "usedChunks": [
                {"documentId": doc_id, "chunkIndex": idx} for doc_id, idx in exc.used_chunks
            ],
            "retryable": True,
        },
    )


# =============================================================================
# Helpers
# =============================================================================

def _resolve_mime_type(file: UploadFile) -> str:
    """Prefer the declared content type; fall back to the filename extension."""
    declared = (file.content_type or "").split(";")[0].strip().lower()
    if declared and declared != "application/octet-stream":
        return declared
    guessed, _ = mimetypes.guess_type(file.filename or "")
    if guessed is None and (file.filename or "").lower().endswith(".md"):
        guessed = "text/markdown"
    return guessed or declared or "application/octet-stream"


def _chunk_refs(used_chunks) -> list[ChunkRef]:
    return [ChunkRef(document_id=doc_id, chunk_index=idx) for doc_id, idx in used_chunks]


# =============================================================================
# Endpoints
# =============================================================================

@app.get("/health", response_model=HealthResponse)
async def health_check(container: ServiceContainer = Depends(get_container)):
    """Health check endpoint."""
    return HealthResponse(
        status="ok",
        version=__version__,
        documents=container.documents.count(),
        conversations=container.conversations.count(),
    )


@app.get("/metrics")
async def metrics():
    """In-process metrics snapshot."""
    return get_metrics_collector().get_metrics_dict()


@app.post(
    "/documents",
    response_model=UploadResponse,
    status_code=202,
    dependencies=[Depends(check_rate_limit)],
)
async def upload_document(
    file: UploadFile = File(...),
    chat_id: Optional[str] = Form(default=None, alias="chatId"),
    owner_id: str = Depends(get_owner_id),
    container: ServiceContainer = Depends(get_container),
):
    """Accept a file, create its record and start background ingestion."""
    settings = container.settings
    mime_type = _resolve_mime_type(file)
    if mime_type not in settings.allowed_mime_types:
        raise UnsupportedFileType(mime_type)

    content = await file.read()
    if len(content) > settings.max_upload_bytes:
        raise FileTooLarge(len(content), settings.max_upload_bytes)

    if chat_id:
        container.conversations.get_conversation(chat_id, owner_id)

    record = container.documents.create_document(
        owner_id=owner_id,
        filename=file.filename or "document",
        mime_type=mime_type,
        size_bytes=len(content),
        chat_id=chat_id,
    )
    if chat_id:
        container.conversations.add_document_ids(chat_id, [record.document_id])

    container.get_pipeline().submit(record.document_id, content, mime_type)

    return UploadResponse(id=record.document_id, filename=record.filename, status=record.status.value)


@app.get("/documents", response_model=list[DocumentInfo])
async def list_documents(
    owner_id: str = Depends(get_owner_id),
    container: ServiceContainer = Depends(get_container),
):
    """List the caller's documents, newest first."""
    return [DocumentInfo(**r.to_dict()) for r in container.documents.list_documents(owner_id)]


@app.get(
    "/documents/{document_id}",
    response_model=DocumentStatusResponse,
    response_model_exclude_none=True,
)
async def get_document_status(
    document_id: str,
    owner_id: str = Depends(get_owner_id),
    container: ServiceContainer = Depends(get_container),
):
    """Status of a document; poll this until it is processed or failed."""
    snapshot = container.documents.get_status(document_id, owner_id)
    return DocumentStatusResponse(**snapshot.to_dict())


@app.delete("/documents/{document_id}")
async def delete_document(
    document_id: str,
    owner_id: str = Depends(get_owner_id),
    container: ServiceContainer = Depends(get_container),
):
    """Delete a document and its chunks; it never appears in retrieval again."""
    container.documents.get_document(document_id, owner_id)
    container.cancel_ingestion(document_id)

    if not container.documents.delete_document(document_id, owner_id):
        raise DocumentNotFound(document_id)
    container.conversations.forget_document(document_id)

    return {"status": "deleted", "id": document_id}


@app.post("/chat", response_model=ChatResponse, dependencies=[Depends(check_rate_limit)])
def chat(
    request: ChatRequest,
    owner_id: str = Depends(get_owner_id),
    container: ServiceContainer = Depends(get_container),
):
    """Answer a message grounded in the attached or conversation documents."""
    result = container.get_orchestrator().answer(
        request.message,
        owner_id=owner_id,
        conversation_id=request.conversation_id,
        attached_document_ids=request.document_ids,
        top_k=request.top_k,
    )
    return ChatResponse(
        reply=result.reply,
        conversation_id=result.conversation_id,
        used_chunks=_chunk_refs(result.used_chunks),
        sources=[SourceInfo(**c.to_dict()) for c in result.citations],
        title=result.title,
    )


@app.post(
    "/chat/conversations/{conversation_id}/retry",
    response_model=ChatResponse,
    dependencies=[Depends(check_rate_limit)],
)
def retry_chat(
    conversation_id: str,
    owner_id: str = Depends(get_owner_id),
    container: ServiceContainer = Depends(get_container),
):
    """Answer the last user message again after a model failure."""
    result = container.get_orchestrator().retry_turn(conversation_id, owner_id)
    return ChatResponse(
        reply=result.reply,
        conversation_id=result.conversation_id,
        used_chunks=_chunk_refs(result.used_chunks),
        sources=[SourceInfo(**c.to_dict()) for c in result.citations],
        title=result.title,
    )


@app.get("/chat/conversations", response_model=list[ConversationSummary])
async def list_conversations(
    owner_id: str = Depends(get_owner_id),
    container: ServiceContainer = Depends(get_container),
):
    return [
        ConversationSummary(**c.to_summary())
        for c in container.conversations.list_conversations(owner_id)
    ]


@app.get("/chat/conversations/{conversation_id}", response_model=ConversationDetail)
async def get_conversation(
    conversation_id: str,
    owner_id: str = Depends(get_owner_id),
    container: ServiceContainer = Depends(get_container),
):
    conversation = container.conversations.get_conversation(conversation_id, owner_id)
    return ConversationDetail(
        id=conversation.conversation_id,
        title=conversation.title,
        messages=[MessageInfo(**m.to_dict()) for m in conversation.messages],
        document_ids=list(conversation.document_ids),
        created_at=conversation.created_at.isoformat(),
        updated_at=conversation.updated_at.isoformat(),
    )


@app.delete("/chat/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    owner_id: str = Depends(get_owner_id),
    container: ServiceContainer = Depends(get_container),
):
    if not container.conversations.delete_conversation(conversation_id, owner_id):
        raise ConversationNotFound(conversation_id)
    return {"status": "deleted", "id": conversation_id}
