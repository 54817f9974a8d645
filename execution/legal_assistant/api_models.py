"""
Pydantic models for the Legal Assistant FastAPI backend.

Wire names are camelCase; Python attributes stay snake_case.
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ChatRequest(_WireModel):
    """Request body for a chat turn."""
    message: str = Field(..., min_length=1, max_length=8000)
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    document_ids: list[str] = Field(default_factory=list, alias="documentIds")
    top_k: Optional[int] = Field(default=None, alias="topK", ge=1, le=50)


class ChunkRef(_WireModel):
    """Identity of an evidence chunk given to the model."""
    document_id: str = Field(..., alias="documentId")
    chunk_index: int = Field(..., alias="chunkIndex")


class SourceInfo(_WireModel):
    """Citation for a used chunk."""
    document_id: str = Field(..., alias="documentId")
    chunk_index: int = Field(..., alias="chunkIndex")
    document_name: str = Field(..., alias="documentName")
    relevance_score: float = Field(..., alias="relevanceScore")
    short_citation: str = Field(..., alias="shortCitation")


class ChatResponse(_WireModel):
    """Response body for a chat turn."""
    reply: str
    conversation_id: str = Field(..., alias="conversationId")
    used_chunks: list[ChunkRef] = Field(default_factory=list, alias="usedChunks")
    sources: list[SourceInfo] = Field(default_factory=list)
    title: Optional[str] = None


class UploadResponse(_WireModel):
    """Response body for document upload."""
    id: str
    filename: str
    status: str


class DocumentStatusResponse(_WireModel):
    """Status of one document; processingError only when failed, chunkCount only when processed."""
    id: str
    status: str
    processing_error: Optional[str] = Field(default=None, alias="processingError")
    chunk_count: Optional[int] = Field(default=None, alias="chunkCount")


class DocumentInfo(_WireModel):
    """Listing entry for a stored document."""
    id: str
    filename: str
    status: str
    mime_type: str = Field(..., alias="mimeType")
    size_bytes: int = Field(..., alias="sizeBytes")
    chunk_count: int = Field(0, alias="chunkCount")
    processing_error: Optional[str] = Field(default=None, alias="processingError")
    chat_id: Optional[str] = Field(default=None, alias="chatId")
    uploaded_at: str = Field(..., alias="uploadedAt")


class MessageInfo(_WireModel):
    role: str
    content: str
    created_at: str = Field(..., alias="createdAt")
    used_chunks: list[ChunkRef] = Field(default_factory=list, alias="usedChunks")
    attached_document_ids: list[str] = Field(default_factory=list, alias="attachedDocumentIds")


class ConversationSummary(_WireModel):
    """Listing entry for a conversation."""
    id: str
    title: str
    message_count: int = Field(..., alias="messageCount")
    last_message: Optional[str] = Field(default=None, alias="lastMessage")
    created_at: str = Field(..., alias="createdAt")
    updated_at: str = Field(..., alias="updatedAt")


class ConversationDetail(_WireModel):
    """Full conversation with messages and implicit document scope."""
    id: str
    title: str
    messages: list[MessageInfo]
    document_ids: list[str] = Field(default_factory=list, alias="documentIds")
    created_at: str = Field(..., alias="createdAt")
    updated_at: str = Field(..., alias="updatedAt")


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    documents: int = 0
    conversations: int = 0
