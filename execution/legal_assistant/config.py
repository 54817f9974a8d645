"""
Runtime configuration for the Legal Assistant RAG core.

All options are read from the environment (a ``.env`` file is loaded by the
API module). Values are validated once, at construction, so a bad setting
fails at start-up instead of in the middle of an ingestion task.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Optional

from .errors import InvalidArgument

logger = logging.getLogger(__name__)


PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT_MIME = "text/plain"
MARKDOWN_MIME = "text/markdown"

ALLOWED_MIME_TYPES = frozenset({PDF_MIME, DOCX_MIME, TEXT_MIME, MARKDOWN_MIME})


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidArgument(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise InvalidArgument(f"{name} must be a number, got {raw!r}")


@dataclass
class RAGSettings:
    """Configuration for chunking, embedding, retrieval, polling and chat."""
    # Chunking
    chunk_target_length: int = 1000  # characters
    chunk_overlap_ratio: float = 0.12

    # Embeddings
    embedding_dimensions: int = 1024
    embedding_provider: str = "openai"  # openai, voyage, cohere, local
    embedding_model: Optional[str] = None
    embedding_batch_size: int = 64

    # Retrieval
    retrieval_top_k: int = 5
    max_candidate_chunks: int = 5000

    # Caller-side polling
    poll_interval_ms: int = 2000
    poll_max_attempts: int = 30

    # Chat
    llm_model: str = "gpt-4o-mini"
    llm_base_url: Optional[str] = None
    llm_temperature: float = 0.3
    llm_max_tokens: int = 1500
    history_window: int = 10

    # Uploads / ingestion
    max_upload_bytes: int = 10 * 1024 * 1024
    allowed_mime_types: frozenset = field(default_factory=lambda: ALLOWED_MIME_TYPES)
    ingestion_workers: int = 4

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Raise InvalidArgument for any out-of-range option."""
        if self.chunk_target_length <= 0:
            raise InvalidArgument("CHUNK_TARGET_LENGTH must be positive")
        if not 0 <= self.chunk_overlap_ratio < 0.5:
            raise InvalidArgument("CHUNK_OVERLAP_RATIO must be in [0, 0.5)")
        if self.embedding_dimensions <= 0:
            raise InvalidArgument("EMBEDDING_DIMENSIONS must be positive")
        if self.embedding_batch_size <= 0:
            raise InvalidArgument("EMBEDDING_BATCH_SIZE must be positive")
        if self.retrieval_top_k <= 0:
            raise InvalidArgument("RETRIEVAL_TOP_K must be positive")
        if self.max_candidate_chunks <= 0:
            raise InvalidArgument("MAX_CANDIDATE_CHUNKS must be positive")
        if self.poll_interval_ms < 0:
            raise InvalidArgument("POLL_INTERVAL_MS must not be negative")
        if self.poll_max_attempts <= 0:
            raise InvalidArgument("POLL_MAX_ATTEMPTS must be positive")
        if self.history_window < 0:
            raise InvalidArgument("HISTORY_WINDOW must not be negative")
        if self.max_upload_bytes <= 0:
            raise InvalidArgument("MAX_UPLOAD_BYTES must be positive")
        if self.ingestion_workers <= 0:
            raise InvalidArgument("INGESTION_WORKERS must be positive")

    @property
    def chunk_overlap_length(self) -> int:
        """Overlap between consecutive chunks, in characters."""
        return int(self.chunk_target_length * self.chunk_overlap_ratio)

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000.0

    @classmethod
    def from_env(cls) -> "RAGSettings":
        """Build settings from environment variables, falling back to defaults."""
        defaults = cls()
        settings = cls(
            chunk_target_length=_env_int("CHUNK_TARGET_LENGTH", defaults.chunk_target_length),
            chunk_overlap_ratio=_env_float("CHUNK_OVERLAP_RATIO", defaults.chunk_overlap_ratio),
            embedding_dimensions=_env_int("EMBEDDING_DIMENSIONS", defaults.embedding_dimensions),
            embedding_provider=os.getenv("EMBEDDING_PROVIDER", defaults.embedding_provider),
            embedding_model=os.getenv("EMBEDDING_MODEL") or None,
            embedding_batch_size=_env_int("EMBEDDING_BATCH_SIZE", defaults.embedding_batch_size),
            retrieval_top_k=_env_int("RETRIEVAL_TOP_K", defaults.retrieval_top_k),
            max_candidate_chunks=_env_int("MAX_CANDIDATE_CHUNKS", defaults.max_candidate_chunks),
            poll_interval_ms=_env_int("POLL_INTERVAL_MS", defaults.poll_interval_ms),
            poll_max_attempts=_env_int("POLL_MAX_ATTEMPTS", defaults.poll_max_attempts),
            llm_model=os.getenv("LLM_MODEL", defaults.llm_model),
            llm_base_url=os.getenv("LLM_BASE_URL") or None,
            llm_temperature=_env_float("LLM_TEMPERATURE", defaults.llm_temperature),
            llm_max_tokens=_env_int("LLM_MAX_TOKENS", defaults.llm_max_tokens),
            history_window=_env_int("HISTORY_WINDOW", defaults.history_window),
            max_upload_bytes=_env_int("MAX_UPLOAD_BYTES", defaults.max_upload_bytes),
            ingestion_workers=_env_int("INGESTION_WORKERS", defaults.ingestion_workers),
        )
        logger.debug(
            f"Settings loaded: chunk={settings.chunk_target_length}/"
            f"{settings.chunk_overlap_ratio}, dims={settings.embedding_dimensions}, "
            f"top_k={settings.retrieval_top_k}, provider={settings.embedding_provider}"
        )
        return settings
