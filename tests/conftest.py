"""
Shared fixtures and test utilities for Legal Assistant tests.

Provides mock services, sample data, and reusable fixtures so that all tests
can run without API keys or external network access.
"""

import sys
import hashlib
from pathlib import Path
from types import SimpleNamespace

import pytest
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup - ensure the execution package is importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")

TEST_DIMENSIONS = 8
OWNER = "user-1"
OTHER_OWNER = "user-2"

# ---------------------------------------------------------------------------
# Sample legal document text
# ---------------------------------------------------------------------------
SAMPLE_DOCUMENT = """RESIDENTIAL LEASE AGREEMENT

This Lease Agreement is entered into on January 1, 2024 between Acme Properties LLC ("Landlord") and Jane Doe ("Tenant").

1. TERM. The lease term begins on February 1, 2024 and ends on January 31, 2025. The Tenant may renew for one additional year by giving written notice.

2. RENT. The Tenant shall pay monthly rent of $1,500 on the first day of each month. Rent paid after the fifth day incurs a late fee of $75.

3. SECURITY DEPOSIT. The Tenant shall pay a security deposit of $3,000. The deposit will be returned within thirty (30) days after the lease ends, less lawful deductions.

4. TERMINATION. Either party may terminate this lease upon sixty (60) days written notice. The Landlord may terminate immediately if the Tenant fails to pay rent for two consecutive months.

5. GOVERNING LAW. This lease is governed by the laws of the State of California."""

ONE_PARAGRAPH = (
    "The Tenant shall keep the premises in good repair and shall notify the "
    "Landlord promptly of any damage."
)


@pytest.fixture
def sample_document_text():
    """Return the sample lease text."""
    return SAMPLE_DOCUMENT


# ---------------------------------------------------------------------------
# Mock embedding services
# ---------------------------------------------------------------------------

class MockEmbeddingService:
    """Deterministic mock embedding service -- never calls external APIs."""

    def __init__(self, dimensions=TEST_DIMENSIONS):
        self._dimensions = dimensions
        self.document_calls = 0
        self.query_calls = 0

    def embed_documents(self, texts):
        self.document_calls += 1
        return [self._deterministic_embedding(t) for t in texts]

    def embed_query(self, query):
        self.query_calls += 1
        return self._deterministic_embedding(query)

    def _deterministic_embedding(self, text):
        h = hashlib.sha256(text.encode()).hexdigest()
        seed = int(h[:8], 16)
        return [((seed + i) % 1000) / 1000.0 + 0.001 for i in range(self._dimensions)]

    @property
    def dimensions(self):
        return self._dimensions


class FailingEmbeddingService(MockEmbeddingService):
    """Mock that raises when asked to embed the chunk at ``fail_at`` (0-based, across calls)."""

    def __init__(self, fail_at=1, dimensions=TEST_DIMENSIONS, error=None):
        super().__init__(dimensions)
        self.fail_at = fail_at
        self.error = error or ConnectionError("embedding service timed out")
        self._seen = 0

    def embed_documents(self, texts):
        if self._seen <= self.fail_at < self._seen + len(texts):
            raise self.error
        self._seen += len(texts)
        return super().embed_documents(texts)


@pytest.fixture
def mock_embedding_service():
    return MockEmbeddingService()


# ---------------------------------------------------------------------------
# Fake OpenAI-compatible chat client
# ---------------------------------------------------------------------------

class FakeLLMClient:
    """
    Mimics ``client.chat.completions.create`` and records every call.

    Title requests (max_tokens=20) get ``title``; everything else gets ``reply``.
    """

    def __init__(self, reply="Based on the lease, either party may terminate with 60 days notice [1].",
                 title="Lease Termination Question", fail=False, fail_titles=False):
        self.reply = reply
        self.title = title
        self.fail = fail
        self.fail_titles = fail_titles
        self.calls = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    @property
    def answer_calls(self):
        return [c for c in self.calls if c.get("max_tokens") != 20]

    def _create(self, **kwargs):
        self.calls.append(kwargs)
        is_title = kwargs.get("max_tokens") == 20
        if is_title and self.fail_titles:
            raise RuntimeError("title model down")
        if not is_title and self.fail:
            raise ConnectionError("model endpoint unreachable")
        content = self.title if is_title else self.reply
        message = SimpleNamespace(content=content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


@pytest.fixture
def fake_llm():
    return FakeLLMClient()


# ---------------------------------------------------------------------------
# Settings and stores
# ---------------------------------------------------------------------------

@pytest.fixture
def settings():
    """Small chunks and vectors so tests stay fast and readable."""
    from execution.legal_assistant.config import RAGSettings
    return RAGSettings(
        chunk_target_length=200,
        chunk_overlap_ratio=0.1,
        embedding_dimensions=TEST_DIMENSIONS,
        embedding_batch_size=1,
        retrieval_top_k=5,
        poll_interval_ms=0,
        poll_max_attempts=5,
        ingestion_workers=1,
    )


@pytest.fixture
def document_store():
    from execution.legal_assistant.document_store import DocumentStore
    return DocumentStore(embedding_dimensions=TEST_DIMENSIONS)


@pytest.fixture
def conversation_store():
    from execution.legal_assistant.conversations import ConversationStore
    return ConversationStore()


def make_chunks(document_id, vectors, texts=None):
    """Build StoredChunks with explicit embeddings."""
    from execution.legal_assistant.document_store import StoredChunk
    texts = texts or [f"{document_id} chunk {i}" for i in range(len(vectors))]
    return [
        StoredChunk(document_id=document_id, index=i, text=text, embedding=tuple(vector))
        for i, (text, vector) in enumerate(zip(texts, vectors))
    ]


def add_processed_document(store, owner_id, vectors, texts=None, filename="doc.txt", document_id=None):
    """Create a document and drive it straight to ``processed``."""
    record = store.create_document(owner_id, filename, document_id=document_id)
    store.mark_processing(record.document_id)
    store.mark_processed(record.document_id, make_chunks(record.document_id, vectors, texts))
    return record.document_id


def unit_vector(position, dimensions=TEST_DIMENSIONS):
    vector = [0.0] * dimensions
    vector[position] = 1.0
    return vector


# ---------------------------------------------------------------------------
# Singleton resets between tests
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def reset_metrics_singleton():
    """Reset the MetricsCollector singleton between tests."""
    import execution.legal_assistant.metrics as metrics_mod
    metrics_mod.MetricsCollector._instance = None
    metrics_mod._collector = None
    yield
    metrics_mod.MetricsCollector._instance = None
    metrics_mod._collector = None
