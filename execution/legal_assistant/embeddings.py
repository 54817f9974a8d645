"""
Embedding Clients for the Legal Assistant

Maps text to fixed-length vectors through an external provider. The same
service instance must embed both document chunks (at ingestion) and user
messages (at chat time) so both live in one embedding space.

Architecture:
    BaseEmbeddingService  -- shared batching, caching, dimension checks
        OpenAIEmbeddingService    -- OpenAI text-embedding-3-small (default)
        VoyageEmbeddingService    -- Voyage AI voyage-law-2
        CohereEmbeddingService    -- Cohere embed-english-v3.0
    LocalEmbeddingService -- local sentence-transformers model

Every provider error and every vector of the wrong length is raised as
EmbeddingFailure.
"""

import os
import hashlib
import logging
from typing import Optional
from dataclasses import dataclass

from .errors import EmbeddingFailure, InvalidArgument

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingConfig:
    """Configuration for embedding service."""
    provider: str = "openai"
    model: str = "text-embedding-3-small"
    dimensions: int = 1024
    batch_size: int = 64
    use_cache: bool = True


class BaseEmbeddingService:
    """
    Base class for API-based embedding services.

    Subclasses implement:
    - _init_client(): create the provider SDK client (or leave it None)
    - _call_provider(texts, input_type): return one vector per text

    And set these class attributes:
    - _provider_name: Human-readable provider name for error messages
    - _env_var_name: Environment variable name for the API key
    - _doc_input_type / _query_input_type: provider input type strings
    """

    _provider_name: str = "Base"
    _env_var_name: str = ""
    _doc_input_type: str = "document"
    _query_input_type: str = "query"

    def __init__(self, config: Optional[EmbeddingConfig] = None, client=None):
        """
        Initialize embedding service.

        Args:
            config: Optional configuration. Uses defaults if not provided.
            client: Pre-built provider client (skips _init_client).
        """
        self.config = config or EmbeddingConfig()
        self._client = client
        self._cache: dict[str, list[float]] = {}

        if self._client is None:
            self._init_client()

    def _init_client(self):
        raise NotImplementedError("Subclasses must implement _init_client()")

    def _call_provider(self, texts: list[str], input_type: str) -> list[list[float]]:
        raise NotImplementedError("Subclasses must implement _call_provider()")

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """
        Generate embeddings for document chunks, in input order.

        Raises:
            EmbeddingFailure: On provider error; the failing batch's first
                chunk index is attached.
        """
        if not texts:
            return []

        self._require_client()
        batch_size = self.config.batch_size
        batch_count = (len(texts) + batch_size - 1) // batch_size

        logger.info(
            f"Embedding {len(texts)} chunks in {batch_count} batches"
            f" with {self._provider_name}"
        )

        embeddings = []
        for start in range(0, len(texts), batch_size):
            batch = texts[start:start + batch_size]
            embeddings.extend(
                self._embed_batch(batch, self._doc_input_type, start_index=start)
            )
        return embeddings

    def embed_query(self, query: str) -> list[float]:
        """
        Generate the embedding for a chat message / search query.

        Uses the provider's query input type where it has one.
        """
        self._require_client()
        return self._embed_batch([query], self._query_input_type)[0]

    def _require_client(self) -> None:
        if not self._client:
            raise EmbeddingFailure(
                f"{self._provider_name} client not initialized. "
                f"Check {self._env_var_name}."
            )

    def _embed_batch(
        self,
        texts: list[str],
        input_type: str,
        start_index: int = 0,
    ) -> list[list[float]]:
        """Embed a batch of texts, serving what it can from the cache."""
        results: list[Optional[list[float]]] = [None] * len(texts)
        uncached_texts = []
        uncached_indices = []

        for i, text in enumerate(texts):
            cached = self._get_cached(self._get_cache_key(text, input_type))
            if cached is not None:
                results[i] = cached
            else:
                uncached_texts.append(text)
                uncached_indices.append(i)

        if uncached_texts:
            try:
                vectors = self._call_provider(uncached_texts, input_type)
            except EmbeddingFailure:
                raise
            except Exception as e:
                logger.error(f"{self._provider_name} embedding failed: {e}")
                raise EmbeddingFailure(
                    f"{self._provider_name} embedding failed: {e}",
                    chunk_index=start_index + uncached_indices[0],
                ) from e

            if len(vectors) != len(uncached_texts):
                raise EmbeddingFailure(
                    f"{self._provider_name} returned {len(vectors)} embeddings "
                    f"for {len(uncached_texts)} texts",
                    chunk_index=start_index + uncached_indices[0],
                )

            for idx, vector in zip(uncached_indices, vectors):
                vector = [float(v) for v in vector]
                self._check_dimensions(vector, start_index + idx)
                self._set_cached(self._get_cache_key(texts[idx], input_type), vector)
                results[idx] = vector

        return results

    def _check_dimensions(self, vector: list[float], index: int) -> None:
        if len(vector) != self.config.dimensions:
            raise EmbeddingFailure(
                f"{self._provider_name} returned a {len(vector)}-dimensional vector "
                f"for chunk {index}, expected {self.config.dimensions}",
                chunk_index=index,
            )

    def _get_cache_key(self, text: str, input_type: str) -> str:
        content = f"{self.config.model}:{input_type}:{text}"
        return hashlib.sha256(content.encode()).hexdigest()[:32]

    def _get_cached(self, key: str) -> Optional[list[float]]:
        if not self.config.use_cache:
            return None
        return self._cache.get(key)

    def _set_cached(self, key: str, embedding: list[float]) -> None:
        if self.config.use_cache:
            self._cache[key] = embedding

    @property
    def dimensions(self) -> int:
        """Return embedding dimensions."""
        return self.config.dimensions


class OpenAIEmbeddingService(BaseEmbeddingService):
    """
    Embeddings from OpenAI's text-embedding-3 models.

    text-embedding-3 models accept a ``dimensions`` argument, so the vector
    length is pinned to the configured EMBEDDING_DIMENSIONS.
    """

    _provider_name = "OpenAI"
    _env_var_name = "OPENAI_API_KEY"

    def _init_client(self):
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            logger.warning("OPENAI_API_KEY not found. Embeddings will fail.")
            return

        from openai import OpenAI
        self._client = OpenAI(api_key=api_key, timeout=60.0)
        logger.info(f"OpenAI embedding client initialized with model {self.config.model}")

    def _call_provider(self, texts: list[str], input_type: str) -> list[list[float]]:
        response = self._client.embeddings.create(
            model=self.config.model,
            input=texts,
            dimensions=self.config.dimensions,
            encoding_format="float",
        )
        ordered = sorted(response.data, key=lambda item: item.index)
        return [item.embedding for item in ordered]


class VoyageEmbeddingService(BaseEmbeddingService):
    """
    Embedding service using Voyage AI's voyage-law-2 model.

    voyage-law-2 is tuned for legal text and distinguishes document and
    query input types.
    """

    _provider_name = "Voyage AI"
    _env_var_name = "VOYAGE_API_KEY"
    _doc_input_type = "document"
    _query_input_type = "query"

    def _init_client(self):
        api_key = os.getenv("VOYAGE_API_KEY")
        if not api_key:
            logger.warning("VOYAGE_API_KEY not found. Embeddings will fail.")
            return

        import voyageai
        self._client = voyageai.Client(api_key=api_key)
        logger.info(f"Voyage AI client initialized with model {self.config.model}")

    def _call_provider(self, texts: list[str], input_type: str) -> list[list[float]]:
        response = self._client.embed(
            texts=texts,
            model=self.config.model,
            input_type=input_type,
        )
        return response.embeddings


class CohereEmbeddingService(BaseEmbeddingService):
    """Generates embeddings using Cohere's embed-v3 model."""

    _provider_name = "Cohere"
    _env_var_name = "COHERE_API_KEY"
    _doc_input_type = "search_document"
    _query_input_type = "search_query"

    def _init_client(self):
        api_key = os.getenv("COHERE_API_KEY")
        if not api_key:
            logger.warning("COHERE_API_KEY not found. Embeddings will fail.")
            return

        import cohere
        self._client = cohere.Client(api_key)
        logger.info(f"Cohere client initialized with model {self.config.model}")

    def _call_provider(self, texts: list[str], input_type: str) -> list[list[float]]:
        response = self._client.embed(
            texts=texts,
            model=self.config.model,
            input_type=input_type,
        )
        return response.embeddings


class LocalEmbeddingService:
    """
    Embedding service backed by a local sentence-transformers model.

    Good for development: no API key, no network after the first download.
    """

    def __init__(self, model_name: str = "BAAI/bge-m3", dimensions: Optional[int] = None):
        from sentence_transformers import SentenceTransformer
        self._model = SentenceTransformer(model_name)
        self._dimensions = self._model.get_sentence_embedding_dimension()
        if dimensions is not None and dimensions != self._dimensions:
            raise InvalidArgument(
                f"Local model {model_name} produces {self._dimensions}-dimensional "
                f"vectors but EMBEDDING_DIMENSIONS is {dimensions}"
            )
        logger.info(f"Local embedding model loaded: {model_name}")

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            return self._model.encode(texts).tolist()
        except Exception as e:
            raise EmbeddingFailure(f"Local embedding failed: {e}") from e

    def embed_query(self, query: str) -> list[float]:
        try:
            return self._model.encode([query])[0].tolist()
        except Exception as e:
            raise EmbeddingFailure(f"Local embedding failed: {e}") from e

    @property
    def dimensions(self) -> int:
        return self._dimensions


_DEFAULT_MODELS = {
    "openai": "text-embedding-3-small",
    "voyage": "voyage-law-2",
    "cohere": "embed-english-v3.0",
    "local": "BAAI/bge-m3",
}

_PROVIDERS = {
    "openai": OpenAIEmbeddingService,
    "voyage": VoyageEmbeddingService,
    "cohere": CohereEmbeddingService,
}


def get_embedding_service(settings):
    """
    Factory returning the embedding service selected by EMBEDDING_PROVIDER.

    Args:
        settings: RAGSettings

    Returns:
        Configured embedding service
    """
    provider = settings.embedding_provider
    if provider not in _DEFAULT_MODELS:
        raise InvalidArgument(
            f"Unknown EMBEDDING_PROVIDER {provider!r}; "
            f"expected one of {sorted(_DEFAULT_MODELS)}"
        )

    model = settings.embedding_model or _DEFAULT_MODELS[provider]

    if provider == "local":
        return LocalEmbeddingService(model, dimensions=settings.embedding_dimensions)

    config = EmbeddingConfig(
        provider=provider,
        model=model,
        dimensions=settings.embedding_dimensions,
        batch_size=settings.embedding_batch_size,
    )
    return _PROVIDERS[provider](config)


# CLI for testing
if __name__ == "__main__":
    import sys
    from dotenv import load_dotenv
    from .config import RAGSettings

    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    settings = RAGSettings.from_env()
    print(f"Using embedding provider: {settings.embedding_provider}")
    service = get_embedding_service(settings)

    query = " ".join(sys.argv[1:]) or "What are the termination clauses in this contract?"
    print(f"Query: {query}")
    embedding = service.embed_query(query)
    print(f"Embedding dimensions: {len(embedding)}")
    print(f"First 10 values: {embedding[:10]}")
