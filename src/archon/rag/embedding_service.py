"""
EmbeddingService -- Multi-provider text embeddings with caching.

Providers:
  - "openai": text-embedding-3-small (1536 dimensions), needs OPENAI_API_KEY
  - "local":  sentence-transformers all-MiniLM-L6-v2 (384 dimensions), needs the rag extra
  - "hash":   deterministic hash-based vectors, offline, for tests and demos

The provider is chosen explicitly. With no choice, "openai" is used when
OPENAI_API_KEY is set, otherwise "hash".

Caching: embeddings are cached in-memory (LRU) to avoid recomputing.
All providers produce normalized vectors suitable for cosine similarity.
"""

import hashlib
import logging
import os
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any

from ..errors import RetrievalError

logger = logging.getLogger(__name__)

MAX_CACHE_SIZE = 5000
MAX_TEXT_LENGTH = 8000
PROVIDERS = ("openai", "local", "hash")

OPENAI_EMBEDDING_MODEL = "text-embedding-3-small"
LOCAL_EMBEDDING_MODEL = "all-MiniLM-L6-v2"
HASH_DIMENSIONS = 128


@dataclass
class EmbeddingResult:
    """Result from embedding generation."""

    embedding: list[float]
    dimensions: int
    provider: str
    cached: bool = False


class EmbeddingService:
    """
    Multi-provider embedding service.

    Usage:
        service = EmbeddingService("hash")
        result = service.embed("Quarterly planning notes")
        vector = result.embedding  # list[float]
    """

    def __init__(self, provider: str | None = None):
        if provider is None:
            provider = "openai" if os.environ.get("OPENAI_API_KEY") else "hash"
        if provider not in PROVIDERS:
            raise ValueError(f"Unknown embedding provider: {provider}")

        self._provider = provider
        self._model: Any = None
        self._openai_client: Any = None
        self._cache: OrderedDict[str, list[float]] = OrderedDict()
        self._dimensions = 0

        self._init_provider()

    def _init_provider(self) -> None:
        if self._provider == "openai":
            import openai

            self._openai_client = openai.OpenAI(api_key=os.environ.get("OPENAI_API_KEY", ""))
            self._dimensions = 1536
            logger.info(f"[Embeddings] Using OpenAI {OPENAI_EMBEDDING_MODEL} (1536d)")
        elif self._provider == "local":
            from sentence_transformers import SentenceTransformer

            self._model = SentenceTransformer(LOCAL_EMBEDDING_MODEL)
            self._dimensions = 384
            logger.info("[Embeddings] Using local sentence-transformers (384d)")
        else:
            self._dimensions = HASH_DIMENSIONS
            logger.info("[Embeddings] Using deterministic hash embeddings (128d)")

    def embed(self, text: str) -> EmbeddingResult:
        """Generate an embedding for a single text. Raises RetrievalError on provider failure."""
        text = text[:MAX_TEXT_LENGTH].strip()
        if not text:
            return EmbeddingResult(
                embedding=[0.0] * self._dimensions,
                dimensions=self._dimensions,
                provider=self._provider,
            )

        cache_key = self._cache_key(text)
        if cache_key in self._cache:
            self._cache.move_to_end(cache_key)
            return EmbeddingResult(
                embedding=self._cache[cache_key],
                dimensions=self._dimensions,
                provider=self._provider,
                cached=True,
            )

        if self._provider == "local":
            vector = self._embed_local(text)
        elif self._provider == "openai":
            vector = self._embed_openai(text)
        else:
            vector = self._embed_hash(text)

        self._cache_put(cache_key, vector)

        return EmbeddingResult(
            embedding=vector,
            dimensions=self._dimensions,
            provider=self._provider,
        )

    def embed_batch(self, texts: list[str]) -> list[EmbeddingResult]:
        """Generate embeddings for multiple texts."""
        return [self.embed(t) for t in texts]

    def _embed_local(self, text: str) -> list[float]:
        try:
            vector = self._model.encode(text, normalize_embeddings=True)
        except Exception as e:
            raise RetrievalError(f"Local embedding failed: {e}") from e
        return vector.tolist()

    def _embed_openai(self, text: str) -> list[float]:
        try:
            response = self._openai_client.embeddings.create(
                input=text,
                model=OPENAI_EMBEDDING_MODEL,
            )
        except Exception as e:
            raise RetrievalError(f"OpenAI embedding failed: {type(e).__name__}") from e
        return response.data[0].embedding

    def _embed_hash(self, text: str) -> list[float]:
        """Deterministic hash-based embedding (always available)."""
        h = hashlib.sha256(text.encode()).hexdigest()
        vector = []
        for i in range(0, min(len(h), self._dimensions * 2), 2):
            vector.append(int(h[i : i + 2], 16) / 255.0 - 0.5)
        while len(vector) < self._dimensions:
            ext = hashlib.sha256(f"{text}_{len(vector)}".encode()).hexdigest()
            for i in range(0, min(len(ext), (self._dimensions - len(vector)) * 2), 2):
                vector.append(int(ext[i : i + 2], 16) / 255.0 - 0.5)

        norm = sum(v * v for v in vector) ** 0.5
        if norm > 0:
            vector = [v / norm for v in vector[: self._dimensions]]
        return vector

    def _cache_key(self, text: str) -> str:
        return hashlib.md5(text.encode()).hexdigest()

    def _cache_put(self, key: str, vector: list[float]) -> None:
        """Store in LRU cache with eviction."""
        self._cache[key] = vector
        while len(self._cache) > MAX_CACHE_SIZE:
            self._cache.popitem(last=False)

    @property
    def provider(self) -> str:
        return self._provider

    @property
    def dimensions(self) -> int:
        return self._dimensions
