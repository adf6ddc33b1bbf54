"""
Retriever -- the knowledge-base lookup agents run before every model call.

Contract of retrieve():
  - results sorted by descending score
  - at most top_k results
  - every result scores >= score_threshold
  - metadata filters honoured (AND across keys, OR within a key)

Ingestion reads JSON chunk files: each file holds a list of
{"chunk_id": ..., "content": ..., "metadata": {"document_title": ..., ...}}.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from ..errors import RetrievalError
from .embedding_service import EmbeddingService
from .models import ChunkMetadata, ChunkRecord, RetrievedChunk
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

MIN_TOP_K = 1
MAX_TOP_K = 20
CANDIDATE_MULTIPLIER = 4


class Retriever:
    """
    Embeds queries and ranks stored chunks against them.

    Usage:
        retriever = Retriever(VectorStore("memory"), EmbeddingService("hash"))
        await retriever.initialize()
        await retriever.ingest_directory(Path("data/chunks"))
        chunks = await retriever.retrieve("project deadlines", top_k=5, score_threshold=0.5)
    """

    def __init__(self, store: VectorStore, embedder: EmbeddingService):
        self._store = store
        self._embedder = embedder
        self._initialized = False

    async def initialize(self) -> None:
        self._initialized = True
        logger.info(
            f"[Retriever] Ready ({self._store.backend} store, "
            f"{self._embedder.provider} embeddings, {self._store.count} chunks)"
        )

    def is_ready(self) -> bool:
        """Initialised and holding at least one chunk."""
        return self._initialized and self._store.count > 0

    async def retrieve(
        self,
        query: str,
        top_k: int = 5,
        filters: dict[str, list[str]] | None = None,
        score_threshold: float = 0.7,
    ) -> list[RetrievedChunk]:
        if not self._initialized:
            raise RetrievalError("Retriever not initialized. Call initialize() first.")
        if not query or not query.strip():
            raise RetrievalError("Query cannot be empty")
        if not MIN_TOP_K <= top_k <= MAX_TOP_K:
            raise RetrievalError(f"top_k must be between {MIN_TOP_K} and {MAX_TOP_K} (got {top_k})")
        if not 0.0 <= score_threshold <= 1.0:
            raise RetrievalError(f"score_threshold must be between 0 and 1 (got {score_threshold})")

        embedding = await asyncio.to_thread(self._embedder.embed, query)
        candidates = await asyncio.to_thread(
            self._store.search,
            embedding.embedding,
            top_k * CANDIDATE_MULTIPLIER,
            filters,
        )

        chunks = [
            RetrievedChunk(
                chunk_id=c.id,
                content=c.content,
                metadata=ChunkMetadata.from_dict(c.metadata),
                score=c.score,
            )
            for c in candidates
            if c.score >= score_threshold
        ]
        chunks = [c for c in chunks if c.metadata.matches(filters)]
        chunks.sort(key=lambda c: c.score, reverse=True)
        chunks = chunks[:top_k]

        logger.debug(
            f"[Retriever] {len(chunks)} chunk(s) for query ({len(query)} chars, "
            f"top_k={top_k}, threshold={score_threshold})"
        )
        return chunks

    async def add_chunks(self, records: list[ChunkRecord]) -> int:
        """Embed and store chunks. Returns the number stored."""
        for record in records:
            embedding = await asyncio.to_thread(self._embedder.embed, record.content)
            self._store.add(
                record.chunk_id,
                record.content,
                record.metadata.to_dict(),
                embedding.embedding,
            )
        return len(records)

    async def ingest_directory(self, directory: Path) -> int:
        """Load every *.json chunk file under a directory."""
        if not directory.is_dir():
            raise RetrievalError(f"Chunk directory not found: {directory}")

        total = 0
        for path in sorted(directory.rglob("*.json")):
            try:
                records = parse_chunk_file(json.loads(path.read_text(encoding="utf-8")))
            except (json.JSONDecodeError, KeyError, TypeError) as e:
                logger.warning(f"[Retriever] Skipping malformed chunk file {path.name}: {e}")
                continue
            total += await self.add_chunks(records)

        logger.info(f"[Retriever] Ingested {total} chunks from {directory}")
        return total

    async def reingest(self, directory: Path) -> int:
        """Clear the index and ingest the directory again."""
        self.clear()
        return await self.ingest_directory(directory)

    async def test(self) -> bool:
        """Round-trip a sample query. Never raises."""
        try:
            await self.retrieve("test", top_k=1, score_threshold=0.0)
            return True
        except RetrievalError as e:
            logger.warning(f"[Retriever] Self-test failed: {e}")
            return False

    def clear(self) -> None:
        self._store.clear()

    def stats(self) -> dict[str, Any]:
        return {
            "initialized": self._initialized,
            "backend": self._store.backend,
            "embedding_provider": self._embedder.provider,
            "total_chunks": self._store.count,
            "documents": len(self._store.documents()),
        }


def parse_chunk_file(data: Any) -> list[ChunkRecord]:
    """Turn a decoded chunk file (list of chunk dicts) into ChunkRecords."""
    if not isinstance(data, list):
        raise TypeError("chunk file must contain a JSON list")
    return [
        ChunkRecord(
            chunk_id=str(item["chunk_id"]),
            content=str(item["content"]),
            metadata=ChunkMetadata.from_dict(item.get("metadata") or {}),
        )
        for item in data
    ]
