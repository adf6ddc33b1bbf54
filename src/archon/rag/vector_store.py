"""
VectorStore -- chunk embeddings behind an in-memory or ChromaDB backend.

Backends are chosen explicitly:
  - "memory": cosine similarity over an in-process list (tests, small vaults)
  - "chroma": persistent ChromaDB collection (needs the rag extra)

Both return SearchResult lists ordered by descending similarity, already
restricted by metadata filters. Threshold and top-k policy belong to the
Retriever, not to the store.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any

from ..security.prompt_guard import sanitize_for_prompt
from .models import ChunkMetadata

logger = logging.getLogger(__name__)

MAX_DOCUMENT_LENGTH = 10_000
MAX_RESULTS = 200
BACKENDS = ("memory", "chroma")


@dataclass
class SearchResult:
    """A single search result from the vector store."""

    id: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    score: float = 0.0


def chroma_where(filters: dict[str, list[str]] | None) -> dict[str, Any] | None:
    """Translate {key: [values]} filters into a ChromaDB where clause."""
    clauses = [{key: {"$in": list(values)}} for key, values in (filters or {}).items() if values]
    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _scalar_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """ChromaDB only stores scalar metadata values."""
    flat: dict[str, Any] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            flat[key] = value
        else:
            flat[key] = json.dumps(value, default=str)
    return flat


class VectorStore:
    """
    Chunk storage with similarity search.

    Usage:
        store = VectorStore(backend="memory")
        store.add("c1", "Quarterly goals...", {"document_title": "Goals"}, embedding=[...])
        results = store.search(query_embedding=[...], limit=20)
    """

    def __init__(
        self,
        backend: str = "memory",
        collection: str = "archon_chunks",
        persist_dir: str = ".archon/chroma",
    ):
        if backend not in BACKENDS:
            raise ValueError(f"Unknown vector backend: {backend}")
        self._backend = backend
        self._collection_name = collection
        self._persist_dir = persist_dir
        self._collection: Any = None
        self._entries: list[dict[str, Any]] = []

        if backend == "chroma":
            self._init_chroma()
        else:
            logger.info("[VectorStore] Using in-memory store")

    def _init_chroma(self) -> None:
        import chromadb

        client = chromadb.PersistentClient(path=self._persist_dir)
        self._collection = client.get_or_create_collection(
            name=self._collection_name,
            metadata={"hnsw:space": "cosine"},
        )
        logger.info(
            f"[VectorStore] ChromaDB collection '{self._collection_name}' at {self._persist_dir}"
        )

    @property
    def backend(self) -> str:
        return self._backend

    def add(
        self,
        doc_id: str,
        content: str,
        metadata: dict[str, Any],
        embedding: list[float],
    ) -> None:
        """Add or replace a chunk."""
        content = sanitize_for_prompt(content, max_length=MAX_DOCUMENT_LENGTH)

        if self._collection is not None:
            self._collection.upsert(
                ids=[doc_id],
                documents=[content],
                metadatas=[_scalar_metadata(metadata)],
                embeddings=[embedding],
            )
            return

        entry = {"id": doc_id, "content": content, "metadata": metadata, "embedding": embedding}
        for i, existing in enumerate(self._entries):
            if existing["id"] == doc_id:
                self._entries[i] = entry
                break
        else:
            self._entries.append(entry)

    def search(
        self,
        query_embedding: list[float],
        limit: int = 10,
        filters: dict[str, list[str]] | None = None,
    ) -> list[SearchResult]:
        """Nearest chunks to the query embedding, best first."""
        limit = max(1, min(limit, MAX_RESULTS))
        if self._collection is not None:
            return self._search_chroma(query_embedding, limit, filters)
        return self._search_memory(query_embedding, limit, filters)

    def delete(self, doc_id: str) -> None:
        if self._collection is not None:
            self._collection.delete(ids=[doc_id])
        else:
            self._entries = [e for e in self._entries if e["id"] != doc_id]

    def clear(self) -> None:
        if self._collection is not None:
            all_ids = self._collection.get()["ids"]
            if all_ids:
                self._collection.delete(ids=all_ids)
        else:
            self._entries.clear()

    @property
    def count(self) -> int:
        if self._collection is not None:
            return self._collection.count()
        return len(self._entries)

    def documents(self) -> set[str]:
        """Distinct document titles in the store."""
        if self._collection is not None:
            metas = self._collection.get(include=["metadatas"]).get("metadatas") or []
        else:
            metas = [e["metadata"] for e in self._entries]
        return {str(m.get("document_title")) for m in metas if m and m.get("document_title")}

    def _search_chroma(
        self, query_embedding: list[float], limit: int, filters: dict[str, list[str]] | None
    ) -> list[SearchResult]:
        kwargs: dict[str, Any] = {
            "query_embeddings": [query_embedding],
            "n_results": min(limit, max(self._collection.count(), 1)),
        }
        where = chroma_where(filters)
        if where:
            kwargs["where"] = where

        results = self._collection.query(**kwargs)

        ids = results.get("ids", [[]])[0]
        docs = results.get("documents", [[]])[0]
        metas = results.get("metadatas", [[]])[0]
        dists = results.get("distances", [[]])[0]

        items = []
        for i, doc_id in enumerate(ids):
            score = 1.0 - (dists[i] if i < len(dists) else 1.0)
            items.append(SearchResult(
                id=doc_id,
                content=docs[i] if i < len(docs) else "",
                metadata=metas[i] if i < len(metas) else {},
                score=min(1.0, max(0.0, score)),
            ))
        items.sort(key=lambda r: r.score, reverse=True)
        return items

    def _search_memory(
        self, query_embedding: list[float], limit: int, filters: dict[str, list[str]] | None
    ) -> list[SearchResult]:
        scored = []
        for entry in self._entries:
            if filters and not ChunkMetadata.from_dict(entry["metadata"]).matches(filters):
                continue
            score = self._cosine_similarity(query_embedding, entry["embedding"])
            scored.append(SearchResult(
                id=entry["id"],
                content=entry["content"],
                metadata=entry["metadata"],
                score=min(1.0, max(0.0, score)),
            ))

        scored.sort(key=lambda r: r.score, reverse=True)
        return scored[:limit]

    @staticmethod
    def _cosine_similarity(a: list[float], b: list[float]) -> float:
        if len(a) != len(b):
            return 0.0
        dot = sum(x * y for x, y in zip(a, b))
        norm_a = math.sqrt(sum(x * x for x in a))
        norm_b = math.sqrt(sum(x * x for x in b))
        if norm_a == 0 or norm_b == 0:
            return 0.0
        return dot / (norm_a * norm_b)
