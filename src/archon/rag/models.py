"""Chunk data model for the knowledge base."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ChunkMetadata:
    """Source provenance for a chunk of knowledge-base text."""

    document_title: str
    section: str = ""
    section_title: str | None = None
    content_type: str | None = None
    page_reference: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str) -> Any:
        """Look up a field by name, falling back to the free-form extras."""
        if key in self.__dataclass_fields__ and key != "extra":
            return getattr(self, key)
        return self.extra.get(key)

    def matches(self, filters: dict[str, list[str]] | None) -> bool:
        """AND across filter keys, OR within each key's accepted values. Empty lists are ignored."""
        if not filters:
            return True
        for key, accepted in filters.items():
            if not accepted:
                continue
            value = self.get(key)
            values = value if isinstance(value, list) else [value]
            if not any(str(v) in accepted for v in values if v is not None):
                return False
        return True

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"document_title": self.document_title, "section": self.section}
        for key in ("section_title", "content_type", "page_reference"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChunkMetadata":
        known = {"document_title", "section", "section_title", "content_type", "page_reference"}
        page = data.get("page_reference")
        return cls(
            document_title=str(data.get("document_title") or "Unknown"),
            section=str(data.get("section") or ""),
            section_title=data.get("section_title"),
            content_type=data.get("content_type"),
            page_reference=str(page) if page is not None else None,
            extra={k: v for k, v in data.items() if k not in known},
        )


@dataclass
class ChunkRecord:
    """A chunk as ingested (before scoring)."""

    chunk_id: str
    content: str
    metadata: ChunkMetadata


@dataclass
class RetrievedChunk:
    """A chunk returned from retrieval, with its relevance score in [0, 1]."""

    chunk_id: str
    content: str
    metadata: ChunkMetadata
    score: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "content": self.content,
            "metadata": self.metadata.to_dict(),
            "score": round(self.score, 4),
        }
