"""
Retrieval-augmented generation: the knowledge base agents read from.

  - models.py: ChunkMetadata, ChunkRecord, RetrievedChunk
  - embedding_service.py: Multi-provider embeddings with caching
  - vector_store.py: In-memory or ChromaDB chunk storage
  - retriever.py: Ranked, filtered, thresholded lookup
"""

from .embedding_service import EmbeddingService
from .models import ChunkMetadata, ChunkRecord, RetrievedChunk
from .retriever import Retriever
from .vector_store import VectorStore
