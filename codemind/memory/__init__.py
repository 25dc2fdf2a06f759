"""
Semantic Memory System for the coding assistant.

This module turns code, decisions and conversations into vector memories,
recalls them by meaning, keeps a small working memory in front of
long-term memory, and persists structured preferences and patterns.
"""

from .base import (
    CodemindError,
    DimensionMismatchError,
    IndexRecord,
    Memory,
    MemoryNotInitializedError,
    SearchFilter,
    SearchResult,
    VectorStore,
)
from .embeddings import (
    EmbeddingService,
    HashEmbeddingService,
    cosine_similarity,
    create_embedding_service,
)
from .memory_store import InMemoryVectorStore
from .chroma_store import ChromaVectorStore
from .retriever import MemoryRetriever, ProjectContext, SearchOptions
from .tiered import TieredMemoryManager
from .persistent import EntryQuery, PersistentEntry, PersistentStore
from .fingerprint import CodeFragment, FingerprintAggregator, ProjectFingerprint
from .memory_manager import ArchitectureDecision, IndexingProgress, MemoryManager, create_memory_manager

__all__ = [
    "CodemindError",
    "DimensionMismatchError",
    "IndexRecord",
    "Memory",
    "MemoryNotInitializedError",
    "SearchFilter",
    "SearchResult",
    "VectorStore",
    "EmbeddingService",
    "HashEmbeddingService",
    "cosine_similarity",
    "create_embedding_service",
    "InMemoryVectorStore",
    "ChromaVectorStore",
    "MemoryRetriever",
    "ProjectContext",
    "SearchOptions",
    "TieredMemoryManager",
    "EntryQuery",
    "PersistentEntry",
    "PersistentStore",
    "CodeFragment",
    "FingerprintAggregator",
    "ProjectFingerprint",
    "ArchitectureDecision",
    "IndexingProgress",
    "MemoryManager",
    "create_memory_manager",
]
