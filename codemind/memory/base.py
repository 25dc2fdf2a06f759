"""
Base interfaces and data structures for vector memory.

Defines the memory record, the search contract, and the abstract
interface that different vector store backends must implement.
"""

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional


# Known memory types. The set is open: any string is accepted.
MEMORY_TYPES = (
    "code",
    "decision",
    "style",
    "architecture",
    "conversation",
    "episodic",
    "semantic",
    "procedural",
)

DEFAULT_IMPORTANCE = 0.5


class CodemindError(Exception):
    """Base class for memory subsystem errors."""


class MemoryNotInitializedError(CodemindError, RuntimeError):
    """Raised when a component is used before initialize() completed."""


class DimensionMismatchError(CodemindError, ValueError):
    """Raised when vectors of different lengths are compared."""

    def __init__(self, left: int, right: int):
        self.left = left
        self.right = right
        super().__init__(f"Vector dimension mismatch: {left} != {right}")


@dataclass
class Memory:
    """
    A single piece of remembered text and its embedding.

    The record is owned by exactly one tier at a time; moving it between
    tiers goes through copy() so the two tiers never share mutable state.
    """
    type: str
    content: str
    id: str = ""
    embedding: Optional[list[float]] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    access_count: int = 0
    last_accessed_at: datetime = field(default_factory=datetime.now)

    # Set by recall, never persisted
    relevance: Optional[float] = None

    @property
    def importance(self) -> float:
        return float(self.metadata.get("importance", DEFAULT_IMPORTANCE))

    @importance.setter
    def importance(self, value: float) -> None:
        self.metadata["importance"] = value

    def touch(self) -> None:
        """Record an access."""
        self.access_count += 1
        self.last_accessed_at = datetime.now()

    def copy(self) -> "Memory":
        return copy.deepcopy(self)

    def to_context_string(self) -> str:
        """Format this memory for inclusion in LLM context."""
        header = f"### [{self.type}]"
        source = self.metadata.get("file") or self.metadata.get("title")
        if source:
            header += f" {source}"
        if self.relevance is not None:
            header += f" ({self.relevance:.0%} relevant)"
        return f"{header}\n{self.content}\n"


@dataclass
class IndexRecord:
    """What the vector index stores for each memory."""
    id: str
    embedding: list[float]
    content: str
    type: str
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class SearchResult:
    """A search result from the vector store."""
    id: str
    content: str
    type: str
    metadata: dict[str, Any]
    score: float  # Distance, lower is nearer
    timestamp: datetime

    @property
    def relevance(self) -> float:
        """Similarity in 0-1, higher is more relevant."""
        return 1 - self.score

    def to_memory(self) -> Memory:
        """Rebuild a Memory from an index hit."""
        last_accessed = self.metadata.get("last_accessed_at")
        return Memory(
            id=self.id,
            type=self.type,
            content=self.content,
            metadata=dict(self.metadata),
            created_at=self.timestamp,
            updated_at=self.timestamp,
            access_count=int(self.metadata.get("access_count", 0)),
            last_accessed_at=(
                datetime.fromisoformat(last_accessed) if last_accessed else self.timestamp
            ),
            relevance=self.relevance,
        )


@dataclass
class SearchFilter:
    """
    Restricts search candidates before ranking.

    Every given condition must hold: the type is one of `types`, each
    `metadata` key equals the given value, and `predicate(metadata)` is true.
    """
    types: Optional[list[str]] = None
    metadata: Optional[dict[str, Any]] = None
    predicate: Optional[Callable[[dict[str, Any]], bool]] = None

    @property
    def has_metadata_conditions(self) -> bool:
        return bool(self.metadata) or self.predicate is not None

    def matches_metadata(self, metadata: dict[str, Any]) -> bool:
        if self.metadata:
            for key, value in self.metadata.items():
                if metadata.get(key) != value:
                    return False
        if self.predicate is not None and not self.predicate(metadata):
            return False
        return True

    def matches(self, record_type: str, metadata: dict[str, Any]) -> bool:
        if self.types and record_type not in self.types:
            return False
        return self.matches_metadata(metadata)


class VectorStore(ABC):
    """
    Abstract interface for vector storage backends.

    Implementations: in-memory linear scan (default), ChromaDB (on disk)
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the vector store (create collections, etc.)."""
        pass

    @abstractmethod
    async def insert(self, records: list[IndexRecord]) -> None:
        """Insert records, replacing any existing record with the same id."""
        pass

    @abstractmethod
    async def search(
        self,
        query_embedding: list[float],
        k: int = 5,
        filter: Optional[SearchFilter] = None,
    ) -> list[SearchResult]:
        """
        Find the nearest neighbours of a query vector.

        Args:
            query_embedding: The embedding to search for
            k: Maximum number of results
            filter: Optional restriction applied before ranking

        Returns:
            Up to k results, ordered by ascending distance
        """
        pass

    @abstractmethod
    async def get(self, id: str) -> Optional[IndexRecord]:
        """Get a single record by id."""
        pass

    @abstractmethod
    async def delete(self, ids: list[str]) -> None:
        """Delete records by id. Unknown ids are ignored."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Remove every record."""
        pass

    @abstractmethod
    async def count(self) -> int:
        """Get total number of stored memories."""
        pass

    @abstractmethod
    async def stats(self) -> dict[str, Any]:
        """Return {"total_memories": int, "db_path": str}."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Clean up resources."""
        pass
