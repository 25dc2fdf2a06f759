"""
In-Memory Vector Store Implementation.

A linear-scan index over a dict of records. Every search is O(n) in the
number of stored memories, which is fine for the thousands-to-low-millions
range this subsystem targets; past that, use an indexed backend.
"""

import copy
import logging
from typing import Any, Optional

from .base import (
    IndexRecord,
    MemoryNotInitializedError,
    SearchFilter,
    SearchResult,
    VectorStore,
)
from .embeddings import cosine_similarity

logger = logging.getLogger("codemind.memory.memory_store")


class InMemoryVectorStore(VectorStore):
    """
    Process-local vector store.

    Distances are cosine distances (1 - cosine similarity), so they line
    up with what the ChromaDB backend reports.
    """

    DB_PATH = ":memory:"

    def __init__(self):
        self._records: Optional[dict[str, IndexRecord]] = None

    async def initialize(self) -> None:
        if self._records is None:
            self._records = {}
        logger.info(f"InMemoryVectorStore initialized with {len(self._records)} memories")

    def _ensure_initialized(self) -> dict[str, IndexRecord]:
        if self._records is None:
            raise MemoryNotInitializedError(
                "InMemoryVectorStore not initialized. Call initialize() first."
            )
        return self._records

    async def insert(self, records: list[IndexRecord]) -> None:
        store = self._ensure_initialized()
        for record in records:
            # Copy so callers can't mutate what the index holds
            store[record.id] = copy.deepcopy(record)
        logger.debug(f"Upserted {len(records)} records")

    async def search(
        self,
        query_embedding: list[float],
        k: int = 5,
        filter: Optional[SearchFilter] = None,
    ) -> list[SearchResult]:
        store = self._ensure_initialized()
        if k <= 0:
            return []

        results = []
        for record in store.values():
            if filter is not None and not filter.matches(record.type, record.metadata):
                continue

            distance = 1 - cosine_similarity(query_embedding, record.embedding)
            results.append(SearchResult(
                id=record.id,
                content=record.content,
                type=record.type,
                metadata=dict(record.metadata),
                score=distance,
                timestamp=record.timestamp,
            ))

        # Stable sort keeps insertion order among equal distances
        results.sort(key=lambda r: r.score)
        return results[:k]

    async def get(self, id: str) -> Optional[IndexRecord]:
        record = self._ensure_initialized().get(id)
        return copy.deepcopy(record) if record else None

    async def delete(self, ids: list[str]) -> None:
        store = self._ensure_initialized()
        for id in ids:
            store.pop(id, None)

    async def clear(self) -> None:
        self._ensure_initialized().clear()
        logger.info("InMemoryVectorStore cleared")

    async def count(self) -> int:
        return len(self._ensure_initialized())

    async def stats(self) -> dict[str, Any]:
        return {
            "total_memories": len(self._ensure_initialized()),
            "db_path": self.DB_PATH,
        }

    async def close(self) -> None:
        self._records = None
        logger.info("InMemoryVectorStore closed")
