"""
ChromaDB Vector Store Implementation.

ChromaDB is perfect for local/development use:
- No server required
- Stores everything in a local directory
- Built-in persistence
- Good performance for moderate scale (< 1M vectors)
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from .base import (
    IndexRecord,
    MemoryNotInitializedError,
    SearchFilter,
    SearchResult,
    VectorStore,
)

logger = logging.getLogger("codemind.memory.chroma")


class ChromaVectorStore(VectorStore):
    """
    ChromaDB implementation of the vector store.

    Chroma only accepts scalar metadata, so the open metadata map is kept
    as a JSON string next to the flat "type" and "timestamp" fields.
    """

    def __init__(
        self,
        persist_directory: str = "./.codemind/vectors",
        collection_name: str = "codemind_memories",
    ):
        self.persist_directory = Path(persist_directory)
        self.collection_name = collection_name
        self._client = None
        self._collection = None
        logger.info(f"ChromaVectorStore configured with directory: {persist_directory}")

    async def initialize(self) -> None:
        """Initialize ChromaDB client and collection."""
        try:
            import chromadb
            from chromadb.config import Settings
        except ImportError:
            raise RuntimeError(
                "chromadb not installed. Install with: pip install chromadb"
            )

        # Create persist directory if needed
        self.persist_directory.mkdir(parents=True, exist_ok=True)

        # Initialize persistent client
        self._client = chromadb.PersistentClient(
            path=str(self.persist_directory),
            settings=Settings(
                anonymized_telemetry=False,
                allow_reset=True,
            ),
        )

        self._collection = self._get_or_create_collection()

        count = self._collection.count()
        logger.info(f"ChromaDB initialized with {count} existing memories")

    def _get_or_create_collection(self):
        # Cosine space so distance = 1 - cosine similarity
        return self._client.get_or_create_collection(
            name=self.collection_name,
            metadata={
                "description": "codemind semantic memory store",
                "hnsw:space": "cosine",
            },
        )

    def _ensure_initialized(self) -> None:
        """Ensure the store is initialized."""
        if self._collection is None:
            raise MemoryNotInitializedError(
                "ChromaVectorStore not initialized. Call initialize() first."
            )

    def _record_to_metadata(self, record: IndexRecord) -> dict:
        """Convert an IndexRecord to ChromaDB metadata."""
        return {
            "type": record.type,
            "timestamp": record.timestamp.isoformat(),
            "metadata_json": json.dumps(record.metadata, default=str),
        }

    def _result_from_row(self, id: str, metadata: dict, document: str, distance: float) -> SearchResult:
        return SearchResult(
            id=id,
            content=document,
            type=metadata["type"],
            metadata=json.loads(metadata.get("metadata_json") or "{}"),
            score=distance,
            timestamp=datetime.fromisoformat(metadata["timestamp"]),
        )

    def _build_where(self, filter: Optional[SearchFilter]) -> Optional[dict]:
        if filter is None or not filter.types:
            return None
        if len(filter.types) == 1:
            return {"type": filter.types[0]}
        return {"type": {"$in": list(filter.types)}}

    async def insert(self, records: list[IndexRecord]) -> None:
        """Store records with their embeddings, replacing existing ids."""
        self._ensure_initialized()
        if not records:
            return

        self._collection.upsert(
            ids=[r.id for r in records],
            embeddings=[r.embedding for r in records],
            documents=[r.content for r in records],
            metadatas=[self._record_to_metadata(r) for r in records],
        )
        logger.debug(f"Upserted {len(records)} records")

    async def search(
        self,
        query_embedding: list[float],
        k: int = 5,
        filter: Optional[SearchFilter] = None,
    ) -> list[SearchResult]:
        """Search for similar memories."""
        self._ensure_initialized()

        total = self._collection.count()
        if total == 0 or k <= 0:
            return []

        # Metadata conditions can't be pushed into Chroma's where clause,
        # so rank every candidate and filter before taking k.
        if filter is not None and filter.has_metadata_conditions:
            n_results = total
        else:
            n_results = min(k, total)

        query_kwargs = {
            "query_embeddings": [query_embedding],
            "n_results": n_results,
            "include": ["documents", "metadatas", "distances"],
        }
        where = self._build_where(filter)
        if where is not None:
            query_kwargs["where"] = where

        results = self._collection.query(**query_kwargs)

        search_results = []
        if results["ids"] and results["ids"][0]:
            for i, id in enumerate(results["ids"][0]):
                result = self._result_from_row(
                    id=id,
                    metadata=results["metadatas"][0][i],
                    document=results["documents"][0][i],
                    distance=results["distances"][0][i],
                )
                if filter is not None and not filter.matches_metadata(result.metadata):
                    continue
                search_results.append(result)

        search_results.sort(key=lambda r: r.score)
        return search_results[:k]

    async def get(self, id: str) -> Optional[IndexRecord]:
        """Get a specific record by id."""
        self._ensure_initialized()

        results = self._collection.get(
            ids=[id],
            include=["documents", "metadatas", "embeddings"],
        )

        if results["ids"]:
            metadata = results["metadatas"][0]
            return IndexRecord(
                id=results["ids"][0],
                embedding=[float(v) for v in results["embeddings"][0]],
                content=results["documents"][0],
                type=metadata["type"],
                metadata=json.loads(metadata.get("metadata_json") or "{}"),
                timestamp=datetime.fromisoformat(metadata["timestamp"]),
            )
        return None

    async def delete(self, ids: list[str]) -> None:
        self._ensure_initialized()
        if ids:
            self._collection.delete(ids=ids)

    async def clear(self) -> None:
        self._ensure_initialized()
        self._client.delete_collection(self.collection_name)
        self._collection = self._get_or_create_collection()
        logger.info("ChromaDB collection cleared")

    async def count(self) -> int:
        """Get total number of stored memories."""
        self._ensure_initialized()
        return self._collection.count()

    async def stats(self) -> dict[str, Any]:
        self._ensure_initialized()
        return {
            "total_memories": self._collection.count(),
            "db_path": str(self.persist_directory),
        }

    async def close(self) -> None:
        """Clean up resources."""
        # ChromaDB PersistentClient handles cleanup automatically
        self._client = None
        self._collection = None
        logger.info("ChromaDB connection closed")
