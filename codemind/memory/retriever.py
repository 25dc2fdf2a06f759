"""
Memory Retriever - turns free-text queries into ranked memories.

Sits between the MemoryManager facade and the vector index: embeds the
query, searches, converts distances into 0-1 relevance, applies
thresholds, and groups results for presentation.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from .base import Memory, SearchFilter, VectorStore
from .embeddings import EmbeddingService

logger = logging.getLogger("codemind.memory.retriever")


@dataclass
class SearchOptions:
    """Options accepted by recall() and the helpers built on it."""
    types: Optional[list[str]] = None
    min_relevance: float = 0.0
    metadata: Optional[dict[str, Any]] = None
    language: Optional[str] = None
    limit: Optional[int] = None

    def to_filter(self) -> Optional[SearchFilter]:
        metadata = dict(self.metadata or {})
        if self.language:
            metadata["language"] = self.language
        if not self.types and not metadata:
            return None
        return SearchFilter(types=self.types, metadata=metadata or None)


@dataclass
class CodeMatch:
    """A stored code memory that resembles a snippet."""
    id: str
    file: Optional[str]
    language: Optional[str]
    content: str
    similarity: float
    metadata: dict[str, Any] = field(default_factory=dict)


# Memory type -> ProjectContext bucket
CONTEXT_BUCKETS = {
    "code": "code",
    "decision": "decisions",
    "style": "styles",
    "architecture": "architecture",
    "conversation": "conversations",
}


@dataclass
class ProjectContext:
    """Recall results for a task, grouped by memory type."""
    code: list[Memory] = field(default_factory=list)
    decisions: list[Memory] = field(default_factory=list)
    styles: list[Memory] = field(default_factory=list)
    architecture: list[Memory] = field(default_factory=list)
    conversations: list[Memory] = field(default_factory=list)
    other: list[Memory] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(len(bucket) for _, bucket in self.sections())

    def sections(self) -> list[tuple[str, list[Memory]]]:
        return [
            ("Relevant Code", self.code),
            ("Past Decisions", self.decisions),
            ("Coding Style", self.styles),
            ("Architecture", self.architecture),
            ("Conversations", self.conversations),
            ("Other Memories", self.other),
        ]

    def to_context_string(self) -> str:
        """Format the grouped memories for inclusion in LLM context."""
        if self.total == 0:
            return """
## Project Memory
No relevant memories found for this task.
The memory store may still be building up, or this task touches new ground.
"""

        lines = ["## Project Memory", ""]
        for title, memories in self.sections():
            if not memories:
                continue
            lines.append(f"### {title}")
            for memory in memories:
                lines.append(memory.to_context_string())
            lines.append("")

        return "\n".join(lines)


class MemoryRetriever:
    """
    Query-side view over the vector index.

    All ranking is by relevance = 1 - index distance.
    """

    def __init__(self, vector_store: VectorStore, embedding_service: EmbeddingService):
        self.vector_store = vector_store
        self.embedding_service = embedding_service

    async def recall(
        self,
        query: str,
        k: int = 5,
        options: Optional[SearchOptions] = None,
    ) -> list[Memory]:
        """
        Find the memories most relevant to a query.

        Args:
            query: Free text to search for
            k: Maximum number of memories to return
            options: Type/metadata filters and the relevance threshold

        Returns:
            Up to k memories ordered by decreasing relevance
        """
        options = options or SearchOptions()
        if k <= 0:
            return []

        query_embedding = await self.embedding_service.embed(query)
        search_filter = options.to_filter()

        # Over-fetch when a post-filter will discard some candidates
        fetch = k * 2 if options.min_relevance > 0 or search_filter is not None else k

        results = await self.vector_store.search(
            query_embedding=query_embedding,
            k=fetch,
            filter=search_filter,
        )

        memories = [
            r.to_memory() for r in results
            if r.relevance >= options.min_relevance
        ]
        memories.sort(key=lambda m: m.relevance, reverse=True)
        memories = memories[:k]

        logger.debug(f"Recalled {len(memories)}/{len(results)} memories for query: {query[:60]!r}")
        return memories

    async def get_relevant_context(
        self,
        task: str,
        options: Optional[SearchOptions] = None,
        default_limit: int = 20,
    ) -> ProjectContext:
        """Recall memories for a task and group them by type."""
        options = options or SearchOptions()
        memories = await self.recall(task, options.limit or default_limit, options)

        context = ProjectContext()
        for memory in memories:
            bucket = CONTEXT_BUCKETS.get(memory.type, "other")
            getattr(context, bucket).append(memory)

        logger.info(f"Built context with {context.total} memories for task: {task[:60]!r}")
        return context

    async def get_recent(self, type: str, limit: int = 10) -> list[Memory]:
        """
        Most recently accessed memories of one type.

        Recency is approximated with a semantic search for a synthetic
        query, then re-sorted by last access. Memories the synthetic query
        doesn't reach are not returned.
        """
        memories = await self.recall(
            f"recent {type} memories",
            limit,
            SearchOptions(types=[type]),
        )
        memories.sort(key=lambda m: m.last_accessed_at, reverse=True)
        return memories

    async def find_similar_code(
        self,
        code_snippet: str,
        limit: int = 5,
        min_similarity: float = 0.7,
    ) -> list[CodeMatch]:
        """Find stored code that resembles a snippet."""
        memories = await self.recall(
            code_snippet,
            limit,
            SearchOptions(types=["code"], min_relevance=min_similarity),
        )
        return [
            CodeMatch(
                id=m.id,
                file=m.metadata.get("file"),
                language=m.metadata.get("language"),
                content=m.content,
                similarity=m.relevance,
                metadata=m.metadata,
            )
            for m in memories
        ]

    async def search_decisions(self, topic: str, limit: int = 5) -> list[Memory]:
        """Find recorded decisions about a topic."""
        return await self.recall(topic, limit, SearchOptions(types=["decision"]))
