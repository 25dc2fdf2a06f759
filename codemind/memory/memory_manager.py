"""
Memory Manager - Orchestrates the semantic memory system.

This is the high-level interface the chat/agent layer uses.
It handles:
- Embedding and storing memories (code, decisions, styles, ...)
- Recalling memories and grouping them into task context
- Feeding every write through working memory
- Wiring embedder, index, tiers and persistent store from config
"""

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from ..config import MemoryConfig
from .base import IndexRecord, Memory, MemoryNotInitializedError, VectorStore
from .embeddings import EmbeddingService, create_embedding_service
from .memory_store import InMemoryVectorStore
from .persistent import PersistentStore
from .retriever import CodeMatch, MemoryRetriever, ProjectContext, SearchOptions
from .tiered import TieredMemoryManager

logger = logging.getLogger("codemind.memory.manager")

# Whole files above this size are not indexed
MAX_INDEXED_FILE_CHARS = 50000

LANGUAGE_BY_EXTENSION = {
    ".ts": "typescript",
    ".tsx": "typescript-react",
    ".js": "javascript",
    ".jsx": "javascript-react",
    ".py": "python",
    ".java": "java",
    ".go": "go",
    ".rs": "rust",
    ".cpp": "cpp",
    ".c": "c",
    ".h": "c-header",
}

# Directories never scanned by index_project
IGNORED_DIRS = frozenset({
    "node_modules",
    ".git",
    "dist",
    "build",
    ".next",
    "coverage",
    "__pycache__",
})


@dataclass
class ArchitectureDecision:
    """A design decision worth remembering."""
    title: str
    reasoning: str
    alternatives: list[str] = field(default_factory=list)
    outcome: Optional[str] = None
    category: Optional[str] = None
    impact: Optional[str] = None

    def to_content(self) -> str:
        alternatives = "\n".join(
            f"{i}. {alt}" for i, alt in enumerate(self.alternatives, start=1)
        )
        return "\n".join([
            f"Decision: {self.title}",
            "",
            f"Reasoning: {self.reasoning}",
            "",
            "Alternatives Considered:",
            alternatives,
            "",
            f"Outcome: {self.outcome or 'Pending'}",
        ]).strip()


@dataclass
class IndexingProgress:
    total: int
    indexed: int
    current: str
    percentage: int


def scan_project_files(project_path: str) -> list[str]:
    """Source files under a project, skipping dependency and build output."""
    root = Path(project_path)
    files = []
    for path in sorted(root.rglob("*")):
        if path.suffix not in LANGUAGE_BY_EXTENSION or not path.is_file():
            continue
        if IGNORED_DIRS.intersection(path.relative_to(root).parts[:-1]):
            continue
        files.append(str(path))
    return files


@dataclass
class MemoryStats:
    total_memories: int
    by_type: dict[str, int]
    db_path: str
    working_memory: int = 0
    long_term_memory: int = 0
    persistent_entries: int = 0


class MemoryManager:
    """
    High-level memory management for the coding assistant.

    One instance per session; pass it to whatever needs memory.
    """

    def __init__(
        self,
        vector_store: VectorStore,
        embedding_service: EmbeddingService,
        tiers: Optional[TieredMemoryManager] = None,
        persistent: Optional[PersistentStore] = None,
        min_relevance: float = 0.0,
        context_limit: int = 20,
        similar_code_threshold: float = 0.7,
    ):
        self.vector_store = vector_store
        self.embedding_service = embedding_service
        self.retriever = MemoryRetriever(vector_store, embedding_service)
        self.tiers = tiers if tiers is not None else TieredMemoryManager(embedding_service)
        self.persistent = persistent
        self.min_relevance = min_relevance
        self.context_limit = context_limit
        self.similar_code_threshold = similar_code_threshold
        # id -> type for memories remembered through this instance
        self._memory_types: dict[str, str] = {}
        self._initialized = False
        logger.info("MemoryManager created")

    async def initialize(self) -> None:
        """Initialize the memory system."""
        if self._initialized:
            logger.info("MemoryManager already initialized")
            return

        await self.embedding_service.initialize()
        await self.vector_store.initialize()
        if self.persistent is not None:
            await self.persistent.initialize()
        self.tiers.start()

        self._initialized = True
        stats = await self.vector_store.stats()
        logger.info(
            f"MemoryManager initialized with {stats['total_memories']} stored memories "
            f"({stats['db_path']})"
        )

    def _ensure_initialized(self) -> None:
        """Ensure the system is initialized."""
        if not self._initialized:
            raise MemoryNotInitializedError("MemoryManager not initialized. Call initialize() first.")

    @staticmethod
    def _generate_id(memory: Memory) -> str:
        digest = hashlib.sha256(
            f"{memory.content}{memory.type}{time.time_ns()}".encode()
        ).hexdigest()
        return digest[:16]

    # ------------------------------------------------------------------
    # Core memory operations
    # ------------------------------------------------------------------

    async def remember(self, memory: Memory) -> str:
        """
        Embed and store a memory.

        Returns:
            The ID of the stored memory
        """
        self._ensure_initialized()

        memory = memory.copy()
        if not memory.id:
            memory.id = self._generate_id(memory)
        if memory.embedding is None:
            memory.embedding = await self.embedding_service.embed(memory.content)

        await self.vector_store.insert([IndexRecord(
            id=memory.id,
            embedding=memory.embedding,
            content=memory.content,
            type=memory.type,
            metadata=memory.metadata,
            timestamp=memory.created_at,
        )])
        self._memory_types[memory.id] = memory.type

        await self.tiers.push_to_working_memory(memory)

        logger.info(f"Remembered {memory.type} memory {memory.id[:8]}")
        return memory.id

    async def recall(
        self,
        query: str,
        k: int = 5,
        options: Optional[SearchOptions] = None,
    ) -> list[Memory]:
        """Recall memories by query, most relevant first."""
        self._ensure_initialized()
        if options is None:
            options = SearchOptions(min_relevance=self.min_relevance)
        return await self.retriever.recall(query, k, options)

    async def forget(self, memory_id: str) -> None:
        """Remove a memory from the index and long-term memory."""
        self._ensure_initialized()
        await self.vector_store.delete([memory_id])
        self.tiers.forget(memory_id)
        self._memory_types.pop(memory_id, None)
        logger.info(f"Forgot memory {memory_id[:8]}")

    async def clear_all(self) -> None:
        """Remove every vector memory."""
        self._ensure_initialized()
        await self.vector_store.clear()
        self.tiers.clear()
        self._memory_types.clear()
        logger.info("All memories cleared")

    # ------------------------------------------------------------------
    # Context retrieval
    # ------------------------------------------------------------------

    async def get_relevant_context(
        self,
        task: str,
        options: Optional[SearchOptions] = None,
    ) -> ProjectContext:
        """Get memories relevant to a task, grouped by type."""
        self._ensure_initialized()
        return await self.retriever.get_relevant_context(
            task,
            options,
            default_limit=self.context_limit,
        )

    async def find_similar_code(self, code_snippet: str, limit: int = 5) -> list[CodeMatch]:
        self._ensure_initialized()
        return await self.retriever.find_similar_code(
            code_snippet,
            limit,
            min_similarity=self.similar_code_threshold,
        )

    async def get_recent(self, type: str, limit: int = 10) -> list[Memory]:
        self._ensure_initialized()
        return await self.retriever.get_recent(type, limit)

    # ------------------------------------------------------------------
    # Decisions and code
    # ------------------------------------------------------------------

    async def remember_decision(self, decision: ArchitectureDecision) -> str:
        """Record an architecture decision as a searchable memory."""
        self._ensure_initialized()

        memory_id = await self.remember(Memory(
            type="decision",
            content=decision.to_content(),
            metadata={
                "title": decision.title,
                "category": decision.category,
                "impact": decision.impact,
                "timestamp": int(time.time() * 1000),
            },
        ))
        logger.info(f"Decision recorded: {decision.title}")
        return memory_id

    async def search_decisions(self, topic: str, limit: int = 5) -> list[Memory]:
        self._ensure_initialized()
        return await self.retriever.search_decisions(topic, limit)

    async def index_file(self, file_path: str) -> Optional[str]:
        """
        Store a whole source file as one code memory.

        Empty files and files over MAX_INDEXED_FILE_CHARS are skipped.

        Returns:
            The memory ID, or None if the file was skipped
        """
        self._ensure_initialized()

        path = Path(file_path)
        content = path.read_text(encoding="utf-8")
        if not content.strip() or len(content) > MAX_INDEXED_FILE_CHARS:
            logger.debug(f"Skipping {file_path} ({len(content)} chars)")
            return None

        language = LANGUAGE_BY_EXTENSION.get(path.suffix, "unknown")
        embedding = await self.embedding_service.embed_with_context(
            content,
            filename=str(path),
            language=language,
        )

        return await self.remember(Memory(
            type="code",
            content=content,
            embedding=embedding,
            metadata={
                "file": str(path),
                "language": language,
                "size": len(content),
                "last_modified": datetime.fromtimestamp(path.stat().st_mtime).isoformat(),
            },
        ))

    async def index_project(
        self,
        project_path: str,
        on_progress: Optional[Callable[[IndexingProgress], None]] = None,
    ) -> int:
        """
        Index every supported source file under a project.

        A file that fails to read or embed is logged and skipped; the rest
        of the project is still indexed.

        Args:
            project_path: Project root directory
            on_progress: Called after each successfully processed file

        Returns:
            Number of files processed without error (skipped files included)
        """
        self._ensure_initialized()

        logger.info(f"Indexing project: {project_path}")
        files = await asyncio.to_thread(scan_project_files, project_path)
        logger.info(f"Found {len(files)} files to index")

        indexed = 0
        for file_path in files:
            try:
                await self.index_file(file_path)
            except Exception as e:
                logger.warning(f"Failed to index {file_path}: {e}")
                continue

            indexed += 1
            percentage = round(indexed / len(files) * 100)
            if on_progress is not None:
                on_progress(IndexingProgress(
                    total=len(files),
                    indexed=indexed,
                    current=file_path,
                    percentage=percentage,
                ))
            if indexed % 10 == 0:
                logger.info(f"Progress: {indexed}/{len(files)} ({percentage}%)")

        logger.info(f"Project indexed: {indexed}/{len(files)} files")
        return indexed

    # ------------------------------------------------------------------
    # Statistics and lifecycle
    # ------------------------------------------------------------------

    async def get_stats(self) -> MemoryStats:
        self._ensure_initialized()

        stats = await self.vector_store.stats()
        by_type: dict[str, int] = {}
        for memory_type in self._memory_types.values():
            by_type[memory_type] = by_type.get(memory_type, 0) + 1

        return MemoryStats(
            total_memories=stats["total_memories"],
            by_type=by_type,
            db_path=stats["db_path"],
            working_memory=len(self.tiers.working_memory),
            long_term_memory=len(self.tiers),
            persistent_entries=len(self.persistent) if self.persistent is not None else 0,
        )

    async def close(self) -> None:
        """Clean up resources."""
        await self.tiers.stop()
        if self.persistent is not None:
            await self.persistent.close()
        await self.vector_store.close()
        self._initialized = False
        logger.info("MemoryManager closed")


def _embedding_model(config: MemoryConfig) -> str:
    if config.embedding.provider == "openai":
        return config.embedding.openai_model
    if config.embedding.provider == "local":
        return config.embedding.local_model
    return ""


def create_vector_store(config: MemoryConfig) -> VectorStore:
    store_type = config.vector_store.store_type
    if store_type == "memory":
        return InMemoryVectorStore()
    elif store_type == "chroma":
        from .chroma_store import ChromaVectorStore
        return ChromaVectorStore(
            persist_directory=config.vector_store.chroma_path,
            collection_name=config.vector_store.collection_name,
        )
    else:
        raise ValueError(f"Unknown store type: {store_type}")


async def create_memory_manager(config: Optional[MemoryConfig] = None) -> MemoryManager:
    """
    Factory function to create a configured MemoryManager.

    Args:
        config: Memory settings; defaults come from config.yaml / .env

    Returns:
        Initialized MemoryManager
    """
    config = config or MemoryConfig()

    embedding_service = create_embedding_service(
        provider=config.embedding.provider,
        api_key=config.embedding.openai_api_key,
        model=_embedding_model(config),
        dimensions=config.embedding.dimensions,
        max_chars=config.embedding.max_chars,
        timeout=config.embedding.timeout_seconds,
    )

    tiers = TieredMemoryManager(
        embedding_service,
        capacity=config.tiered.working_memory_capacity,
        promotion_threshold=config.tiered.promotion_threshold,
        consolidation_mode=config.tiered.consolidation_mode,
        consolidation_interval=config.tiered.consolidation_interval_seconds,
    )

    persistent = PersistentStore(
        storage_path=config.persistent.storage_path,
        save_delay=config.persistent.save_delay_seconds,
    )

    manager = MemoryManager(
        vector_store=create_vector_store(config),
        embedding_service=embedding_service,
        tiers=tiers,
        persistent=persistent,
        min_relevance=config.retrieval.min_relevance,
        context_limit=config.retrieval.context_limit,
        similar_code_threshold=config.retrieval.similar_code_threshold,
    )

    await manager.initialize()
    return manager
