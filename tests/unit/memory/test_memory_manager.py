"""
Unit tests for codemind/memory/memory_manager.py

Tests the MemoryManager facade end to end over the in-memory index and
hash embedder, and the create_memory_manager() factory.
"""

from unittest.mock import patch

import pytest
import pytest_asyncio

from codemind.config import (
    EmbeddingConfig,
    MemoryConfig,
    PersistentConfig,
    RetrievalConfig,
    TieredConfig,
    VectorStoreConfig,
)
from codemind.memory.base import Memory, MemoryNotInitializedError
from codemind.memory.embeddings import HashEmbeddingService
from codemind.memory.memory_manager import (
    ArchitectureDecision,
    IndexingProgress,
    MemoryManager,
    create_memory_manager,
    create_vector_store,
    scan_project_files,
)
from codemind.memory.memory_store import InMemoryVectorStore
from codemind.memory.persistent import PersistentStore
from codemind.memory.tiered import TieredMemoryManager
from tests.fixtures import make_memory


@pytest_asyncio.fixture
async def manager(temp_storage_file):
    """Provide an initialized MemoryManager with every tier wired in."""
    embedder = HashEmbeddingService()
    manager = MemoryManager(
        vector_store=InMemoryVectorStore(),
        embedding_service=embedder,
        tiers=TieredMemoryManager(embedder, capacity=3),
        persistent=PersistentStore(str(temp_storage_file), save_delay=10),
    )
    await manager.initialize()
    yield manager
    await manager.close()


def memory_config(tmp_path, **overrides) -> MemoryConfig:
    """A MemoryConfig that ignores any config.yaml on disk."""
    with patch("codemind.config._yaml_config", {}):
        config = MemoryConfig(
            embedding=EmbeddingConfig(provider="hash"),
            vector_store=VectorStoreConfig(),
            retrieval=RetrievalConfig(),
            tiered=TieredConfig(),
            persistent=PersistentConfig(storage_path=str(tmp_path / "memory.json")),
        )
    for section, values in overrides.items():
        for key, value in values.items():
            setattr(getattr(config, section), key, value)
    return config


class TestMemoryManagerLifecycle:
    """Tests for initialize/close and the not-initialized guard."""

    @pytest.mark.asyncio
    async def test_operations_require_initialize(self):
        """Test that the facade refuses work before initialize()."""
        manager = MemoryManager(InMemoryVectorStore(), HashEmbeddingService())

        with pytest.raises(MemoryNotInitializedError):
            await manager.remember(make_memory())
        with pytest.raises(MemoryNotInitializedError):
            await manager.recall("anything")
        with pytest.raises(MemoryNotInitializedError):
            await manager.get_stats()

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, manager):
        """Test that a second initialize() is a no-op."""
        await manager.remember(make_memory())
        await manager.initialize()

        assert (await manager.get_stats()).total_memories == 1

    @pytest.mark.asyncio
    async def test_close_flushes_persistent_store(self, temp_storage_file):
        """Test that close() writes pending persistent entries."""
        persistent = PersistentStore(str(temp_storage_file), save_delay=10)
        manager = MemoryManager(InMemoryVectorStore(), HashEmbeddingService(), persistent=persistent)
        await manager.initialize()
        await persistent.set_preference("indent", 4)

        await manager.close()

        assert temp_storage_file.exists()
        with pytest.raises(MemoryNotInitializedError):
            await manager.recall("anything")


class TestRememberAndRecall:
    """Tests for the core memory operations."""

    @pytest.mark.asyncio
    async def test_remember_assigns_id_and_indexes(self, manager):
        """Test that remember() embeds, ids and indexes the memory."""
        memory = make_memory(content="postgres connection pooling with pgbouncer")

        memory_id = await manager.remember(memory)

        assert len(memory_id) == 16
        assert memory.id == ""
        record = await manager.vector_store.get(memory_id)
        assert record.content == memory.content
        assert len(record.embedding) == 256

    @pytest.mark.asyncio
    async def test_remember_keeps_given_id(self, manager):
        """Test that an explicit id is kept."""
        memory_id = await manager.remember(make_memory(id="fixed-id"))
        assert memory_id == "fixed-id"

    @pytest.mark.asyncio
    async def test_remember_feeds_working_memory(self, manager):
        """Test that every write passes through bounded working memory."""
        for i in range(5):
            await manager.remember(make_memory(content=f"note number {i}", id=f"n{i}", importance=0.9))

        assert [m.id for m in manager.tiers.working_memory] == ["n2", "n3", "n4"]
        assert "n0" in manager.tiers
        assert "n1" in manager.tiers

    @pytest.mark.asyncio
    async def test_recall_returns_most_relevant(self, manager):
        """Test recall ranking and relevance values."""
        await manager.remember(make_memory(content="retry http requests with backoff", id="http"))
        await manager.remember(make_memory(content="sidebar layout uses css grid", id="css"))

        memories = await manager.recall("http retry backoff", k=1)

        assert [m.id for m in memories] == ["http"]
        assert 0.0 < memories[0].relevance <= 1.0

    @pytest.mark.asyncio
    async def test_forget_and_clear_all(self, manager):
        """Test removing one memory and then everything."""
        first = await manager.remember(make_memory(content="first memory text"))
        await manager.remember(make_memory(content="second memory text"))

        await manager.forget(first)
        assert await manager.vector_store.get(first) is None

        await manager.clear_all()
        stats = await manager.get_stats()
        assert stats.total_memories == 0
        assert stats.working_memory == 0
        assert stats.by_type == {}

    def test_injected_tiers_kept_when_empty(self, hash_embedder):
        """Test that an empty TieredMemoryManager passed in is the one used."""
        tiers = TieredMemoryManager(hash_embedder, capacity=2)
        manager = MemoryManager(InMemoryVectorStore(), hash_embedder, tiers=tiers)

        assert manager.tiers is tiers

    @pytest.mark.asyncio
    async def test_forgotten_memory_not_promoted_later(self, manager):
        """Test that forget removes a memory still in working memory."""
        await manager.remember(make_memory(content="secret token handling", id="gone", importance=0.9))
        await manager.forget("gone")

        for i in range(4):
            await manager.remember(make_memory(content=f"filler note {i}", id=f"f{i}", importance=0.9))

        assert "gone" not in manager.tiers
        assert "gone" not in [m.id for m in manager.tiers.working_memory]

    @pytest.mark.asyncio
    async def test_clear_all_empties_long_term_memory(self, manager):
        """Test that clear_all leaves nothing in either tier."""
        for i in range(6):
            await manager.remember(make_memory(content=f"important note {i}", id=f"i{i}", importance=0.9))
        assert (await manager.get_stats()).long_term_memory == 3

        await manager.clear_all()

        stats = await manager.get_stats()
        assert stats.long_term_memory == 0
        assert stats.working_memory == 0
        assert await manager.tiers.search("important note") == []


class TestContextAndDecisions:
    """Tests for context retrieval, decisions and file indexing."""

    @pytest.mark.asyncio
    async def test_get_relevant_context(self, manager):
        """Test grouping recalled memories by type."""
        await manager.remember(make_memory(content="cache layer uses redis ttl", type="code"))
        await manager.remember(make_memory(content="chose redis for cache invalidation", type="decision"))
        await manager.remember(make_memory(content="prefer small cache helpers", type="style"))

        context = await manager.get_relevant_context("redis cache")

        assert len(context.code) == 1
        assert len(context.decisions) == 1
        assert len(context.styles) == 1
        assert "## Project Memory" in context.to_context_string()

    @pytest.mark.asyncio
    async def test_remember_and_search_decisions(self, manager):
        """Test recording a decision and finding it by topic."""
        decision = ArchitectureDecision(
            title="Use SQLite for local state",
            reasoning="No server to run, single user",
            alternatives=["Postgres", "flat JSON files"],
            category="storage",
        )

        memory_id = await manager.remember_decision(decision)
        results = await manager.search_decisions("sqlite local state")

        assert results[0].id == memory_id
        assert results[0].metadata["title"] == "Use SQLite for local state"
        assert "1. Postgres" in results[0].content
        assert "Outcome: Pending" in results[0].content

    @pytest.mark.asyncio
    async def test_index_file_and_find_similar_code(self, manager, tmp_path):
        """Test indexing a source file and finding it from a snippet."""
        source = tmp_path / "retry.py"
        source.write_text("def retry_request(session, url):\n    return session.get(url)\n")

        memory_id = await manager.index_file(str(source))
        record = await manager.vector_store.get(memory_id)
        assert record.metadata["language"] == "python"
        assert record.metadata["file"] == str(source)

        manager.similar_code_threshold = 0.0
        matches = await manager.find_similar_code("retry_request session url")
        assert matches[0].id == memory_id

    @pytest.mark.asyncio
    async def test_index_file_skips_empty_and_huge(self, manager, tmp_path):
        """Test that empty and oversized files aren't indexed."""
        empty = tmp_path / "empty.py"
        empty.write_text("   \n")
        huge = tmp_path / "huge.js"
        huge.write_text("x" * 50001)

        assert await manager.index_file(str(empty)) is None
        assert await manager.index_file(str(huge)) is None
        assert (await manager.get_stats()).total_memories == 0

    @pytest.mark.asyncio
    async def test_index_project(self, manager, tmp_path):
        """Test indexing a project tree with progress and a broken file."""
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "app.py").write_text("def main():\n    return run_server()\n")
        (tmp_path / "src" / "util.ts").write_text("export const add = (a, b) => a + b;\n")
        (tmp_path / "src" / "broken.py").write_bytes(b"\xff\xfe\x00 not utf-8")
        (tmp_path / "README.md").write_text("# not source\n")
        for ignored in ("node_modules", ".git", "dist", "__pycache__"):
            (tmp_path / ignored).mkdir()
            (tmp_path / ignored / "vendored.js").write_text("module.exports = {};\n")

        progress: list[IndexingProgress] = []
        indexed = await manager.index_project(str(tmp_path), on_progress=progress.append)

        assert indexed == 2
        assert [p.indexed for p in progress] == [1, 2]
        assert all(p.total == 3 for p in progress)
        assert progress[-1].percentage == 67
        assert [p.current for p in progress] == [
            str(tmp_path / "src" / "app.py"),
            str(tmp_path / "src" / "util.ts"),
        ]
        assert (await manager.get_stats()).total_memories == 2

    def test_scan_project_files_skips_ignored_dirs(self, tmp_path):
        """Test that dependency and build directories are never scanned."""
        (tmp_path / "build").mkdir()
        (tmp_path / "build" / "out.js").write_text("x")
        (tmp_path / "lib").mkdir()
        (tmp_path / "lib" / "core.go").write_text("package lib\n")
        (tmp_path / "notes.txt").write_text("x")

        assert scan_project_files(str(tmp_path)) == [str(tmp_path / "lib" / "core.go")]

    @pytest.mark.asyncio
    async def test_get_recent(self, manager):
        """Test that get_recent only returns the requested type."""
        await manager.remember(make_memory(content="recent conversation memories about tests", type="conversation"))
        await manager.remember(make_memory(content="recent code memories", type="code"))

        recent = await manager.get_recent("conversation")
        assert [m.type for m in recent] == ["conversation"]

    @pytest.mark.asyncio
    async def test_stats(self, manager):
        """Test stats across index, tiers and persistent store."""
        await manager.remember(make_memory(type="code"))
        await manager.remember(make_memory(type="code", content="another code memory"))
        await manager.remember(make_memory(type="style", content="tabs over spaces"))
        await manager.persistent.set_preference("theme", "dark")

        stats = await manager.get_stats()

        assert stats.total_memories == 3
        assert stats.by_type == {"code": 2, "style": 1}
        assert stats.db_path == ":memory:"
        assert stats.working_memory == 3
        assert stats.persistent_entries == 1


class TestFactories:
    """Tests for create_vector_store() and create_memory_manager()."""

    def test_create_vector_store_memory(self, tmp_path):
        """Test the default in-memory backend."""
        config = memory_config(tmp_path)
        assert isinstance(create_vector_store(config), InMemoryVectorStore)

    def test_create_vector_store_unknown(self, tmp_path):
        """Test that unknown store types are rejected."""
        config = memory_config(tmp_path, vector_store={"store_type": "pinecone"})
        with pytest.raises(ValueError):
            create_vector_store(config)

    @pytest.mark.asyncio
    async def test_create_memory_manager(self, tmp_path):
        """Test that the factory wires config into every component."""
        config = memory_config(
            tmp_path,
            tiered={"working_memory_capacity": 4, "promotion_threshold": 0.6},
            retrieval={"context_limit": 8, "min_relevance": 0.2},
        )

        manager = await create_memory_manager(config)
        try:
            assert isinstance(manager.embedding_service, HashEmbeddingService)
            assert manager.tiers.capacity == 4
            assert manager.tiers.promotion_threshold == 0.6
            assert manager.context_limit == 8
            assert manager.min_relevance == 0.2
            assert manager.persistent.storage_path == tmp_path / "memory.json"

            await manager.remember(Memory(type="code", content="factory wired memory"))
            assert (await manager.get_stats()).total_memories == 1
        finally:
            await manager.close()

    @pytest.mark.asyncio
    async def test_create_memory_manager_background_consolidation(self, tmp_path):
        """Test that background consolidation settings reach the tiers."""
        config = memory_config(
            tmp_path,
            tiered={"consolidation_mode": "background", "consolidation_interval_seconds": 60.0},
        )

        manager = await create_memory_manager(config)
        try:
            assert manager.tiers.consolidation_mode == "background"
            assert manager.tiers.consolidation_interval == 60.0
            assert manager.tiers._sweeper is not None
        finally:
            await manager.close()
        assert manager.tiers._sweeper is None
