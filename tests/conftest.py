"""
Shared pytest fixtures for codemind tests.

This module provides:
- Deterministic hash embedder
- Initialized in-memory vector store and retriever
- Temporary storage paths
- Mock external services (OpenAI embeddings)
- Sample data fixtures
"""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio

from codemind.memory.embeddings import HashEmbeddingService
from codemind.memory.memory_store import InMemoryVectorStore
from codemind.memory.retriever import MemoryRetriever
from tests.fixtures import make_fragments, make_memories, make_memory


# =============================================================================
# Core Fixtures
# =============================================================================


@pytest.fixture
def temp_dir(tmp_path):
    """Provide a temporary directory that cleans up after test."""
    return tmp_path


@pytest.fixture
def temp_storage_file(tmp_path) -> Path:
    """Provide a temporary persistent memory file path."""
    return tmp_path / "memory" / "memory.json"


@pytest.fixture
def hash_embedder() -> HashEmbeddingService:
    """Deterministic 256-dim embedder, ready without initialize()."""
    return HashEmbeddingService()


@pytest_asyncio.fixture
async def memory_store():
    """Provide an initialized in-memory vector store."""
    store = InMemoryVectorStore()
    await store.initialize()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def retriever(memory_store, hash_embedder) -> MemoryRetriever:
    """Provide a retriever over the in-memory store."""
    return MemoryRetriever(memory_store, hash_embedder)


# =============================================================================
# Sample Data Fixtures
# =============================================================================


@pytest.fixture
def sample_memory():
    """Provide a single sample code memory."""
    return make_memory(metadata={"file": "src/config.py", "language": "python"})


@pytest.fixture
def sample_memories():
    """Provide a list of sample memories."""
    return make_memories(count=5)


@pytest.fixture
def sample_fragments():
    """Provide embedded fragments for a small project."""
    return make_fragments()


@pytest.fixture
def sample_config_yaml(tmp_path) -> Path:
    """Create a sample config.yaml file."""
    config_path = tmp_path / "config.yaml"
    config_content = """
embedding:
  provider: openai
  openai_model: text-embedding-3-large
  dimensions: 512

vector_store:
  store_type: chroma
  chroma_path: /tmp/vectors

tiered:
  working_memory_capacity: 5
  consolidation_mode: background

persistent:
  save_delay_seconds: 0.5

logging:
  level: DEBUG
"""
    config_path.write_text(config_content)
    return config_path


# =============================================================================
# Mock External Services
# =============================================================================


@pytest.fixture
def mock_openai():
    """Mock AsyncOpenAI for embedding API tests."""
    with patch("openai.AsyncOpenAI") as mock_client_class:
        mock_client = MagicMock()

        mock_response = MagicMock()
        mock_response.data = [MagicMock(embedding=[0.1] * 1536)]
        mock_response.usage = MagicMock(prompt_tokens=8, total_tokens=8)

        mock_client.embeddings.create = AsyncMock(return_value=mock_response)
        mock_client_class.return_value = mock_client
        yield mock_client_class


# =============================================================================
# Config Fixtures
# =============================================================================


@pytest.fixture
def mock_env_vars(monkeypatch):
    """Set mock environment variables for testing."""
    monkeypatch.setenv("OPENAI_API_KEY", "test-openai-key")
