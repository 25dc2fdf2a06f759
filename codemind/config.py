"""
Configuration module for the codemind memory subsystem.

Loads application settings from config.yaml and secrets from environment variables.
"""

import logging
import os
import contextvars
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

import yaml
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Context variable for session ID logging
session_context = contextvars.ContextVar("session_id", default=None)


class SessionLogFilter(logging.Filter):
    """Filter to inject the assistant session ID into log records."""
    def filter(self, record):
        session_id = session_context.get()
        if session_id is not None:
            record.session_info = f" [Session {session_id}]"
        else:
            record.session_info = ""
        return True


# Default config file path (override with CODEMIND_CONFIG)
CONFIG_FILE = Path(
    os.getenv("CODEMIND_CONFIG", Path(__file__).parent.parent / "config.yaml")
)


def _load_yaml_config() -> dict:
    """Load configuration from YAML file."""
    if CONFIG_FILE.exists():
        with open(CONFIG_FILE) as f:
            return yaml.safe_load(f) or {}
    return {}


# Load YAML config once at module import
_yaml_config = _load_yaml_config()


def _get_yaml(section: str, key: str, default=None):
    """Get a value from the YAML config."""
    return _yaml_config.get(section, {}).get(key, default)


@dataclass
class EmbeddingConfig:
    """Embedding generation settings."""
    provider: Literal["openai", "local", "hash"] = field(
        default_factory=lambda: _get_yaml("embedding", "provider", "hash")
    )
    # Secret from .env
    openai_api_key: str = field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    # "text-embedding-3-small" (1536d) or "text-embedding-3-large" (3072d)
    openai_model: str = field(
        default_factory=lambda: _get_yaml("embedding", "openai_model", "text-embedding-3-small")
    )
    # None = use model's default dimensions
    dimensions: int | None = field(
        default_factory=lambda: _get_yaml("embedding", "dimensions", None)
    )
    local_model: str = field(
        default_factory=lambda: _get_yaml("embedding", "local_model", "all-MiniLM-L6-v2")
    )
    max_chars: int = field(
        default_factory=lambda: _get_yaml("embedding", "max_chars", 10000)
    )
    timeout_seconds: float = field(
        default_factory=lambda: _get_yaml("embedding", "timeout_seconds", 30.0)
    )


@dataclass
class VectorStoreConfig:
    """Vector index backend settings."""
    store_type: Literal["memory", "chroma"] = field(
        default_factory=lambda: _get_yaml("vector_store", "store_type", "memory")
    )
    chroma_path: str = field(
        default_factory=lambda: _get_yaml("vector_store", "chroma_path", "./.codemind/vectors")
    )
    collection_name: str = field(
        default_factory=lambda: _get_yaml("vector_store", "collection_name", "codemind_memories")
    )


@dataclass
class RetrievalConfig:
    """Recall thresholds and result sizes."""
    min_relevance: float = field(
        default_factory=lambda: _get_yaml("retrieval", "min_relevance", 0.0)
    )
    context_limit: int = field(
        default_factory=lambda: _get_yaml("retrieval", "context_limit", 20)
    )
    similar_code_threshold: float = field(
        default_factory=lambda: _get_yaml("retrieval", "similar_code_threshold", 0.7)
    )


@dataclass
class TieredConfig:
    """Working / long-term memory settings."""
    working_memory_capacity: int = field(
        default_factory=lambda: _get_yaml("tiered", "working_memory_capacity", 7)
    )
    promotion_threshold: float = field(
        default_factory=lambda: _get_yaml("tiered", "promotion_threshold", 0.7)
    )
    # "inline" runs the forgetting policy after every store,
    # "background" runs it on a periodic sweep
    consolidation_mode: Literal["inline", "background"] = field(
        default_factory=lambda: _get_yaml("tiered", "consolidation_mode", "inline")
    )
    consolidation_interval_seconds: float = field(
        default_factory=lambda: _get_yaml("tiered", "consolidation_interval_seconds", 3600.0)
    )


@dataclass
class PersistentConfig:
    """Structured (non-vector) memory persistence settings."""
    storage_path: str = field(
        default_factory=lambda: _get_yaml("persistent", "storage_path", "./.codemind/memory.json")
    )
    save_delay_seconds: float = field(
        default_factory=lambda: _get_yaml("persistent", "save_delay_seconds", 2.0)
    )


@dataclass
class AppConfig:
    """Application settings from YAML."""
    log_level: str = field(
        default_factory=lambda: _get_yaml("logging", "level", "INFO")
    )


@dataclass
class MemoryConfig:
    """Everything needed to wire up a MemoryManager."""
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    vector_store: VectorStoreConfig = field(default_factory=VectorStoreConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    tiered: TieredConfig = field(default_factory=TieredConfig)
    persistent: PersistentConfig = field(default_factory=PersistentConfig)


@dataclass
class Config:
    """Main configuration container."""
    app: AppConfig = field(default_factory=AppConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)

    def setup_logging(self) -> logging.Logger:
        """Configure and return the application logger."""
        # Reset existing handlers to ensure clean configuration
        root = logging.getLogger()
        if root.handlers:
            for handler in list(root.handlers):
                root.removeHandler(handler)

        logging.basicConfig(
            level=getattr(logging, self.app.log_level.upper()),
            format="%(asctime)s - %(name)s - %(levelname)s%(session_info)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        # Add filter to the handler created by basicConfig
        for handler in logging.getLogger().handlers:
            handler.addFilter(SessionLogFilter())

        return logging.getLogger("codemind")

    def validate(self) -> list[str]:
        """
        Validate configuration and return list of missing/invalid settings.

        Returns:
            List of validation error messages, empty if all valid.
        """
        errors = []
        embedding = self.memory.embedding
        tiered = self.memory.tiered

        if embedding.provider not in ("openai", "local", "hash"):
            errors.append(f"Unknown embedding provider: {embedding.provider}")
        elif embedding.provider == "openai" and not embedding.openai_api_key:
            errors.append("OPENAI_API_KEY is required when using OpenAI embeddings")

        if self.memory.vector_store.store_type not in ("memory", "chroma"):
            errors.append(f"Unknown vector store type: {self.memory.vector_store.store_type}")

        if tiered.working_memory_capacity < 1:
            errors.append("tiered.working_memory_capacity must be at least 1")
        if not 0.0 <= tiered.promotion_threshold <= 1.0:
            errors.append("tiered.promotion_threshold must be between 0 and 1")
        if tiered.consolidation_mode not in ("inline", "background"):
            errors.append(f"Unknown consolidation mode: {tiered.consolidation_mode}")

        if self.memory.persistent.save_delay_seconds < 0:
            errors.append("persistent.save_delay_seconds must not be negative")

        return errors
