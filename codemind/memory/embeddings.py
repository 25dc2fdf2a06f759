"""
Embedding Service for generating vector representations.

Uses OpenAI's embedding models or a local sentence-transformers model,
with a deterministic hash-based embedder that is always available as a
fallback and for reproducible tests.

Every service shares one contract: embed() never raises. Failures and
timeouts are logged and produce a zero vector, which has similarity 0
against everything.
"""

import asyncio
import logging
import math
import re
from abc import ABC, abstractmethod
from typing import Literal, Optional

from .base import DimensionMismatchError

logger = logging.getLogger("codemind.memory.embeddings")

# Longer inputs are truncated before embedding
MAX_TEXT_CHARS = 10000

DEFAULT_TIMEOUT_SECONDS = 30.0


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """
    Cosine of the angle between two vectors.

    Raises DimensionMismatchError when the lengths differ. Returns 0.0
    when either vector has zero magnitude.
    """
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    magnitude = math.sqrt(norm_a) * math.sqrt(norm_b)
    if magnitude == 0:
        return 0.0

    # Rounding can push |cos| slightly past 1
    return max(-1.0, min(1.0, dot / magnitude))


def is_zero_vector(vector: list[float]) -> bool:
    """True for the "no information" vector returned on embedding failure."""
    return all(v == 0 for v in vector)


class EmbeddingService(ABC):
    """
    Abstract interface for embedding generation.

    Subclasses implement _embed(); truncation, timeouts and the zero-vector
    fallback live here so every provider behaves the same way.
    """

    def __init__(
        self,
        max_chars: int = MAX_TEXT_CHARS,
        timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.max_chars = max_chars
        self.timeout = timeout
        self._ready = False

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return the dimension of embeddings produced."""
        pass

    @property
    def is_ready(self) -> bool:
        return self._ready

    async def initialize(self) -> None:
        """Prepare the service (load models, create clients)."""
        self._ready = True

    @abstractmethod
    async def _embed(self, text: str) -> list[float]:
        """Generate embedding for a single, already truncated text."""
        pass

    def zero_vector(self) -> list[float]:
        return [0.0] * self.dimension

    async def embed(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        if len(text) > self.max_chars:
            logger.debug(f"Truncating {len(text)} chars to {self.max_chars} before embedding")
            text = text[:self.max_chars]

        try:
            if self.timeout is not None:
                embedding = await asyncio.wait_for(self._embed(text), timeout=self.timeout)
            else:
                embedding = await self._embed(text)
        except asyncio.TimeoutError:
            logger.warning(f"Embedding timed out after {self.timeout}s, using zero vector")
            return self.zero_vector()
        except Exception as e:
            logger.warning(f"Embedding failed, using zero vector: {e}")
            return self.zero_vector()

        if len(embedding) != self.dimension:
            logger.warning(
                f"Embedding has {len(embedding)} dimensions, expected {self.dimension}. "
                "Using zero vector."
            )
            return self.zero_vector()

        return embedding

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts, one at a time."""
        return [await self.embed(text) for text in texts]

    async def embed_with_context(
        self,
        text: str,
        filename: Optional[str] = None,
        language: Optional[str] = None,
        purpose: Optional[str] = None,
    ) -> list[float]:
        """
        Embed text behind a short metadata preamble.

        The preamble biases code embeddings toward file and language so
        code search matches on them. Its exact layout is part of the index
        format; changing it invalidates stored embeddings.
        """
        preamble = ""
        if filename:
            preamble += f"File: {filename}\n"
        if language:
            preamble += f"Language: {language}\n"
        if purpose:
            preamble += f"Purpose: {purpose}\n"

        if preamble:
            text = f"{preamble}\n{text}"
        return await self.embed(text)


class OpenAIEmbeddingService(EmbeddingService):
    """
    OpenAI embedding service using text-embedding-3 models.

    Supports native dimension reduction via the dimensions parameter.

    Models:
    - text-embedding-3-small: default 1536 dimensions
    - text-embedding-3-large: default 3072 dimensions (can be reduced)
    """

    # Default dimensions for each model
    MODEL_DEFAULT_DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
    }

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimensions: int | None = None,
        **kwargs,
    ):
        """
        Initialize OpenAI embedding service.

        Args:
            api_key: OpenAI API key
            model: Model name (text-embedding-3-small or text-embedding-3-large)
            dimensions: Override output dimensions.
                        If None, uses model's default dimensions.
        """
        super().__init__(**kwargs)
        self.api_key = api_key
        self.model = model
        self._client = None

        # Determine dimensions
        default_dim = self.MODEL_DEFAULT_DIMENSIONS.get(model, 1536)
        if dimensions is not None:
            if dimensions > default_dim:
                logger.warning(
                    f"Requested dimensions ({dimensions}) exceeds model default ({default_dim}). "
                    f"Using {default_dim}."
                )
                self._dimension = default_dim
                self._requested_dimensions = None
            else:
                self._dimension = dimensions
                self._requested_dimensions = dimensions
        else:
            self._dimension = default_dim
            self._requested_dimensions = None

        logger.info(
            f"OpenAIEmbeddingService configured: model={model}, dimensions={self._dimension}"
        )

    @property
    def dimension(self) -> int:
        return self._dimension

    async def initialize(self) -> None:
        """Create the API client."""
        from openai import AsyncOpenAI
        self._client = AsyncOpenAI(api_key=self.api_key)
        await super().initialize()
        logger.info(f"OpenAI embedding client ready: {self.model}")

    async def _embed(self, text: str) -> list[float]:
        if self._client is None:
            raise RuntimeError("OpenAIEmbeddingService not initialized. Call initialize() first.")

        kwargs = {
            "model": self.model,
            "input": text,
        }
        if self._requested_dimensions is not None:
            kwargs["dimensions"] = self._requested_dimensions

        response = await self._client.embeddings.create(**kwargs)

        return response.data[0].embedding


class LocalEmbeddingService(EmbeddingService):
    """
    Local embedding service using sentence-transformers.

    Uses all-MiniLM-L6-v2 by default (384 dimensions, fast, good quality).
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", **kwargs):
        super().__init__(**kwargs)
        self.model_name = model_name
        self._model = None
        self._dimension = 384  # Default for MiniLM
        logger.info(f"LocalEmbeddingService configured with model: {model_name}")

    @property
    def dimension(self) -> int:
        return self._dimension

    def _load_model(self):
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise RuntimeError(
                "sentence-transformers not installed. "
                "Install with: pip install codemind[local]"
            )
        return SentenceTransformer(self.model_name)

    async def initialize(self) -> None:
        """Load the model off the event loop."""
        self._model = await asyncio.to_thread(self._load_model)
        self._dimension = self._model.get_sentence_embedding_dimension()
        await super().initialize()
        logger.info(f"Loaded local embedding model: {self.model_name} ({self._dimension}d)")

    async def _embed(self, text: str) -> list[float]:
        if self._model is None:
            raise RuntimeError("LocalEmbeddingService not initialized. Call initialize() first.")

        embedding = await asyncio.to_thread(self._model.encode, text, convert_to_numpy=True)
        return embedding.tolist()


class HashEmbeddingService(EmbeddingService):
    """
    Deterministic bag-of-tokens embedding.

    Not semantic, but identical across runs and processes, and always
    available. Tokens are hashed into buckets, counted, and the vector is
    L2-normalized, so texts sharing vocabulary score high.
    """

    TOKEN_SPLIT = re.compile(r"[^a-z0-9_]")

    def __init__(self, dimension: int = 256, **kwargs):
        super().__init__(**kwargs)
        self._dimension = dimension
        self._ready = True

    @property
    def dimension(self) -> int:
        return self._dimension

    @staticmethod
    def string_hash(token: str) -> int:
        """32-bit signed h = h*31 + c string hash."""
        h = 0
        for char in token:
            h = (h * 31 + ord(char)) & 0xFFFFFFFF
        if h >= 0x80000000:
            h -= 0x100000000
        return h

    def tokenize(self, text: str) -> list[str]:
        cleaned = self.TOKEN_SPLIT.sub(" ", text.lower())
        return [t for t in cleaned.split() if len(t) > 2]

    def embed_sync(self, text: str) -> list[float]:
        embedding = [0.0] * self._dimension

        for token in self.tokenize(text):
            idx = abs(self.string_hash(token)) % self._dimension
            embedding[idx] += 1

        magnitude = math.sqrt(sum(v * v for v in embedding))
        if magnitude > 0:
            embedding = [v / magnitude for v in embedding]

        return embedding

    async def _embed(self, text: str) -> list[float]:
        return self.embed_sync(text)


def create_embedding_service(
    provider: Literal["openai", "local", "hash"] = "hash",
    api_key: str = "",
    model: str = "",
    dimensions: int | None = None,
    max_chars: int = MAX_TEXT_CHARS,
    timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
) -> EmbeddingService:
    """
    Factory function to create the appropriate embedding service.

    Args:
        provider: "openai", "local" or "hash"
        api_key: OpenAI API key (required for openai provider)
        model: Model name (optional, uses defaults)
        dimensions: Override output dimensions (openai and hash providers)
        max_chars: Truncation limit applied before embedding
        timeout: Seconds before an embedding call falls back to a zero vector

    Returns:
        Configured EmbeddingService instance
    """
    if provider == "openai":
        if not api_key:
            raise ValueError("OpenAI API key required for openai embedding provider")
        return OpenAIEmbeddingService(
            api_key=api_key,
            model=model or "text-embedding-3-small",
            dimensions=dimensions,
            max_chars=max_chars,
            timeout=timeout,
        )
    elif provider == "local":
        return LocalEmbeddingService(
            model_name=model or "all-MiniLM-L6-v2",
            max_chars=max_chars,
            timeout=timeout,
        )
    elif provider == "hash":
        return HashEmbeddingService(
            dimension=dimensions or 256,
            max_chars=max_chars,
            timeout=timeout,
        )
    else:
        raise ValueError(f"Unknown embedding provider: {provider}")
