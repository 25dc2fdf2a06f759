"""
Tiered Memory - working memory in front of long-term memory.

Working memory is a small FIFO of recently touched memories. When it
overflows, the oldest entry either earns a place in long-term memory
(importance above the promotion threshold) or is dropped.

Long-term memory is a dict searched by linear cosine scan and pruned by
the forgetting policy in consolidate().
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Literal, Optional

from .base import Memory
from .embeddings import EmbeddingService, cosine_similarity

logger = logging.getLogger("codemind.memory.tiered")

# Span-of-attention default
WORKING_MEMORY_CAPACITY = 7
PROMOTION_THRESHOLD = 0.7

# Forgetting policy: a memory is forgotten only when ALL of these hold
FORGET_MIN_AGE = timedelta(days=7)
FORGET_MAX_IMPORTANCE = 0.3
FORGET_MAX_ACCESS_COUNT = 2
FORGET_MIN_IDLE = timedelta(days=3)

# Reinforcement: frequently used memories gain importance
REINFORCE_MIN_ACCESS_COUNT = 5
REINFORCE_FACTOR = 1.1


@dataclass
class TierConsolidation:
    """Outcome of one consolidation pass."""
    forgotten: int = 0
    reinforced: int = 0


class TieredMemoryManager:
    """
    Owns working and long-term memory and the policies between them.

    All mutation goes through this class; callers get copies.
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        capacity: int = WORKING_MEMORY_CAPACITY,
        promotion_threshold: float = PROMOTION_THRESHOLD,
        consolidation_mode: Literal["inline", "background"] = "inline",
        consolidation_interval: float = 3600.0,
    ):
        if capacity < 1:
            raise ValueError("Working memory capacity must be at least 1")
        if consolidation_mode not in ("inline", "background"):
            raise ValueError(f"Unknown consolidation mode: {consolidation_mode}")

        self.embedding_service = embedding_service
        self.capacity = capacity
        self.promotion_threshold = promotion_threshold
        self.consolidation_mode = consolidation_mode
        self.consolidation_interval = consolidation_interval

        self._working: list[Memory] = []
        self._long_term: dict[str, Memory] = {}
        self._sweeper: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Working memory
    # ------------------------------------------------------------------

    @property
    def working_memory(self) -> list[Memory]:
        return [m.copy() for m in self._working]

    async def push_to_working_memory(self, memory: Memory) -> Optional[Memory]:
        """
        Append a memory, evicting the oldest one if over capacity.

        Returns:
            The evicted memory, if any
        """
        self._working.append(memory.copy())

        if len(self._working) <= self.capacity:
            return None

        evicted = self._working.pop(0)
        if evicted.importance > self.promotion_threshold:
            await self._promote(evicted)
        else:
            logger.debug(f"Dropped working memory {evicted.id or '<unsaved>'} (importance {evicted.importance:.2f})")
        return evicted

    async def _promote(self, memory: Memory) -> Memory:
        """Move an evicted record into long-term memory, keeping its history."""
        promoted = memory.copy()
        if not promoted.id:
            promoted.id = f"ltm-{uuid.uuid4().hex[:16]}"
        if promoted.embedding is None:
            promoted.embedding = await self.embedding_service.embed(promoted.content)

        self._long_term[promoted.id] = promoted
        logger.info(f"Promoted {promoted.type} memory {promoted.id} to long-term (importance {promoted.importance:.2f})")

        if self.consolidation_mode == "inline":
            self.consolidate()
        return promoted.copy()

    def clear_working_memory(self) -> int:
        count = len(self._working)
        self._working.clear()
        logger.info(f"Cleared {count} working memories")
        return count

    # ------------------------------------------------------------------
    # Long-term memory
    # ------------------------------------------------------------------

    @property
    def long_term(self) -> list[Memory]:
        return [m.copy() for m in self._long_term.values()]

    def __contains__(self, memory_id: str) -> bool:
        return memory_id in self._long_term

    def __len__(self) -> int:
        return len(self._long_term)

    async def store(
        self,
        content: str,
        type: str,
        importance: float = 0.5,
        metadata: Optional[dict[str, Any]] = None,
        id: Optional[str] = None,
        embedding: Optional[list[float]] = None,
    ) -> Memory:
        """Embed and store a memory in long-term memory."""
        if embedding is None:
            embedding = await self.embedding_service.embed(content)

        memory = Memory(
            id=id or f"ltm-{uuid.uuid4().hex[:16]}",
            type=type,
            content=content,
            embedding=list(embedding),
            metadata=dict(metadata or {}),
        )
        memory.importance = importance
        self._long_term[memory.id] = memory

        if self.consolidation_mode == "inline":
            self.consolidate()

        return memory.copy()

    def get(self, memory_id: str) -> Optional[Memory]:
        """Fetch a long-term memory, counting the access."""
        memory = self._long_term.get(memory_id)
        if memory is None:
            return None
        memory.touch()
        return memory.copy()

    def forget(self, memory_id: str) -> bool:
        """Remove a memory from both tiers so eviction can't bring it back."""
        working_before = len(self._working)
        self._working = [m for m in self._working if m.id != memory_id]
        in_working = len(self._working) != working_before
        in_long_term = self._long_term.pop(memory_id, None) is not None
        return in_working or in_long_term

    def clear(self) -> None:
        """Empty working and long-term memory."""
        self.clear_working_memory()
        self._long_term.clear()
        logger.info("Cleared long-term memory")

    async def search(self, query: str, limit: int = 5) -> list[tuple[Memory, float]]:
        """
        Rank long-term memories by cosine similarity to a query.

        Linear scan over every entry.
        """
        query_embedding = await self.embedding_service.embed(query)

        scored = []
        for memory in self._long_term.values():
            if memory.embedding is None:
                continue
            scored.append((memory, cosine_similarity(query_embedding, memory.embedding)))

        scored.sort(key=lambda pair: pair[1], reverse=True)
        return [(memory.copy(), score) for memory, score in scored[:limit]]

    # ------------------------------------------------------------------
    # Consolidation
    # ------------------------------------------------------------------

    def should_forget(self, memory: Memory, now: datetime) -> bool:
        return (
            now - memory.created_at > FORGET_MIN_AGE
            and memory.importance < FORGET_MAX_IMPORTANCE
            and memory.access_count < FORGET_MAX_ACCESS_COUNT
            and now - memory.last_accessed_at > FORGET_MIN_IDLE
        )

    def consolidate(self, now: Optional[datetime] = None) -> TierConsolidation:
        """
        Forget stale, unimportant, unused memories and reinforce busy ones.

        O(n) over long-term memory.
        """
        now = now or datetime.now()
        result = TierConsolidation()

        for memory_id, memory in list(self._long_term.items()):
            if self.should_forget(memory, now):
                del self._long_term[memory_id]
                result.forgotten += 1
                continue

            if memory.access_count > REINFORCE_MIN_ACCESS_COUNT:
                memory.importance = min(1.0, memory.importance * REINFORCE_FACTOR)
                result.reinforced += 1

        if result.forgotten:
            logger.info(f"Consolidation forgot {result.forgotten} memories, reinforced {result.reinforced}")
        return result

    async def _sweep(self) -> None:
        while True:
            await asyncio.sleep(self.consolidation_interval)
            self.consolidate()

    def start(self) -> None:
        """Start the periodic consolidation sweep (background mode only)."""
        if self.consolidation_mode != "background" or self._sweeper is not None:
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep())
        logger.info(f"Background consolidation every {self.consolidation_interval}s")

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None
