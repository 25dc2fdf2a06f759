"""
Persistent Memory - structured memories that outlive a session.

Stores preferences, solutions, learned patterns and other keyed entries
in a single JSON file. Writes are debounced: every mutation marks the
store dirty and restarts a short timer, and only when the timer fires is
the whole entry set written (temp file, then atomic rename).

A crash inside the debounce window loses the mutations made during it.
That is accepted for this kind of data; call force_save() on shutdown.
"""

import asyncio
import json
import logging
import os
import random
import string
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from .base import MemoryNotInitializedError

logger = logging.getLogger("codemind.memory.persistent")

STORAGE_VERSION = 1
DEFAULT_SAVE_DELAY = 2.0

# Consolidation prunes never-used entries below this confidence
MIN_CONFIDENCE = 0.3

ENTRY_TYPES = (
    "preference",
    "project",
    "pattern",
    "solution",
    "context",
    "learning",
    "shortcut",
)


def _to_local_naive(value: Optional[datetime]) -> Optional[datetime]:
    """All stored datetimes are naive local time."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    # fromisoformat() only accepts a trailing "Z" from Python 3.11 on
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return _to_local_naive(datetime.fromisoformat(value))


@dataclass
class EntryMetadata:
    """Provenance and lifecycle data for a persistent entry."""
    source: str = "user"
    project_id: Optional[str] = None
    confidence: float = 1.0
    tags: list[str] = field(default_factory=list)
    expires: Optional[datetime] = None

    def __post_init__(self):
        self.expires = _to_local_naive(self.expires)

    def is_expired(self, now: datetime) -> bool:
        return self.expires is not None and self.expires <= now

    def to_dict(self) -> dict:
        data = {
            "source": self.source,
            "confidence": self.confidence,
            "tags": list(self.tags),
        }
        if self.project_id is not None:
            data["projectId"] = self.project_id
        if self.expires is not None:
            data["expires"] = self.expires.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "EntryMetadata":
        return cls(
            source=data.get("source", "user"),
            project_id=data.get("projectId"),
            confidence=data.get("confidence", 1.0),
            tags=list(data.get("tags", [])),
            expires=_parse_datetime(data.get("expires")),
        )


@dataclass
class PersistentEntry:
    """A keyed, structured memory."""
    id: str
    type: str
    key: str
    value: Any
    metadata: EntryMetadata
    created_at: datetime
    updated_at: datetime
    access_count: int = 0
    last_accessed_at: datetime = field(default_factory=datetime.now)

    def touch(self) -> None:
        self.access_count += 1
        self.last_accessed_at = datetime.now()

    @property
    def relevance_score(self) -> float:
        """Frequency first, recency (ms since epoch, scaled down) as tie-break."""
        return self.access_count * 1000 + self.last_accessed_at.timestamp() * 1000 / 1_000_000

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "key": self.key,
            "value": self.value,
            "metadata": self.metadata.to_dict(),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "accessCount": self.access_count,
            "lastAccessedAt": self.last_accessed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PersistentEntry":
        return cls(
            id=data["id"],
            type=data["type"],
            key=data["key"],
            value=data.get("value"),
            metadata=EntryMetadata.from_dict(data.get("metadata", {})),
            created_at=_parse_datetime(data["createdAt"]),
            updated_at=_parse_datetime(data["updatedAt"]),
            access_count=data.get("accessCount", 0),
            last_accessed_at=_parse_datetime(data["lastAccessedAt"]),
        )


@dataclass
class EntryQuery:
    """Filters for PersistentStore.query(). Empty fields match everything."""
    type: Optional[str] = None
    key: Optional[str] = None  # Case-insensitive substring
    tags: Optional[list[str]] = None  # Any of
    project_id: Optional[str] = None
    limit: Optional[int] = None


@dataclass
class ConsolidationReport:
    """
    Outcome of PersistentStore.consolidate().

    merged is always 0: merging similar entries is not implemented.
    """
    merged: int = 0
    deleted: int = 0


@dataclass
class StoreStats:
    total_entries: int
    by_type: dict[str, int]
    oldest_entry: Optional[datetime]
    newest_entry: Optional[datetime]
    total_size: int


class PersistentStore:
    """
    Keyed memory entries backed by one JSON file.

    The store owns its entry map; nothing else should mutate entries it
    hands out except through update().
    """

    def __init__(self, storage_path: str, save_delay: float = DEFAULT_SAVE_DELAY):
        self.storage_path = Path(storage_path)
        self.save_delay = save_delay
        self._entries: dict[str, PersistentEntry] = {}
        self._initialized = False
        self._dirty = False
        self._pending_save: Optional[asyncio.Task] = None
        self._save_lock = asyncio.Lock()
        self.save_count = 0
        logger.info(f"PersistentStore configured: {storage_path}")

    async def initialize(self) -> None:
        """Load entries from disk."""
        self._entries = await asyncio.to_thread(self._load_from_disk)
        self._initialized = True
        logger.info(f"PersistentStore initialized with {len(self._entries)} entries")

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise MemoryNotInitializedError("PersistentStore not initialized. Call initialize() first.")

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    # ------------------------------------------------------------------
    # Disk I/O
    # ------------------------------------------------------------------

    def _load_from_disk(self) -> dict[str, PersistentEntry]:
        try:
            with open(self.storage_path, "r") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.info("No memory file found, starting empty")
            return {}
        except Exception as e:
            logger.error(f"Failed to load memory from {self.storage_path}: {e}")
            return {}

        entries = {}
        for raw in data.get("entries", []):
            try:
                entry = PersistentEntry.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed memory entry: {e}")
                continue
            entries[entry.id] = entry
        return entries

    def _serialize(self) -> str:
        data = {
            "version": STORAGE_VERSION,
            "savedAt": datetime.now().isoformat(),
            "entries": [e.to_dict() for e in self._entries.values()],
        }
        return json.dumps(data, indent=2, default=str)

    def _write_atomic(self, payload: str) -> None:
        """Write to a temp file in the same directory, then rename over the target."""
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=self.storage_path.parent,
            prefix=f".{self.storage_path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.storage_path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    async def _save_to_disk(self) -> None:
        async with self._save_lock:
            if not self._dirty:
                return

            # Snapshot and clear the flag together; mutations made while the
            # write is in flight set it again and schedule another save.
            payload = self._serialize()
            count = len(self._entries)
            self._dirty = False

            try:
                await asyncio.to_thread(self._write_atomic, payload)
            except Exception as e:
                self._dirty = True
                logger.error(f"Failed to save memory to {self.storage_path}: {e}")
                return

            self.save_count += 1
            logger.info(f"Saved {count} memory entries")

    async def _delayed_save(self) -> None:
        await asyncio.sleep(self.save_delay)
        # From here on the save is in flight and must not be cancelled
        self._pending_save = None
        await self._save_to_disk()

    def _schedule_save(self) -> None:
        """Mark dirty and (re)start the debounce timer."""
        self._dirty = True

        if self._pending_save is not None:
            self._pending_save.cancel()

        self._pending_save = asyncio.get_running_loop().create_task(self._delayed_save())

    async def force_save(self) -> None:
        """Write immediately, bypassing the debounce."""
        if self._pending_save is not None:
            self._pending_save.cancel()
            self._pending_save = None
        self._dirty = True
        await self._save_to_disk()

    async def close(self) -> None:
        """Stop the timer, wait for any in-flight write, and flush pending changes."""
        if self._pending_save is not None:
            self._pending_save.cancel()
            self._pending_save = None
        await self._save_to_disk()
        logger.info("PersistentStore closed")

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    @staticmethod
    def _generate_id() -> str:
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
        return f"mem-{int(time.time() * 1000)}-{suffix}"

    async def store(
        self,
        type: str,
        key: str,
        value: Any,
        metadata: Optional[dict[str, Any]] = None,
    ) -> PersistentEntry:
        """
        Store a new entry.

        Args:
            type: Entry type (preference, solution, pattern, ...)
            key: Lookup key; not required to be unique
            value: Any JSON-serializable value
            metadata: Optional source/project_id/confidence/tags/expires overrides

        Returns:
            The stored entry
        """
        self._ensure_initialized()
        now = datetime.now()

        entry = PersistentEntry(
            id=self._generate_id(),
            type=type,
            key=key,
            value=value,
            metadata=EntryMetadata(**(metadata or {})),
            created_at=now,
            updated_at=now,
            access_count=0,
            last_accessed_at=now,
        )

        self._entries[entry.id] = entry
        self._schedule_save()
        logger.debug(f"Stored {type} entry {entry.id}: {key}")

        return entry

    async def retrieve(self, key: str) -> Optional[PersistentEntry]:
        """Get the first entry with exactly this key, counting the access."""
        self._ensure_initialized()

        for entry in self._entries.values():
            if entry.key == key:
                entry.touch()
                self._schedule_save()
                return entry
        return None

    async def get(self, entry_id: str) -> Optional[PersistentEntry]:
        """Get an entry by id without counting an access."""
        self._ensure_initialized()
        return self._entries.get(entry_id)

    async def query(self, query: Optional[EntryQuery] = None) -> list[PersistentEntry]:
        """
        Find entries matching every given filter.

        Expired entries are never returned. Results are ordered by
        relevance_score, limited, and each returned entry's access
        count is bumped.
        """
        self._ensure_initialized()
        query = query or EntryQuery()
        now = datetime.now()

        results = list(self._entries.values())

        if query.type:
            results = [e for e in results if e.type == query.type]

        if query.key:
            key_lower = query.key.lower()
            results = [e for e in results if key_lower in e.key.lower()]

        if query.tags:
            results = [
                e for e in results
                if any(tag in e.metadata.tags for tag in query.tags)
            ]

        if query.project_id:
            results = [e for e in results if e.metadata.project_id == query.project_id]

        results = [e for e in results if not e.metadata.is_expired(now)]

        results.sort(key=lambda e: e.relevance_score, reverse=True)

        if query.limit:
            results = results[:query.limit]

        for entry in results:
            entry.touch()
        self._schedule_save()

        return results

    async def update(
        self,
        entry_id: str,
        value: Any,
        metadata: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Replace an entry's value and merge metadata fields."""
        self._ensure_initialized()
        entry = self._entries.get(entry_id)
        if entry is None:
            return False

        entry.value = value
        entry.updated_at = datetime.now()

        if metadata:
            for name, field_value in metadata.items():
                if not hasattr(entry.metadata, name):
                    raise ValueError(f"Unknown metadata field: {name}")
                if name == "expires":
                    field_value = _to_local_naive(field_value)
                setattr(entry.metadata, name, field_value)

        self._schedule_save()
        return True

    async def delete(self, entry_id: str) -> bool:
        self._ensure_initialized()
        if self._entries.pop(entry_id, None) is None:
            return False
        self._schedule_save()
        return True

    async def clear_type(self, type: str) -> int:
        """Delete every entry of one type."""
        self._ensure_initialized()
        ids = [entry_id for entry_id, e in self._entries.items() if e.type == type]
        for entry_id in ids:
            del self._entries[entry_id]
        self._schedule_save()
        return len(ids)

    async def consolidate(self) -> ConsolidationReport:
        """
        Prune expired entries and never-used low-confidence entries.

        Only deletes. Similar entries are not merged.
        """
        self._ensure_initialized()
        now = datetime.now()
        report = ConsolidationReport()

        for entry_id, entry in list(self._entries.items()):
            if entry.metadata.is_expired(now):
                del self._entries[entry_id]
                report.deleted += 1
            elif entry.metadata.confidence < MIN_CONFIDENCE and entry.access_count == 0:
                del self._entries[entry_id]
                report.deleted += 1

        self._schedule_save()
        logger.info(f"Consolidation: {report.deleted} deleted, {report.merged} merged")
        return report

    # ------------------------------------------------------------------
    # Preferences, solutions, patterns
    # ------------------------------------------------------------------

    async def set_preference(self, key: str, value: Any) -> None:
        existing = await self.retrieve(f"pref:{key}")
        if existing:
            await self.update(existing.id, value)
        else:
            await self.store(
                type="preference",
                key=f"pref:{key}",
                value=value,
                metadata={"source": "user", "confidence": 1.0, "tags": ["preference"]},
            )

    async def get_preference(self, key: str, default: Any = None) -> Any:
        entry = await self.retrieve(f"pref:{key}")
        return entry.value if entry else default

    async def remember_solution(
        self,
        problem: str,
        solution: str,
        context: str,
        project_id: Optional[str] = None,
        tags: Optional[list[str]] = None,
    ) -> PersistentEntry:
        """Record a solution that worked, keyed by the problem statement."""
        return await self.store(
            type="solution",
            key=problem,
            value={"solution": solution, "context": context},
            metadata={
                "source": "agent",
                "project_id": project_id,
                "confidence": 1.0,
                "tags": ["solution", *(tags or [])],
            },
        )

    async def find_similar_solutions(self, problem: str) -> list[PersistentEntry]:
        """Solutions whose problem shares a keyword with this one (max 5)."""
        keywords = problem.lower().split()
        solutions = await self.query(EntryQuery(type="solution", limit=20))

        matches = [
            entry for entry in solutions
            if any(kw in entry.key.lower() for kw in keywords)
        ]
        return matches[:5]

    async def learn_pattern(
        self,
        name: str,
        pattern: Any,
        success_rate: float,
        project_id: Optional[str] = None,
    ) -> PersistentEntry:
        """Record a learned pattern; its success rate becomes its confidence."""
        return await self.store(
            type="learning",
            key=f"pattern:{name}",
            value={"pattern": pattern, "successRate": success_rate},
            metadata={
                "source": "agent",
                "project_id": project_id,
                "confidence": success_rate,
                "tags": ["pattern", "learned"],
            },
        )

    # ------------------------------------------------------------------
    # Stats, import / export
    # ------------------------------------------------------------------

    def get_stats(self) -> StoreStats:
        entries = list(self._entries.values())
        by_type: dict[str, int] = {}
        for entry in entries:
            by_type[entry.type] = by_type.get(entry.type, 0) + 1

        created = [e.created_at for e in entries]
        return StoreStats(
            total_entries=len(entries),
            by_type=by_type,
            oldest_entry=min(created) if created else None,
            newest_entry=max(created) if created else None,
            total_size=len(json.dumps([e.to_dict() for e in entries], default=str)),
        )

    async def export_entries(self) -> list[PersistentEntry]:
        self._ensure_initialized()
        return list(self._entries.values())

    async def import_entries(self, entries: list[PersistentEntry]) -> int:
        """Add entries whose ids aren't already present."""
        self._ensure_initialized()
        imported = 0
        for entry in entries:
            if entry.id not in self._entries:
                self._entries[entry.id] = entry
                imported += 1
        self._schedule_save()
        return imported
