"""
Test fixtures and sample data for codemind tests.
"""

from datetime import datetime

from codemind.memory.base import IndexRecord, Memory
from codemind.memory.fingerprint import CodeFragment


def make_memory(
    content: str = "def parse_config(path): return yaml.safe_load(open(path))",
    type: str = "code",
    id: str = "",
    importance: float = None,
    metadata: dict = None,
    embedding: list[float] = None,
    created_at: datetime = None,
) -> Memory:
    """Create a sample Memory for testing."""
    memory = Memory(
        type=type,
        content=content,
        id=id,
        embedding=embedding,
        metadata=dict(metadata or {}),
        created_at=created_at or datetime.now(),
    )
    if importance is not None:
        memory.importance = importance
    return memory


def make_memories(count: int = 5, importance: float = 0.5) -> list[Memory]:
    """Create a list of distinct sample memories."""
    return [
        make_memory(
            content=f"Sample memory #{i} about caching strategy {i}",
            type="conversation",
            id=f"mem-{i}",
            importance=importance,
        )
        for i in range(count)
    ]


def make_record(
    id: str,
    embedding: list[float],
    content: str = "sample content",
    type: str = "code",
    metadata: dict = None,
) -> IndexRecord:
    """Create an IndexRecord with an explicit embedding."""
    return IndexRecord(
        id=id,
        embedding=embedding,
        content=content,
        type=type,
        metadata=dict(metadata or {}),
    )


def make_fragment(
    file: str = "src/app.py",
    start_line: int = 1,
    end_line: int = 10,
    content: str = "def handler(event):\n    if (event): return event\n",
    language: str = "python",
    type: str = "function",
    embedding: list[float] = None,
) -> CodeFragment:
    """Create a sample CodeFragment for testing."""
    return CodeFragment(
        file=file,
        start_line=start_line,
        end_line=end_line,
        content=content,
        language=language,
        type=type,
        embedding=embedding,
    )


def make_fragments() -> list[CodeFragment]:
    """Create a small project's worth of embedded fragments."""
    return [
        make_fragment(file="src/app.py", type="class", end_line=40, embedding=[1.0, 0.0, 0.5]),
        make_fragment(file="src/app.py", type="function", end_line=12, embedding=[0.2, 0.9, 0.1]),
        make_fragment(file="src/util.py", type="module", end_line=80, embedding=[0.3, 0.3, 0.3]),
        make_fragment(file="src/util.py", type="comment", end_line=3, embedding=[0.0, 0.0, 1.0]),
        make_fragment(file="src/db.py", type="block", end_line=6, embedding=[0.7, 0.1, 0.0]),
    ]
