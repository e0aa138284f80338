from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from ..constants import DEFAULT_MEMORY_LIMIT
from ..errors import StorageError
from ._internal.indexing import BM25Index
from .models import MemoryEntry

logger = logging.getLogger(__name__)


@runtime_checkable
class MemoryBackend(Protocol):
    """Durable, append-only collection of memory entries."""

    async def load(self) -> list[MemoryEntry]: ...
    async def append(self, entries: list[MemoryEntry]) -> None: ...


class InMemoryBackend:
    def __init__(self, entries: Sequence[MemoryEntry] | None = None):
        self.entries: list[MemoryEntry] = list(entries or [])

    async def load(self) -> list[MemoryEntry]:
        return list(self.entries)

    async def append(self, entries: list[MemoryEntry]) -> None:
        self.entries.extend(entries)


def rank_memories(
    entries: Sequence[MemoryEntry], query: str, limit: int = DEFAULT_MEMORY_LIMIT
) -> list[MemoryEntry]:
    """BM25-rank a snapshot of memories; results keep insertion order."""
    index: BM25Index[MemoryEntry] = BM25Index()
    index.index(entry.to_document(position) for position, entry in enumerate(entries))
    return [doc.payload for doc in index.search(query, limit)]


def format_memories(entries: Sequence[MemoryEntry]) -> str:
    return "\n".join(entry.format_line() for entry in entries)


class MemoryStore:
    """
    Long-term memories of one character dialogue.

    Every search re-indexes from the current backing collection, so
    additions are visible immediately without coordinating with other
    readers.
    """

    def __init__(self, backend: MemoryBackend):
        self.backend = backend

    async def add_memory(self, entry: MemoryEntry) -> None:
        await self.backend.append([entry])

    async def add_memories(self, entries: list[MemoryEntry]) -> None:
        await self.backend.append(entries)

    async def search(self, query: str, limit: int = DEFAULT_MEMORY_LIMIT) -> list[MemoryEntry]:
        try:
            entries = await self.backend.load()
        except StorageError:
            logger.exception("Failed to load memories, continuing without them")
            return []
        if not entries:
            return []
        results = rank_memories(entries, query, limit)
        logger.debug("memory search corpus=%s hits=%s", len(entries), len(results))
        return results

    async def search_memories(self, query: str, limit: int = DEFAULT_MEMORY_LIMIT) -> str:
        """Formatted memory lines for the prompt; empty string when nothing matches."""
        return format_memories(await self.search(query, limit))
