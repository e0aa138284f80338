from __future__ import annotations

from ._internal.indexing import BM25Index, IndexedDocument, extract_keywords, tokenize
from .lorebook import LorebookSelector, format_lorebook_context, sanitize_for_llm, select_entries
from .memory import InMemoryBackend, MemoryBackend, MemoryStore, rank_memories
from .models import (
    CharacterCard,
    CharacterStats,
    DialogueMessage,
    Lorebook,
    LorebookEntry,
    MemoryEntry,
    MemoryType,
    POVMode,
    POVOptions,
)

__all__ = [
    "BM25Index",
    "CharacterCard",
    "CharacterStats",
    "DialogueMessage",
    "InMemoryBackend",
    "IndexedDocument",
    "Lorebook",
    "LorebookEntry",
    "LorebookSelector",
    "MemoryBackend",
    "MemoryEntry",
    "MemoryStore",
    "MemoryType",
    "POVMode",
    "POVOptions",
    "extract_keywords",
    "format_lorebook_context",
    "rank_memories",
    "sanitize_for_llm",
    "select_entries",
    "tokenize",
]
