from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import Protocol

from ..constants import MAX_ACTIVE_ENTRIES
from ._internal.indexing import BM25Index
from .models import Lorebook, LorebookEntry

logger = logging.getLogger(__name__)

_CODE_BLOCK = re.compile(r"```[\s\S]*?```")
_INLINE_CODE = re.compile(r"`[^`]+`")
_ROLE_MARKER = re.compile(r"\b(system|assistant|user):\s*", re.IGNORECASE)
_INSTRUCTION_TOKEN = re.compile(r"\[INST\]|\[/INST\]|<\|[^>]+\|>", re.IGNORECASE)
_EXTRA_NEWLINES = re.compile(r"\n{3,}")


def sanitize_for_llm(text: str) -> str:
    """Strip prompt-injection vectors from text injected into a context section."""
    text = _CODE_BLOCK.sub("[code block removed]", text)
    text = _INLINE_CODE.sub("[code]", text)
    text = _ROLE_MARKER.sub("", text)
    text = _INSTRUCTION_TOKEN.sub("", text)
    return _EXTRA_NEWLINES.sub("\n\n", text)


def format_lorebook_context(entries: Sequence[LorebookEntry]) -> str:
    if not entries:
        return ""
    lines = []
    for entry in entries:
        lines.append(f"**{sanitize_for_llm(entry.name)}:**")
        lines.append(sanitize_for_llm(entry.content))
        lines.append("")
    return "\n".join(lines).strip()


class LorebookSource(Protocol):
    async def load_private(self, character_folder: str) -> Lorebook | None: ...
    async def load_shared(self) -> list[Lorebook]: ...


def build_lorebook_index(entries: Sequence[LorebookEntry]) -> BM25Index[LorebookEntry]:
    index: BM25Index[LorebookEntry] = BM25Index()
    index.index(entry.to_document(position) for position, entry in enumerate(entries))
    return index


def select_entries(
    entries: Sequence[LorebookEntry],
    recent_messages: Sequence[str],
    scan_depth: int,
    limit: int = MAX_ACTIVE_ENTRIES,
) -> list[LorebookEntry]:
    """Entries activated by the last ``scan_depth`` messages, in authoring order."""
    if not entries:
        return []
    window = list(recent_messages)[-scan_depth:] if scan_depth > 0 else []
    scan_text = "\n".join(window)
    return [doc.payload for doc in build_lorebook_index(entries).search(scan_text, limit)]


class LorebookSelector:
    """Picks active world-info entries from private and shared lorebooks."""

    def __init__(self, source: LorebookSource, limit: int = MAX_ACTIVE_ENTRIES):
        self.source = source
        self.limit = limit

    async def load_entries(self, character_folder: str) -> list[LorebookEntry]:
        private = await self.source.load_private(character_folder)
        shared = await self.source.load_shared()
        entries: list[LorebookEntry] = list(private.entries) if private else []
        for lorebook in shared:
            entries.extend(lorebook.entries)
        return entries

    async def get_active_entries(
        self,
        character_folder: str,
        recent_messages: Sequence[str],
        scan_depth: int,
    ) -> list[LorebookEntry]:
        entries = await self.load_entries(character_folder)
        active = select_entries(entries, recent_messages, scan_depth, self.limit)
        logger.debug("lorebook corpus=%s active=%s", len(entries), len(active))
        return active

    async def has_matches(
        self, character_folder: str, recent_messages: Sequence[str], scan_depth: int
    ) -> bool:
        entries = await self.load_entries(character_folder)
        window = list(recent_messages)[-scan_depth:] if scan_depth > 0 else []
        return build_lorebook_index(entries).has_matches("\n".join(window))

    async def get_context(
        self,
        character_folder: str,
        recent_messages: Sequence[str],
        scan_depth: int,
    ) -> str:
        entries = await self.get_active_entries(character_folder, recent_messages, scan_depth)
        return format_lorebook_context(entries)
