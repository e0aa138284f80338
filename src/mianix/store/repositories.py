"""JSON records kept in the vault: memories, lorebooks, cards and stats."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from pydantic import ValidationError

from ..constants import CARD_FILE, INDEX_FILE, LOREBOOK_FILE, LOREBOOKS_FOLDER, STATS_FILE
from ..core.models import CharacterCard, CharacterStats, Lorebook, LorebookEntry, MemoryEntry
from ..errors import StorageError
from .file_vault import normalize_path
from .protocols import Vault

logger = logging.getLogger(__name__)


async def read_json(vault: Vault, path: str) -> Any | None:
    """Parse a JSON file; None when it does not exist."""
    if not await vault.exists(path):
        return None
    raw = await vault.read_text(path)
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise StorageError("File is not valid JSON", path=path, original_error=e) from e


async def write_json(vault: Vault, path: str, data: Any) -> None:
    await vault.write_text(path, json.dumps(data, ensure_ascii=False, indent=2))


class MemoryIndexRepository:
    """Memories of one character, stored under ``memories`` in ``index.json``.

    The list is append-only. Other keys of the index file are preserved.
    """

    def __init__(self, vault: Vault, character_folder: str):
        self.vault = vault
        self.path = normalize_path(f"{character_folder}/{INDEX_FILE}")
        self._lock = asyncio.Lock()

    async def _read_index(self) -> dict[str, Any]:
        data = await read_json(self.vault, self.path)
        return data if isinstance(data, dict) else {}

    async def load(self) -> list[MemoryEntry]:
        index = await self._read_index()
        entries = []
        for raw in index.get("memories") or []:
            try:
                entries.append(MemoryEntry.model_validate(raw))
            except ValidationError:
                logger.warning("Skipping invalid memory in %s: %r", self.path, raw)
        return entries

    async def append(self, entries: list[MemoryEntry]) -> None:
        if not entries:
            return
        async with self._lock:
            index = await self._read_index()
            memories = list(index.get("memories") or [])
            memories.extend(entry.to_vault() for entry in entries)
            index["memories"] = memories
            await write_json(self.vault, self.path, index)
        logger.info("Stored %s memories in %s", len(entries), self.path)


def _lorebook_entries(data: Any) -> list[Any]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        return list(data.get("entries") or [])
    return []


def _validate_entries(data: Any, path: str) -> list[LorebookEntry]:
    entries = []
    for raw in _lorebook_entries(data):
        try:
            entries.append(LorebookEntry.model_validate(raw))
        except ValidationError:
            logger.warning("Skipping invalid lorebook entry in %s: %r", path, raw)
    return entries


class LorebookRepository:
    """Private lorebooks live in the character folder, shared ones in ``lorebooks/``."""

    def __init__(self, vault: Vault, shared_folder: str = LOREBOOKS_FOLDER):
        self.vault = vault
        self.shared_folder = normalize_path(shared_folder)

    async def load_private(self, character_folder: str) -> Lorebook | None:
        path = normalize_path(f"{character_folder}/{LOREBOOK_FILE}")
        try:
            data = await read_json(self.vault, path)
        except StorageError:
            logger.exception("Failed to load lorebook %s", path)
            return None
        entries = _validate_entries(data, path)
        if not entries:
            return None
        folder_name = normalize_path(character_folder).rsplit("/", 1)[-1]
        return Lorebook(
            id=f"private-{folder_name}",
            name=f"{folder_name}'s Lorebook",
            scope="private",
            entries=entries,
            source_path=path,
        )

    async def load_shared(self) -> list[Lorebook]:
        await self.vault.create_folder(self.shared_folder)
        lorebooks = []
        for path in await self.vault.list_folder(self.shared_folder):
            if not path.endswith(".json"):
                continue
            try:
                lorebooks.append(await self._load_shared_file(path))
            except (StorageError, ValidationError):
                logger.exception("Failed to load lorebook %s", path)
        return lorebooks

    async def _load_shared_file(self, path: str) -> Lorebook:
        data = await read_json(self.vault, path)
        basename = path.rsplit("/", 1)[-1].removesuffix(".json")
        meta = data if isinstance(data, dict) else {}
        return Lorebook(
            id=meta.get("id") or basename,
            name=meta.get("name") or basename,
            description=meta.get("description"),
            scope="shared",
            entries=_validate_entries(data, path),
            source_path=path,
        )

    async def save_private(self, character_folder: str, entries: list[LorebookEntry]) -> None:
        path = normalize_path(f"{character_folder}/{LOREBOOK_FILE}")
        await write_json(self.vault, path, {"entries": [e.to_vault() for e in entries]})


class CharacterRepository:
    def __init__(self, vault: Vault):
        self.vault = vault

    async def load_card(self, character_folder: str) -> CharacterCard:
        path = normalize_path(f"{character_folder}/{CARD_FILE}")
        data = await read_json(self.vault, path)
        if not isinstance(data, dict):
            raise StorageError("Character card not found", path=path)
        try:
            card = CharacterCard.model_validate(data)
        except ValidationError as e:
            raise StorageError("Invalid character card", path=path, original_error=e) from e
        return card.model_copy(update={"folder_path": normalize_path(character_folder)})

    async def load_stats(self, character_folder: str) -> CharacterStats | None:
        path = normalize_path(f"{character_folder}/{STATS_FILE}")
        try:
            data = await read_json(self.vault, path)
            return CharacterStats.model_validate(data) if data is not None else None
        except (StorageError, ValidationError):
            logger.exception("Failed to load stats from %s", path)
            return None
