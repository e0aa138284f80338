from __future__ import annotations

from .file_vault import FileVault, normalize_path
from .protocols import Vault
from .repositories import (
    CharacterRepository,
    LorebookRepository,
    MemoryIndexRepository,
    read_json,
    write_json,
)

__all__ = [
    "CharacterRepository",
    "FileVault",
    "LorebookRepository",
    "MemoryIndexRepository",
    "Vault",
    "normalize_path",
    "read_json",
    "write_json",
]
