from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Vault(Protocol):
    """Keyed blob store the core reads and writes through.

    Paths are vault-relative and ``/``-separated.
    """

    async def read_text(self, path: str) -> str: ...
    async def write_text(self, path: str, content: str) -> None: ...
    async def read_bytes(self, path: str) -> bytes: ...
    async def exists(self, path: str) -> bool: ...
    async def list_folder(self, path: str) -> list[str]: ...
    async def create_folder(self, path: str) -> None: ...
    async def trash(self, path: str) -> None: ...
