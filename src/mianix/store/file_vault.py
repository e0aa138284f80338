from __future__ import annotations

import asyncio
import logging
import os
import posixpath
import shutil
import time
from pathlib import Path

from ..errors import StorageError
from ..utils.logging import elapsed_ms, log_context

logger = logging.getLogger(__name__)

TRASH_FOLDER = ".trash"


def normalize_path(path: str) -> str:
    """Collapse separators and dots into a clean vault-relative path."""
    cleaned = posixpath.normpath(path.replace("\\", "/").strip("/"))
    return "" if cleaned == "." else cleaned


class FileVault:
    """Vault backed by a folder on the local filesystem.

    Blocking file calls run in a worker thread so the event loop is
    never held by disk I/O.
    """

    def __init__(self, root: str | os.PathLike[str]):
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        relative = normalize_path(path)
        target = (self.root / relative).resolve()
        if target != self.root and self.root not in target.parents:
            raise StorageError("Path escapes the vault root", path=path)
        return target

    async def read_text(self, path: str) -> str:
        target = self._resolve(path)
        try:
            return await asyncio.to_thread(target.read_text, encoding="utf-8")
        except OSError as e:
            raise StorageError("Failed to read file", path=path, original_error=e) from e

    async def read_bytes(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except OSError as e:
            raise StorageError("Failed to read file", path=path, original_error=e) from e

    async def write_text(self, path: str, content: str) -> None:
        target = self._resolve(path)
        start = time.perf_counter()
        try:
            await asyncio.to_thread(self._write_atomic, target, content)
        except OSError as e:
            logger.exception(
                "Failed to write %s",
                path,
                extra=log_context("vault", duration_ms=elapsed_ms(start)),
            )
            raise StorageError("Failed to write file", path=path, original_error=e) from e
        logger.debug(
            "Wrote %s",
            path,
            extra=log_context("vault", duration_ms=elapsed_ms(start), size=len(content)),
        )

    @staticmethod
    def _write_atomic(target: Path, content: str) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + ".tmp")
        tmp.write_text(content, encoding="utf-8")
        os.replace(tmp, target)

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self._resolve(path).exists)

    async def list_folder(self, path: str) -> list[str]:
        target = self._resolve(path)
        if not target.is_dir():
            return []
        prefix = normalize_path(path)
        names = await asyncio.to_thread(lambda: sorted(child.name for child in target.iterdir()))
        return [f"{prefix}/{name}" if prefix else name for name in names]

    async def create_folder(self, path: str) -> None:
        target = self._resolve(path)
        try:
            await asyncio.to_thread(target.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError("Failed to create folder", path=path, original_error=e) from e

    async def trash(self, path: str) -> None:
        target = self._resolve(path)
        if not target.exists():
            return
        trash_root = self.root / TRASH_FOLDER
        destination = trash_root / f"{int(time.time() * 1000)}-{target.name}"
        try:
            await asyncio.to_thread(trash_root.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(shutil.move, str(target), str(destination))
        except OSError as e:
            raise StorageError("Failed to move to trash", path=path, original_error=e) from e
        logger.info("Moved %s to trash", path, extra=log_context("vault"))
