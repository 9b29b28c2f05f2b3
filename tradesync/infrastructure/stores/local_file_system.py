"""
Disk-backed FileSystem implementation.

All blocking calls run in the default thread pool via asyncio.to_thread.
Writes go to a unique temp file next to the target and are moved into
place with os.replace, so a reader never sees a half-written partition.
"""

from __future__ import annotations

import asyncio
import os
import shutil
from pathlib import Path
from typing import List, Optional
from uuid import uuid4

from ...utils.logging_setup import get_logger

logger = get_logger(__name__)


class LocalFileSystem:
    """
    FileSystem rooted at a local directory.

    Paths passed in are relative ('/'-separated); absolute paths and '..'
    segments are rejected.
    """

    def __init__(self, root_dir: str | Path):
        self.root = Path(root_dir).expanduser().resolve()

    def _resolve(self, path: str) -> Path:
        relative = Path(path)
        if relative.is_absolute() or ".." in relative.parts:
            raise ValueError(f"Path must be relative and inside the root: {path!r}")
        return self.root / relative

    async def read_file(self, path: str) -> Optional[str]:
        return await asyncio.to_thread(self._read_sync, self._resolve(path))

    @staticmethod
    def _read_sync(target: Path) -> Optional[str]:
        try:
            return target.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    async def write_file(self, path: str, content: str) -> None:
        await asyncio.to_thread(self._write_sync, self._resolve(path), content)

    @staticmethod
    def _write_sync(target: Path, content: str) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        temp_path = target.with_name(f".{target.name}.{uuid4().hex}.tmp")
        try:
            temp_path.write_text(content, encoding="utf-8")
            os.replace(temp_path, target)
        finally:
            if temp_path.exists():
                temp_path.unlink()

    async def create_directory(self, path: str) -> None:
        await asyncio.to_thread(self._resolve(path).mkdir, parents=True, exist_ok=True)

    async def delete_file(self, path: str) -> None:
        await asyncio.to_thread(self._resolve(path).unlink, missing_ok=True)

    async def move_file(self, source: str, destination: str) -> None:
        await asyncio.to_thread(self._move_sync, self._resolve(source), self._resolve(destination))

    @staticmethod
    def _move_sync(source: Path, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        os.replace(source, destination)

    async def delete_directory(self, path: str) -> None:
        target = self._resolve(path)
        if target == self.root:
            raise ValueError("Refusing to delete the file system root")
        await asyncio.to_thread(shutil.rmtree, target, ignore_errors=True)

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self._resolve(path).exists)

    async def list_directory(self, path: str) -> List[str]:
        return await asyncio.to_thread(self._list_sync, self._resolve(path))

    @staticmethod
    def _list_sync(target: Path) -> List[str]:
        if not target.is_dir():
            return []
        return sorted(entry.name for entry in target.iterdir() if not entry.name.startswith("."))
