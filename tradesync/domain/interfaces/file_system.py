"""File system protocol for raw durable storage."""

from __future__ import annotations
from typing import List, Optional, Protocol, runtime_checkable


@runtime_checkable
class FileSystem(Protocol):
    """
    Raw file I/O primitives used by the partitioned store and migration.

    Paths are '/'-separated and relative to the implementation's root.
    Each write_file/move_file is atomic at single-file granularity.

    Implementations:
    - LocalFileSystem (disk, under a root directory)
    """

    async def read_file(self, path: str) -> Optional[str]:
        """Return file content, or None if the file does not exist."""
        ...

    async def write_file(self, path: str, content: str) -> None:
        """Write (replace) a file, creating parent directories as needed."""
        ...

    async def create_directory(self, path: str) -> None:
        ...

    async def delete_file(self, path: str) -> None:
        """Delete a file; missing files are ignored."""
        ...

    async def move_file(self, source: str, destination: str) -> None:
        ...

    async def delete_directory(self, path: str) -> None:
        """Recursively delete a directory; missing directories are ignored."""
        ...

    async def exists(self, path: str) -> bool:
        ...

    async def list_directory(self, path: str) -> List[str]:
        """Entry names directly under path (empty if it does not exist)."""
        ...
