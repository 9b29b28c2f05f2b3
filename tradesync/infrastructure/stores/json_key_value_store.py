"""
JSON-file key-value store.

Stand-in for the host application's settings store (the place the legacy
single-blob cache lived). The whole store is one JSON object on disk.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Optional

from ...domain.interfaces.file_system import FileSystem
from ...utils.logging_setup import get_logger

logger = get_logger(__name__)


class PlaintextCipher:
    """SecretCipher for hosts that stored legacy blobs unencrypted."""

    def decrypt(self, ciphertext: str) -> str:
        return ciphertext


class JsonKeyValueStore:
    """KeyValueStore persisted as a single JSON document through a FileSystem."""

    def __init__(self, file_system: FileSystem, path: str = "config.json"):
        self._fs = file_system
        self._path = path
        self._lock = asyncio.Lock()

    async def _load(self) -> Dict[str, Any]:
        content = await self._fs.read_file(self._path)
        if not content:
            return {}
        data = json.loads(content)
        if not isinstance(data, dict):
            raise ValueError(f"Key-value store {self._path} is not a JSON object")
        return data

    async def get(self, key: str) -> Optional[Any]:
        data = await self._load()
        return data.get(key)

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            data = await self._load()
            data[key] = value
            await self._fs.write_file(self._path, json.dumps(data, indent=2))

    async def delete(self, key: str) -> None:
        async with self._lock:
            data = await self._load()
            if key in data:
                del data[key]
                await self._fs.write_file(self._path, json.dumps(data, indent=2))
                logger.debug(f"Deleted key {key} from {self._path}")
