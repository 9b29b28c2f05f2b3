"""Protocols for the host's key-value store and secret layer (legacy blobs)."""

from __future__ import annotations
from typing import Any, Optional, Protocol, runtime_checkable


@runtime_checkable
class KeyValueStore(Protocol):
    """Host key-value store holding the legacy single-blob cache."""

    async def get(self, key: str) -> Optional[Any]:
        ...

    async def set(self, key: str, value: Any) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


@runtime_checkable
class SecretCipher(Protocol):
    """Decrypts values the host stored encrypted."""

    def decrypt(self, ciphertext: str) -> str:
        """
        Args:
            ciphertext: Encrypted payload as stored by the host.

        Returns:
            The plaintext (a JSON document for legacy blobs).
        """
        ...
