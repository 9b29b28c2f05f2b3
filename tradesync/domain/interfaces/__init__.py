"""Domain interfaces for dependency injection."""

from .exchange_client import ExchangeAccount, ExchangeClient, FetchPage, FetchWindow, ProviderCode
from .file_system import FileSystem
from .legacy_store import KeyValueStore, SecretCipher

__all__ = [
    "ExchangeAccount",
    "ExchangeClient",
    "FetchPage",
    "FetchWindow",
    "ProviderCode",
    "FileSystem",
    "KeyValueStore",
    "SecretCipher",
]
