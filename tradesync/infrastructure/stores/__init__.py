"""Durable storage: partitioned history store and local file primitives."""

from .json_key_value_store import JsonKeyValueStore, PlaintextCipher
from .local_file_system import LocalFileSystem
from .partitioned_store import PartitionedStore

__all__ = ["JsonKeyValueStore", "LocalFileSystem", "PartitionedStore", "PlaintextCipher"]
