"""Durable storage: key-value collaborators, offline queue and recovery slot."""

from pathlib import Path

from quippix.state.base import KeyValueStore
from quippix.state.json_backend import JsonFileKeyValueStore
from quippix.state.memory import InMemoryKeyValueStore
from quippix.state.queue import PersistentQueueStore
from quippix.state.recovery import RecoverySlot
from quippix.state.sqlite_backend import SQLiteKeyValueStore


def create_store(backend: str, path: Path | None = None) -> KeyValueStore:
    """Build a key-value store by backend name ("json", "sqlite" or "memory")."""
    if backend == "memory":
        return InMemoryKeyValueStore()
    if path is None:
        raise ValueError(f"storage backend '{backend}' requires a path")
    if backend == "json":
        return JsonFileKeyValueStore(path)
    if backend == "sqlite":
        return SQLiteKeyValueStore(path)
    raise ValueError(f"unknown storage backend: {backend}")


__all__ = [
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "PersistentQueueStore",
    "RecoverySlot",
    "SQLiteKeyValueStore",
    "create_store",
]
