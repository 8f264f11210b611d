"""In-memory key-value store for testing.

Provides a KeyValueStore that keeps everything in a dict without
filesystem I/O. Useful for unit tests that need a real store.
"""

from quippix.state.base import KeyValueStore


class InMemoryKeyValueStore(KeyValueStore):
    """In-memory key-value store for testing."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def remove(self, key: str) -> None:
        self.data.pop(key, None)
