"""Abstract base for durable key-value stores."""

from abc import ABC, abstractmethod


class KeyValueStore(ABC):
    """Abstract base class for durable string key-value storage.

    Implementations back the offline queue and the recovery slot. Operations
    are asynchronous and need not be ordered across unrelated keys.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Read the value stored under a key.

        Args:
            key: Storage key.

        Returns:
            The stored string, or None if the key is absent.
        """
        ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one.

        Args:
            key: Storage key.
            value: Serialized value.
        """
        ...

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Delete a key. Removing an absent key is not an error.

        Args:
            key: Storage key.
        """
        ...
