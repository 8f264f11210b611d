"""JSON file-based key-value store.

Keeps every key in a single JSON document on disk, rewritten atomically
(temp file + rename) on each mutation.
"""

from __future__ import annotations

import json
from pathlib import Path

from quippix.core.errors import StorageError
from quippix.core.logging import get_logger
from quippix.state.base import KeyValueStore

_logger = get_logger("state.json")


class JsonFileKeyValueStore(KeyValueStore):
    """Key-value storage backed by one JSON document.

    File layout: ``{"<key>": "<serialized value>", ...}``
    """

    def __init__(self, path: Path) -> None:
        """Initialize JSON store.

        Args:
            path: Path of the JSON document. Parent directories are created.
        """
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            # Corrupted document: start over rather than wedge every read
            _logger.warning("store_corrupted", path=str(self.path), error=str(e))
            return {}
        except OSError as e:
            raise StorageError(f"Cannot read {self.path}: {e}") from e
        if not isinstance(data, dict):
            _logger.warning("store_corrupted", path=str(self.path), error="not an object")
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write(self, data: dict[str, str]) -> None:
        temp_file = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            temp_file.replace(self.path)
        except OSError as e:
            raise StorageError(f"Cannot write {self.path}: {e}") from e

    async def get(self, key: str) -> str | None:
        return self._load().get(key)

    async def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._write(data)

    async def remove(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._write(data)
