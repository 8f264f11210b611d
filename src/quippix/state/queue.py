"""Persistent offline queue of generation requests.

Requests made while the device is offline are appended here in arrival order
and drained by the OfflineDispatcher once connectivity returns. The whole
queue lives in one durable slot; every mutation is a read-modify-write of
that slot. There is no item-level locking and no de-duplication: two
identical requests queued while offline become two items.
"""

from __future__ import annotations

import json
import uuid

from pydantic import ValidationError

from quippix.core.constants import QUEUE_KEY
from quippix.core.logging import get_logger
from quippix.core.models import GenerationParams, QueueItem
from quippix.state.base import KeyValueStore

_logger = get_logger("state.queue")


def _new_item_id() -> str:
    return uuid.uuid4().hex


class PersistentQueueStore:
    """FIFO queue of QueueItems stored as a JSON array under one key.

    Args:
        store: Durable key-value collaborator.
        key: Storage slot holding the serialized queue.
    """

    def __init__(self, store: KeyValueStore, key: str = QUEUE_KEY) -> None:
        self._store = store
        self._key = key

    async def enqueue(self, image_ref: str, params: GenerationParams) -> str:
        """Append a request and return the new item's id."""
        item = QueueItem(id=_new_item_id(), image_ref=image_ref, params=params)
        items = await self.list_items()
        items.append(item)
        await self._write(items)
        _logger.info("request_queued", item_id=item.id, queue_length=len(items))
        return item.id

    async def list_items(self) -> list[QueueItem]:
        """All queued items in arrival order.

        Unreadable or corrupt storage reads as an empty queue; individual
        malformed entries are skipped.
        """
        try:
            raw = await self._store.get(self._key)
        except Exception as e:
            _logger.warning("queue_read_failed", error=str(e))
            return []
        if not raw:
            return []

        try:
            entries = json.loads(raw)
        except json.JSONDecodeError as e:
            _logger.warning("queue_corrupted", error=str(e))
            return []
        if not isinstance(entries, list):
            _logger.warning("queue_corrupted", error="expected a JSON array")
            return []

        items: list[QueueItem] = []
        for entry in entries:
            try:
                items.append(QueueItem.model_validate(entry))
            except ValidationError as e:
                _logger.warning("queue_item_invalid", error=str(e))
        return items

    async def remove(self, item_id: str) -> None:
        """Remove an item by id. Unknown ids leave the queue unchanged."""
        items = await self.list_items()
        remaining = [item for item in items if item.id != item_id]
        await self._write(remaining)
        _logger.debug("queue_item_removed", item_id=item_id, queue_length=len(remaining))

    async def count(self) -> int:
        return len(await self.list_items())

    async def _write(self, items: list[QueueItem]) -> None:
        payload = json.dumps([item.to_wire() for item in items])
        await self._store.set(self._key, payload)
