"""Crash-recovery slot for the in-flight generation.

Holds at most one PendingGeneration. A submission writes it, a terminal
outcome or explicit cancel clears it, and after a restart the caller reads
it back to offer recovery. Durability is best-effort: storage failures are
logged and swallowed, since losing the record only degrades the experience.

Expiry is lazy. ``read()`` treats a record older than ten minutes as absent
and clears it from storage as a side effect; there is no background sweeper.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime

from pydantic import ValidationError

from quippix.core.constants import RECOVERY_KEY, RECOVERY_TTL
from quippix.core.logging import get_logger
from quippix.core.models import PendingGeneration
from quippix.state.base import KeyValueStore
from quippix.utils.time import utc_now

_logger = get_logger("state.recovery")


class RecoverySlot:
    """Single-occupancy durable record of the in-flight job.

    Args:
        store: Durable key-value collaborator.
        key: Storage slot for the record.
        clock: Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        store: KeyValueStore,
        key: str = RECOVERY_KEY,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._key = key
        self._clock = clock
        self.ttl_seconds = RECOVERY_TTL.total_seconds()

    async def save(self, record: PendingGeneration) -> None:
        """Store the record, overwriting any previous one."""
        try:
            await self._store.set(self._key, json.dumps(record.to_wire()))
        except Exception as e:
            _logger.warning("recovery_save_failed", job_id=record.job_id, error=str(e))
            return
        _logger.debug("recovery_saved", job_id=record.job_id)

    async def clear(self) -> None:
        """Remove the record. Clearing an empty slot is a no-op."""
        try:
            await self._store.remove(self._key)
        except Exception as e:
            _logger.warning("recovery_clear_failed", error=str(e))

    async def read(self) -> PendingGeneration | None:
        """Return the stored record, or None if absent, unreadable or expired.

        May mutate storage: an expired record (age strictly greater than the
        TTL) is cleared before None is returned.
        """
        try:
            raw = await self._store.get(self._key)
        except Exception as e:
            _logger.warning("recovery_read_failed", error=str(e))
            return None
        if not raw:
            return None

        try:
            record = PendingGeneration.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            _logger.warning("recovery_record_invalid", error=str(e))
            return None

        age = record.age(self._clock())
        if age > self.ttl_seconds:
            _logger.info("recovery_expired", job_id=record.job_id, age_seconds=round(age, 1))
            await self.clear()
            return None
        return record
