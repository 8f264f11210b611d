"""Offline queue drain driven by connectivity transitions.

The dispatcher watches a ConnectivitySignal. Only a disconnected -> connected
transition schedules a drain; steady states and connected -> disconnected
do nothing. The signal's current state is read when the dispatcher starts:
if it is known to be offline, the first connected reading drains. An
unknown or connected starting state needs an observed disconnection first.

A drain pass is single-flight. It reads one snapshot of the queue, submits
items in arrival order, removes each only after the backend acknowledged
it, and stops at the first failure. The failed item and everything behind
it stay queued for the next restoration (head-of-line blocking keeps the
order intact). The dispatcher never polls submitted jobs; its work ends at
submission.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from quippix.core.errors import classify
from quippix.core.logging import get_logger
from quippix.core.models import QueueItem
from quippix.execution.connectivity import ConnectivitySignal, ConnectivityState, Unsubscribe
from quippix.state.queue import PersistentQueueStore

if TYPE_CHECKING:
    from quippix.client.jobs import JobClient

_logger = get_logger("dispatcher")

SubmittedHook = Callable[[QueueItem, str], Awaitable[None] | None]


@dataclass
class DrainResult:
    """Outcome of one drain pass.

    Attributes:
        submitted: (queue item id, job id) pairs in submission order.
        remaining: Items left in the queue after the pass.
        error: The failure that stopped the pass, if any.
        skipped: True when another drain was already running.
    """

    submitted: list[tuple[str, str]] = field(default_factory=list)
    remaining: int = 0
    error: BaseException | None = None
    skipped: bool = False

    @property
    def stopped_early(self) -> bool:
        return self.error is not None


class OfflineDispatcher:
    """Submit queued requests once connectivity is restored.

    Args:
        queue: Persistent queue of offline requests.
        client: Job client used for submission.
        connectivity: Signal whose transitions trigger drains.
        on_submitted: Optional hook called with the queue item and new job id
            after each successful submission. May be sync or async.
    """

    def __init__(
        self,
        queue: PersistentQueueStore,
        client: JobClient,
        connectivity: ConnectivitySignal,
        on_submitted: SubmittedHook | None = None,
    ) -> None:
        self._queue = queue
        self._client = client
        self._connectivity = connectivity
        self._on_submitted = on_submitted
        self._draining = False
        self._was_disconnected = False
        self._unsubscribe: Unsubscribe | None = None
        self._drain_task: asyncio.Task[DrainResult] | None = None

    @property
    def draining(self) -> bool:
        return self._draining

    @property
    def drain_task(self) -> asyncio.Task[DrainResult] | None:
        """The most recently scheduled drain, for callers that need to await it."""
        return self._drain_task

    def start(self) -> Unsubscribe:
        """Subscribe to the connectivity signal.

        Returns:
            A function that stops observing connectivity. A drain already
            scheduled keeps running.
        """
        if self._unsubscribe is not None:
            return self.stop
        # A known offline reading at subscription time counts as the
        # disconnection, so the next connected reading drains.
        self._was_disconnected = self._connectivity.current.is_connected is False
        self._unsubscribe = self._connectivity.subscribe(self._handle_state)
        _logger.info("dispatcher_started")
        return self.stop

    def stop(self) -> None:
        if self._unsubscribe is None:
            return
        self._unsubscribe()
        self._unsubscribe = None
        _logger.info("dispatcher_stopped")

    def _handle_state(self, state: ConnectivityState) -> None:
        connected = state.online
        if connected and self._was_disconnected:
            _logger.info("connectivity_restored")
            self._schedule_drain()
        self._was_disconnected = not connected

    def _schedule_drain(self) -> None:
        task = asyncio.get_running_loop().create_task(self.drain(), name="offline-drain")
        task.add_done_callback(self._on_drain_done)
        self._drain_task = task

    def _on_drain_done(self, task: asyncio.Task[DrainResult]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.error("drain_task_died", error=str(exc), task_name=task.get_name())

    async def drain(self) -> DrainResult:
        """Run one drain pass over a snapshot of the queue.

        Submission failures are caught and logged; they only stop the pass.
        """
        if self._draining:
            _logger.debug("drain_skipped", reason="already_running")
            return DrainResult(skipped=True)

        self._draining = True
        result = DrainResult()
        try:
            items = await self._queue.list_items()
            if not items:
                return result
            _logger.info("drain_started", queued=len(items))

            for position, item in enumerate(items):
                try:
                    job_id = await self._client.submit_single(item.to_request())
                except Exception as e:
                    result.error = e
                    result.remaining = len(items) - position
                    _logger.warning(
                        "drain_stopped",
                        item_id=item.id,
                        category=classify(e).value,
                        error=str(e),
                        remaining=result.remaining,
                    )
                    break

                try:
                    await self._queue.remove(item.id)
                except Exception as e:
                    # The backend holds a job for an item that is still queued;
                    # the next pass submits it again.
                    result.error = e
                    result.remaining = len(items) - position
                    _logger.error(
                        "drain_remove_failed",
                        item_id=item.id,
                        job_id=job_id,
                        error=str(e),
                        remaining=result.remaining,
                    )
                    await self._notify_submitted(item, job_id)
                    break

                result.submitted.append((item.id, job_id))
                await self._notify_submitted(item, job_id)

            _logger.info(
                "drain_finished",
                submitted=len(result.submitted),
                remaining=result.remaining,
            )
            return result
        finally:
            self._draining = False

    async def _notify_submitted(self, item: QueueItem, job_id: str) -> None:
        if self._on_submitted is None:
            return
        try:
            outcome = self._on_submitted(item, job_id)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            _logger.warning("submitted_hook_error", item_id=item.id, job_id=job_id, exc_info=True)
