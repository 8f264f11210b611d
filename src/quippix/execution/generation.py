"""Screen-facing generation service.

GenerationService wires one set of collaborators (job client, offline
queue, recovery slot, connectivity signal, retry controller) and exposes
the operations the UI layer calls. Nothing here is module-level state; a
process may build as many independent services as it likes.

Flows:

- Online: ``generate()`` submits, mirrors the job into the recovery slot,
  polls to a terminal state and clears the slot.
- Offline: ``queue_generation()`` / ``submit_or_queue()`` append to the
  persistent queue. Queued requests are not mirrored into the recovery slot
  until the dispatcher actually submits them; at that point the returned
  job id is recorded as the in-flight generation.
- Retries: ``generate_with_retries()`` resubmits from scratch on
  retriable categories, sleeping the controller's backoff in between.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from quippix.client.cancellation import CancellationToken
from quippix.client.jobs import JobClient, ProgressCallback
from quippix.core.config import ClientConfig, PollingConfig
from quippix.core.errors import (
    ErrorCategory,
    GenerationCancelledError,
    GenerationFailedError,
    JobFailedError,
    classify,
)
from quippix.core.logging import (
    GenerationContext,
    get_current_context,
    get_logger,
    with_context,
)
from quippix.core.models import (
    BatchGenerationRequest,
    BatchStatus,
    GenerationParams,
    GenerationRequest,
    JobState,
    JobStatus,
    PendingGeneration,
    QueueItem,
)
from quippix.execution.connectivity import (
    ConnectivitySignal,
    HealthProbeConnectivity,
    Unsubscribe,
)
from quippix.execution.dispatcher import OfflineDispatcher
from quippix.execution.retry import RetryController, RetryDecision
from quippix.state import PersistentQueueStore, RecoverySlot, create_store
from quippix.state.base import KeyValueStore

_logger = get_logger("generation")

RetryCallback = Callable[[RetryDecision], None]


def _ignore_progress(_status: Any) -> None:
    return None


@dataclass(frozen=True)
class SubmissionOutcome:
    """Result of submit_or_queue().

    ``id`` is a backend job id when ``queued`` is False, otherwise the
    offline queue item id.
    """

    queued: bool
    id: str


class GenerationService:
    """Facade over the job client, offline queue and recovery slot.

    Args:
        client: Backend job client.
        queue: Persistent offline queue.
        recovery: Recovery slot for the in-flight job.
        connectivity: Connectivity signal driving the offline dispatcher.
        retry: Retry controller for this flow (one per service).
        polling: Polling cadence and deadlines.
        sleep: Coroutine used for retry backoff waits.
    """

    def __init__(
        self,
        client: JobClient,
        queue: PersistentQueueStore,
        recovery: RecoverySlot,
        connectivity: ConnectivitySignal,
        retry: RetryController | None = None,
        polling: PollingConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.queue = queue
        self.recovery = recovery
        self.connectivity = connectivity
        self.retry = retry or RetryController()
        self.polling = polling or PollingConfig()
        self._sleep = sleep
        self.dispatcher = OfflineDispatcher(
            queue, client, connectivity, on_submitted=self._record_drained_submission
        )

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        store: KeyValueStore | None = None,
        connectivity: ConnectivitySignal | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> GenerationService:
        """Build a service and its collaborators from configuration.

        Without an explicit connectivity signal the backend health probe is
        used; callers must ``await service.start()`` to begin probing.
        """
        if store is None:
            path = None if config.storage.backend == "memory" else config.storage.resolved_path()
            store = create_store(config.storage.backend, path)
        client = JobClient.from_config(config, transport=transport)
        if connectivity is None:
            connectivity = HealthProbeConnectivity(
                client,
                interval_seconds=config.connectivity.probe_interval_seconds,
                timeout_seconds=config.connectivity.probe_timeout_seconds,
            )
        return cls(
            client=client,
            queue=PersistentQueueStore(store),
            recovery=RecoverySlot(store),
            connectivity=connectivity,
            retry=RetryController(config.retry),
            polling=config.polling,
        )

    async def start(self) -> Unsubscribe:
        """Start observing connectivity (and probing, when health-based)."""
        unsubscribe = self.init_offline_queue()
        if isinstance(self.connectivity, HealthProbeConnectivity):
            await self.connectivity.start()
        return unsubscribe

    async def close(self) -> None:
        self.dispatcher.stop()
        if isinstance(self.connectivity, HealthProbeConnectivity):
            await self.connectivity.stop()
        await self.client.close()

    async def __aenter__(self) -> GenerationService:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Offline queue
    # ------------------------------------------------------------------

    async def queue_generation(self, image_ref: str, params: GenerationParams) -> str:
        """Queue a request for submission once connectivity returns."""
        return await self.queue.enqueue(image_ref, params)

    async def get_queue_count(self) -> int:
        return await self.queue.count()

    def init_offline_queue(self) -> Unsubscribe:
        """Start draining the queue on connectivity restoration.

        Returns:
            A function that stops observing connectivity.
        """
        return self.dispatcher.start()

    async def submit_or_queue(
        self,
        request: GenerationRequest,
        is_connected: bool | None = None,
    ) -> SubmissionOutcome:
        """Submit immediately when online, otherwise queue.

        Args:
            request: The generation request.
            is_connected: Connectivity override; defaults to the signal's
                current state (unknown counts as offline).
        """
        online = self.connectivity.current.online if is_connected is None else is_connected
        if not online:
            item_id = await self.queue_generation(request.image_ref, request.params)
            return SubmissionOutcome(queued=True, id=item_id)

        job_id = await self.client.submit_single(request)
        await self.recovery.save(
            PendingGeneration(job_id=job_id, image_ref=request.image_ref, params=request.params)
        )
        return SubmissionOutcome(queued=False, id=job_id)

    async def _record_drained_submission(self, item: QueueItem, job_id: str) -> None:
        await self.recovery.save(
            PendingGeneration(job_id=job_id, image_ref=item.image_ref, params=item.params)
        )

    # ------------------------------------------------------------------
    # Recovery slot
    # ------------------------------------------------------------------

    async def save_pending_generation(self, record: PendingGeneration) -> None:
        await self.recovery.save(record)

    async def get_pending_generation(self) -> PendingGeneration | None:
        return await self.recovery.read()

    async def clear_pending_generation(self) -> None:
        await self.recovery.clear()

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    @staticmethod
    def classify(error: Any) -> ErrorCategory:
        return classify(error)

    # ------------------------------------------------------------------
    # Online generation
    # ------------------------------------------------------------------

    async def generate(
        self,
        request: GenerationRequest,
        on_progress: ProgressCallback[JobStatus] | None = None,
        token: CancellationToken | None = None,
        challenge_id: str | None = None,
    ) -> JobStatus:
        """Submit one request and poll it to a terminal state.

        The job is mirrored into the recovery slot while in flight. The slot
        is cleared on any terminal status and on cancellation; timeouts and
        transport failures leave it in place.

        Returns:
            The terminal JobStatus (``done`` or ``failed``).
        """
        job_id = await self.client.submit_single(request)
        base = get_current_context() or GenerationContext(component="generation")
        ctx = base.with_job(job_id).with_attempt(self.retry.attempts)
        with with_context(ctx):
            await self.recovery.save(
                PendingGeneration(
                    job_id=job_id,
                    image_ref=request.image_ref,
                    params=request.params,
                    challenge_id=challenge_id,
                )
            )
            try:
                status = await self.client.poll_until_terminal(
                    job_id,
                    on_progress or _ignore_progress,
                    interval=self.polling.interval_seconds,
                    timeout=self.polling.timeout_seconds,
                    token=token,
                )
            except GenerationCancelledError:
                _logger.info("generation_cancelled", job_id=job_id)
                await self.recovery.clear()
                raise

            await self.recovery.clear()
            _logger.info("generation_finished", job_id=job_id, state=status.state.value)
            return status

    async def generate_batch(
        self,
        request: BatchGenerationRequest,
        on_progress: ProgressCallback[BatchStatus] | None = None,
        token: CancellationToken | None = None,
    ) -> BatchStatus:
        """Submit a batch and poll it to ``done`` or ``partial_failure``.

        Batches are not mirrored into the single-job recovery slot.
        """
        submitted = await self.client.submit_batch(request)
        status = await self.client.poll_batch_until_terminal(
            submitted.batch_id,
            on_progress or _ignore_progress,
            interval=self.polling.batch_interval_seconds,
            timeout=self.polling.batch_timeout_seconds,
            token=token,
        )
        _logger.info(
            "batch_finished",
            batch_id=submitted.batch_id,
            state=status.state.value,
            completed=status.completed_jobs,
            failed=status.failed_jobs,
        )
        return status

    async def generate_with_retries(
        self,
        request: GenerationRequest,
        on_progress: ProgressCallback[JobStatus] | None = None,
        token: CancellationToken | None = None,
        challenge_id: str | None = None,
        on_retry: RetryCallback | None = None,
    ) -> JobStatus:
        """Run generate() until it succeeds or the retry policy gives up.

        A ``failed`` job, or a ``done`` job without a result URL, counts as a
        failure. Each retry is a fresh submission.

        Raises:
            GenerationFailedError: On a ``limit`` failure or once retries are
                exhausted. Carries the final RetryDecision.
            GenerationCancelledError: The token was observed; the flow is
                abandoned and the retry counter reset.
        """
        with with_context(GenerationContext(component="generation")):
            while True:
                try:
                    status = await self.generate(request, on_progress, token, challenge_id)
                    if status.state is not JobState.DONE or not status.result_url:
                        raise JobFailedError(status)
                    self.retry.reset()
                    return status
                except GenerationCancelledError:
                    self.retry.reset()
                    raise
                except Exception as e:
                    decision = self.retry.evaluate(e)
                    if not decision.should_retry:
                        _logger.warning(
                            "generation_abandoned",
                            category=decision.category.value,
                            attempt=decision.attempt,
                            route_to_upgrade=decision.route_to_upgrade,
                        )
                        self.retry.reset()
                        raise GenerationFailedError(decision, e) from e

                self.retry.record_retry()
                if on_retry is not None:
                    on_retry(decision)
                if decision.delay_seconds:
                    await self._sleep(decision.delay_seconds)
                if token is not None and token.cancelled:
                    self.retry.reset()
                    token.raise_if_cancelled()
