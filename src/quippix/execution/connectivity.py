"""Connectivity signals consumed by the offline dispatcher.

A signal delivers ``ConnectivityState`` values to its subscribers. Two
implementations are provided:

- ManualConnectivity: the host pushes state changes (platform network
  listeners, or tests).
- HealthProbeConnectivity: a background task probes the backend's
  ``/health`` endpoint and publishes transitions only.

Callbacks are invoked synchronously in subscription order. A callback that
raises is logged and does not stop delivery to the others.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from quippix.core.logging import get_logger

if TYPE_CHECKING:
    from quippix.client.jobs import JobClient

_logger = get_logger("connectivity")

ConnectivityCallback = Callable[["ConnectivityState"], None]
Unsubscribe = Callable[[], None]


@dataclass(frozen=True)
class ConnectivityState:
    """One connectivity reading. ``None`` means unknown and counts as offline."""

    is_connected: bool | None

    @property
    def online(self) -> bool:
        return self.is_connected is True


class ConnectivitySignal(ABC):
    """Source of connectivity states with callback subscriptions."""

    def __init__(self) -> None:
        self._subscribers: dict[int, ConnectivityCallback] = {}
        self._next_id = 0

    def subscribe(self, callback: ConnectivityCallback) -> Unsubscribe:
        """Register a callback and return a function that removes it."""
        sub_id = self._next_id
        self._next_id += 1
        self._subscribers[sub_id] = callback
        _logger.debug("connectivity_subscribed", sub_id=sub_id)

        def unsubscribe() -> None:
            if self._subscribers.pop(sub_id, None) is not None:
                _logger.debug("connectivity_unsubscribed", sub_id=sub_id)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _emit(self, state: ConnectivityState) -> None:
        for sub_id, callback in list(self._subscribers.items()):
            try:
                callback(state)
            except Exception:
                _logger.warning(
                    "connectivity_callback_error",
                    sub_id=sub_id,
                    is_connected=state.is_connected,
                    exc_info=True,
                )

    @property
    @abstractmethod
    def current(self) -> ConnectivityState:
        """Most recent known state."""


class ManualConnectivity(ConnectivitySignal):
    """Signal driven by explicit ``publish()`` calls.

    Every publish is delivered, repeated states included; deciding what
    counts as a transition is up to the subscriber.
    """

    def __init__(self, is_connected: bool | None = None) -> None:
        super().__init__()
        self._state = ConnectivityState(is_connected)

    @property
    def current(self) -> ConnectivityState:
        return self._state

    def publish(self, is_connected: bool | None) -> None:
        self._state = ConnectivityState(is_connected)
        _logger.debug("connectivity_published", is_connected=is_connected)
        self._emit(self._state)


class HealthProbeConnectivity(ConnectivitySignal):
    """Derive connectivity from periodic backend health checks.

    Publishes only when the probed state differs from the previous one; the
    very first probe always publishes.

    Args:
        client: Job client whose ``health_check()`` is used as the probe.
        interval_seconds: Delay between probes.
        timeout_seconds: Per-probe request timeout.
    """

    def __init__(
        self,
        client: JobClient,
        interval_seconds: float = 5.0,
        timeout_seconds: float = 3.0,
    ) -> None:
        super().__init__()
        self._client = client
        self._interval = interval_seconds
        self._timeout = timeout_seconds
        self._state = ConnectivityState(None)
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._probed = False

    @property
    def current(self) -> ConnectivityState:
        return self._state

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the probe loop. Calling start twice is a no-op."""
        if self._task is not None:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="connectivity-probe")
        self._task.add_done_callback(self._on_loop_done)
        _logger.info("connectivity_probe_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        """Stop the probe loop."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        _logger.info("connectivity_probe_stopped")

    async def probe_once(self) -> ConnectivityState:
        """Run one health check and publish if the state changed."""
        healthy = await self._client.health_check(timeout=self._timeout)
        state = ConnectivityState(healthy)
        if not self._probed or state != self._state:
            self._probed = True
            previous = self._state.is_connected
            self._state = state
            _logger.info("connectivity_changed", previous=previous, is_connected=healthy)
            self._emit(state)
        return state

    async def _loop(self) -> None:
        while self._running:
            await self.probe_once()
            await asyncio.sleep(self._interval)

    def _on_loop_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.error("connectivity_probe_died", error=str(exc), task_name=task.get_name())
            self._running = False
            self._task = None
