"""Cooperative cancellation for polling loops."""

from __future__ import annotations

from quippix.core.errors import GenerationCancelledError


class CancellationToken:
    """Flag a caller sets to stop a polling loop at its next checkpoint.

    Polling loops check the token after every await (each status fetch and
    each inter-poll wait). Cancellation never aborts a request already in
    flight; it only discards its result.

    Usage::

        token = CancellationToken()
        task = asyncio.create_task(client.poll_until_terminal(job_id, cb, token=token))
        ...
        token.cancel()  # e.g. the screen was dismissed
    """

    def __init__(self) -> None:
        self._cancelled = False
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation. Idempotent; the first reason wins."""
        if not self._cancelled:
            self._cancelled = True
            self.reason = reason

    def raise_if_cancelled(self) -> None:
        """Raise GenerationCancelledError if cancellation was requested."""
        if self._cancelled:
            raise GenerationCancelledError(self.reason or "Generation cancelled")
