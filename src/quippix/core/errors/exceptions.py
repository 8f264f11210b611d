"""Exception hierarchy for the generation job layer.

All exceptions inherit from QuippixError so callers can catch broad
(QuippixError) or narrow (e.g. GenerationTimeoutError). Raw transport
exceptions from httpx propagate unchanged; the classifier maps both kinds
onto an ErrorCategory.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from quippix.execution.retry import RetryDecision


class QuippixError(Exception):
    """Base exception for all generation-layer errors."""


class ApiError(QuippixError):
    """Raised when the backend answers with a non-success status.

    Attributes:
        status: HTTP status code (408 is also used for the polling deadline).
        body: Parsed JSON response body, when one was available.
    """

    def __init__(self, status: int, message: str, body: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body

    @property
    def message(self) -> str:
        return str(self)

    @property
    def body_message(self) -> str | None:
        """The backend's ``message`` field, if the body carried one."""
        if isinstance(self.body, dict):
            value = self.body.get("message")
            if isinstance(value, str) and value:
                return value
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status={self.status}, message={self.message!r})"


class GenerationTimeoutError(ApiError):
    """Raised when polling reaches its deadline before a terminal state.

    The remote job may still complete server-side; it is simply no longer
    observed by this client.
    """

    def __init__(self, message: str = "Generation timed out") -> None:
        super().__init__(408, message)


class MalformedResponseError(QuippixError):
    """Raised when a successful response body is not the expected JSON shape."""


class GenerationCancelledError(QuippixError):
    """Raised out of a polling loop once its cancellation token is observed.

    Signals that the loop stopped without reporting progress or a result.
    Callers that cancelled the flow are expected to discard it silently.
    """


class StorageError(QuippixError):
    """Raised when a durable key-value store cannot be read or written."""


class JobFailedError(QuippixError):
    """Raised when a job reaches a terminal state without a usable result.

    Attributes:
        job_status: The terminal status reported by the backend.
    """

    def __init__(self, job_status: Any, message: str | None = None) -> None:
        super().__init__(message or job_status.error or "Generation failed. Please try again.")
        self.job_status = job_status


class GenerationFailedError(QuippixError):
    """Raised when an automatic retry loop gives up.

    Attributes:
        decision: The final retry decision (category, attempts, routing).
        cause: The last classified failure.
    """

    def __init__(self, decision: RetryDecision, cause: BaseException) -> None:
        super().__init__(decision.message)
        self.decision = decision
        self.cause = cause
