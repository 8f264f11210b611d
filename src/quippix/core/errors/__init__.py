"""Error classification and handling.

Re-exports the public error taxonomy, exception hierarchy and classifier.
"""

from quippix.core.errors.classifier import classify, log_classified, raw_message, user_message
from quippix.core.errors.codes import ErrorCategory
from quippix.core.errors.exceptions import (
    ApiError,
    GenerationCancelledError,
    GenerationFailedError,
    GenerationTimeoutError,
    JobFailedError,
    MalformedResponseError,
    QuippixError,
    StorageError,
)

__all__ = [
    "ApiError",
    "ErrorCategory",
    "GenerationCancelledError",
    "GenerationFailedError",
    "GenerationTimeoutError",
    "JobFailedError",
    "MalformedResponseError",
    "QuippixError",
    "StorageError",
    "classify",
    "log_classified",
    "raw_message",
    "user_message",
]
