"""Error classification for generation failures.

Maps heterogeneous failure values (backend ApiErrors, httpx transport
exceptions, plain status-bearing objects, or arbitrary non-errors) onto the
fixed ErrorCategory taxonomy. Classification is pure and total: it never
raises, whatever it is handed.

Rules, in priority order:

1. ApiError: 408 -> timeout; 429 -> limit; any "limit" in the message or
   the body's message -> limit; status >= 500 -> server.
2. TypeError / transport exceptions whose message mentions "network" or
   "fetch" -> network. httpx timeouts -> timeout; httpx network errors and
   ConnectionError -> network regardless of message.
3. Mappings or objects exposing ``status`` of 0 or None -> network.
4. Everything else -> unknown.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

import httpx

from quippix.core.logging import get_logger

from .codes import ErrorCategory
from .exceptions import ApiError

_logger = get_logger("errors")

_LIMIT_PATTERN = re.compile(r"limit", re.IGNORECASE)
_NETWORK_PATTERN = re.compile(r"network|fetch", re.IGNORECASE)

_MISSING = object()

_CATEGORY_MESSAGES: dict[ErrorCategory, str] = {
    ErrorCategory.NETWORK: "You appear to be offline. Check your connection and try again.",
    ErrorCategory.SERVER: "Our servers are having trouble right now. Please try again.",
    ErrorCategory.TIMEOUT: "This is taking longer than expected. Please try again.",
    ErrorCategory.LIMIT: (
        "Daily generation limit reached. Upgrade to Pro for unlimited generations."
    ),
}
_FALLBACK_MESSAGE = "Something went wrong. Please try again."


def _classify_api_error(error: ApiError) -> ErrorCategory | None:
    if error.status == 408:
        return ErrorCategory.TIMEOUT
    if error.status == 429:
        return ErrorCategory.LIMIT
    body_message = error.body_message or ""
    if _LIMIT_PATTERN.search(body_message) or _LIMIT_PATTERN.search(error.message):
        return ErrorCategory.LIMIT
    if error.status >= 500:
        return ErrorCategory.SERVER
    return None


def _classify_transport(error: BaseException) -> ErrorCategory | None:
    if isinstance(error, httpx.TimeoutException):
        return ErrorCategory.TIMEOUT
    if isinstance(error, (httpx.NetworkError, ConnectionError)):
        return ErrorCategory.NETWORK
    if isinstance(error, (TypeError, httpx.TransportError)):
        if _NETWORK_PATTERN.search(str(error)):
            return ErrorCategory.NETWORK
    return None


def _read_status(error: Any) -> Any:
    """Return the ``status`` an object or mapping exposes, or _MISSING."""
    if isinstance(error, Mapping):
        return error.get("status", _MISSING)
    if isinstance(error, (str, bytes, int, float)):
        return _MISSING
    try:
        return getattr(error, "status", _MISSING)
    except Exception:
        # Properties on foreign objects may raise; such values carry no status.
        return _MISSING


def classify(error: Any) -> ErrorCategory:
    """Classify any failure value into an ErrorCategory.

    Args:
        error: An exception, a status-bearing object or mapping, or any
            other value (None, strings, ...).

    Returns:
        The category. Unrecognized inputs map to ErrorCategory.UNKNOWN.
    """
    if isinstance(error, ApiError):
        category = _classify_api_error(error)
        if category is not None:
            return category

    if isinstance(error, BaseException):
        category = _classify_transport(error)
        if category is not None:
            return category

    status = _read_status(error)
    if status is None or (type(status) in (int, float) and status == 0):
        return ErrorCategory.NETWORK

    return ErrorCategory.UNKNOWN


def raw_message(error: Any) -> str:
    """Best human-readable text carried by a failure value.

    Prefers the backend body's ``message`` for ApiErrors, then the exception
    text. Non-exceptions are rendered with str() unless None.
    """
    if isinstance(error, ApiError) and error.body_message:
        return error.body_message
    if error is None:
        return ""
    return str(error)


def user_message(category: ErrorCategory, error: Any = None) -> str:
    """User-facing text for a classified failure.

    Classified categories get a templated sentence. ``unknown`` surfaces the
    raw error text instead, falling back to a generic sentence when empty.
    """
    if category is ErrorCategory.UNKNOWN:
        return raw_message(error) or _FALLBACK_MESSAGE
    return _CATEGORY_MESSAGES[category]


def log_classified(error: Any, category: ErrorCategory, **context: Any) -> None:
    """Emit a structured log entry for a classified failure."""
    _logger.warning(
        "error_classified",
        category=category.value,
        error_type=type(error).__name__,
        error_message=raw_message(error)[:200],
        **context,
    )
