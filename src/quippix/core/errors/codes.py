"""Error categories surfaced past the generation job layer.

The category is the only vocabulary the retry controller and calling screen
code reason about; nothing downstream inspects raw error shapes.

| Category | Retriable | User-visible behavior                           |
|----------|-----------|-------------------------------------------------|
| network  | Yes       | Templated "check your connection" message       |
| server   | Yes       | Templated "our servers are busy" message        |
| timeout  | Yes       | Templated "took too long" message               |
| limit    | No        | Route to upgrade / backoff path                 |
| unknown  | Yes       | Raw error message, since the cause is unknown   |
"""

from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    """High-level failure category driving retry and messaging decisions."""

    NETWORK = "network"
    """Connectivity loss or a transport failure before a response arrived."""

    SERVER = "server"
    """Backend answered with a 5xx status."""

    TIMEOUT = "timeout"
    """Request or polling deadline elapsed (including HTTP 408)."""

    LIMIT = "limit"
    """Rate or daily generation limit reached. Never retried automatically."""

    UNKNOWN = "unknown"
    """Anything unclassified: client errors (4xx), malformed data, non-errors."""

    @property
    def retriable(self) -> bool:
        return self is not ErrorCategory.LIMIT
