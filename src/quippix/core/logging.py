"""Structured logging infrastructure for QuipPix generation jobs.

Provides structured logging using structlog with generation-specific context
such as request_id, job_id, and component names. Supports console output,
JSON output, or both (console to stderr, JSON to a rotating file).

Example usage:
    from quippix.core.logging import get_logger, configure_logging, with_context

    # Configure once at startup
    configure_logging(level="DEBUG", format="console")

    # Get a component-specific logger
    logger = get_logger("client")

    # Log with auto-context
    logger.info("job_submitted", job_id="abc")

    # Use generation context for automatic correlation
    ctx = GenerationContext(request_id="req-1")
    with with_context(ctx.with_job("job-42")):
        logger.info("poll_progress", progress=40)  # includes request_id, job_id
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Field name fragments that are never logged in clear text
SENSITIVE_PATTERNS = frozenset({
    "api_key",
    "apikey",
    "token",
    "secret",
    "password",
    "credential",
    "auth",
    "bearer",
    "authorization",
})


@dataclass(frozen=True)
class GenerationContext:
    """Immutable correlation context for a single generation flow.

    Attributes:
        request_id: Identifier for one user-initiated generation (spans retries).
        job_id: Remote job or batch id once the backend has acknowledged it.
        component: Component name for the current operation.
        attempt: Retry attempt number (0 for the first submission).
    """

    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    job_id: str | None = None
    component: str = "unknown"
    attempt: int = 0

    def with_job(self, job_id: str) -> GenerationContext:
        """Return a copy bound to a remote job id."""
        return replace(self, job_id=job_id)

    def with_attempt(self, attempt: int) -> GenerationContext:
        """Return a copy for the given retry attempt."""
        return replace(self, attempt=attempt)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dict for log event enrichment, omitting unset fields."""
        result: dict[str, Any] = {"request_id": self.request_id, "attempt": self.attempt}
        if self.job_id is not None:
            result["job_id"] = self.job_id
        if self.component != "unknown":
            result["component"] = self.component
        return result


_current_context: ContextVar[GenerationContext | None] = ContextVar(
    "quippix_context", default=None
)


def get_current_context() -> GenerationContext | None:
    """Get the current GenerationContext if set."""
    return _current_context.get()


@contextmanager
def with_context(ctx: GenerationContext) -> Iterator[GenerationContext]:
    """Set the GenerationContext for the duration of a block.

    All log calls within the block include the context fields when the
    context processor is active. Safe across awaits: each task sees its own
    copy of the context variable.
    """
    token = _current_context.set(ctx)
    try:
        yield ctx
    finally:
        _current_context.reset(token)


def _sanitize_value(key: str, value: Any) -> Any:
    key_lower = key.lower()
    for pattern in SENSITIVE_PATTERNS:
        if pattern in key_lower:
            return "[REDACTED]"
    return value


def _sanitize_event_dict(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that redacts sensitive fields, one level deep."""
    sanitized: EventDict = {}
    for key, value in event_dict.items():
        if isinstance(value, dict):
            sanitized[key] = {k: _sanitize_value(k, v) for k, v in value.items()}
        else:
            sanitized[key] = _sanitize_value(key, value)
    return sanitized


def _add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def _add_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that merges the active GenerationContext.

    Explicitly bound fields take precedence over context fields.
    """
    ctx = get_current_context()
    if ctx is not None:
        for key, value in ctx.to_dict().items():
            if key not in event_dict:
                event_dict[key] = value
    return event_dict


class QuippixLogger:
    """Component logger wrapper around structlog.

    Fetches a fresh structlog logger on every call so loggers created at
    import time still respect a later configure_logging().
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._component = component
        self._context: dict[str, Any] = {"component": component, **initial_context}

    def _get_logger(self) -> structlog.stdlib.BoundLogger:
        logger: structlog.stdlib.BoundLogger = structlog.get_logger().bind(**self._context)
        return logger

    def bind(self, **context: Any) -> QuippixLogger:
        """Create a new logger with additional bound context."""
        new_logger = QuippixLogger.__new__(QuippixLogger)
        new_logger._component = self._component
        new_logger._context = {**self._context, **context}
        return new_logger

    def debug(self, event: str, **kw: Any) -> None:
        self._get_logger().debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._get_logger().info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._get_logger().warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._get_logger().error(event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        """Log an exception with traceback. Call from within an except block."""
        self._get_logger().exception(event, **kw)


def _build_processors(renderer: Processor, include_timestamps: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        _sanitize_event_dict,
        _add_context,
    ]
    if include_timestamps:
        processors.append(_add_timestamp)
    processors.extend([
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ])
    return processors


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO",
    format: Literal["json", "console", "both"] = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 10,
    backup_count: int = 3,
    include_timestamps: bool = True,
) -> None:
    """Configure structured logging.

    Call once at application startup, before any logging occurs.

    Args:
        level: Minimum log level to capture.
        format: "console" for human-readable stderr output, "json" for
            structured output (to file_path if given, else stdout), "both"
            for console to stderr and JSON to file_path.
        file_path: Log file path. Required when format="both".
        max_file_size_mb: Maximum log file size before rotation.
        backup_count: Number of rotated log files to keep.
        include_timestamps: Whether to add ISO-8601 UTC timestamps.

    Raises:
        ValueError: If format="both" but file_path is not provided.
    """
    if format == "both" and file_path is None:
        raise ValueError("file_path is required when format='both'")

    log_level = getattr(logging, level)
    handlers: list[logging.Handler] = []

    if format in ("console", "both"):
        handlers.append(logging.StreamHandler(sys.stderr))

    if format in ("json", "both"):
        if file_path is not None:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(
                RotatingFileHandler(
                    file_path,
                    maxBytes=max_file_size_mb * 1024 * 1024,
                    backupCount=backup_count,
                    encoding="utf-8",
                )
            )
        else:
            handlers.append(logging.StreamHandler(sys.stdout))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        handler.setLevel(log_level)
        root_logger.addHandler(handler)

    renderer: Processor
    if format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    # cache_logger_on_first_use=False keeps import-time loggers in sync with
    # configuration applied later
    structlog.configure(
        processors=_build_processors(renderer, include_timestamps),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> QuippixLogger:
    """Get a logger for a component (e.g. "client", "dispatcher", "state.queue")."""
    return QuippixLogger(component, **initial_context)


__all__ = [
    "GenerationContext",
    "QuippixLogger",
    "SENSITIVE_PATTERNS",
    "configure_logging",
    "get_current_context",
    "get_logger",
    "with_context",
]
