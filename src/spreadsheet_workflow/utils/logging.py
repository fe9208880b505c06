"""Structured logging utilities for the spreadsheet workflow service.

This module provides:
- Request ID and workflow ID tracking using contextvars
- Structured logging with consistent ``key=value`` metadata
- Performance metrics logging helpers
- Progress tracking for multi-step workflow runs

Usage:
    from spreadsheet_workflow.utils.logging import get_logger, LogContext

    logger = get_logger(__name__)

    with LogContext(workflow_id="wf-456", step=2):
        logger.info("Running step")
"""

import logging
import time
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
_workflow_id_var: ContextVar[str | None] = ContextVar("workflow_id", default=None)
_extra_context_var: ContextVar[dict[str, Any] | None] = ContextVar(
    "extra_context", default=None
)


def get_request_id() -> str | None:
    """Get the current request ID from context."""
    return _request_id_var.get()


def set_request_id(request_id: str | None) -> None:
    """Set the request ID in context, or None to clear it."""
    _request_id_var.set(request_id)


def get_workflow_id() -> str | None:
    """Get the current workflow ID from context."""
    return _workflow_id_var.get()


def set_workflow_id(workflow_id: str | None) -> None:
    """Set the workflow ID in context, or None to clear it."""
    _workflow_id_var.set(workflow_id)


def get_extra_context() -> dict[str, Any]:
    """Get additional context values."""
    ctx = _extra_context_var.get()
    return ctx if ctx is not None else {}


def set_extra_context(context: dict[str, Any]) -> None:
    """Replace the additional context values."""
    _extra_context_var.set(context)


def clear_context() -> None:
    """Clear all context variables."""
    _request_id_var.set(None)
    _workflow_id_var.set(None)
    _extra_context_var.set(None)


@dataclass
class PerformanceMetrics:
    """Container for performance metrics of one operation.

    Attributes:
        operation: Name of the operation being measured.
        start_time: When the operation started.
        end_time: When the operation ended.
        duration_seconds: Duration in seconds.
        rows_processed: Number of grid rows touched.
        sheets_processed: Number of sheets or sub-sheets touched.
        api_calls: Number of collaborator calls made.
        failures: Number of collaborator calls that failed.
        custom_metrics: Additional custom metrics.
    """

    operation: str
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    duration_seconds: float = 0.0
    rows_processed: int = 0
    sheets_processed: int = 0
    api_calls: int = 0
    failures: int = 0
    custom_metrics: dict[str, Any] = field(default_factory=dict)

    def finish(self) -> None:
        """Mark the operation as complete and calculate duration."""
        self.end_time = datetime.now(UTC)
        self.duration_seconds = (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging, omitting zero counters."""
        result: dict[str, Any] = {
            "operation": self.operation,
            "duration_seconds": self.duration_seconds,
        }
        if self.rows_processed > 0:
            result["rows_processed"] = self.rows_processed
        if self.sheets_processed > 0:
            result["sheets_processed"] = self.sheets_processed
        if self.api_calls > 0:
            result["api_calls"] = self.api_calls
        if self.failures > 0:
            result["failures"] = self.failures
        if self.custom_metrics:
            result["custom_metrics"] = self.custom_metrics
        return result


class StructuredLogFormatter(logging.Formatter):
    """Log formatter that prefixes records with the active context.

    Adds request_id, workflow_id and any extra context values when set.
    """

    def format(self, record: logging.LogRecord) -> str:
        request_id = get_request_id()
        workflow_id = get_workflow_id()

        prefix_parts = []
        if request_id:
            prefix_parts.append(f"request_id={request_id}")
        if workflow_id:
            prefix_parts.append(f"workflow_id={workflow_id}")

        extra = get_extra_context()
        for key, value in extra.items():
            prefix_parts.append(f"{key}={value}")

        prefix = f"[{' '.join(prefix_parts)}] " if prefix_parts else ""

        original_msg = record.msg
        record.msg = f"{prefix}{original_msg}"
        result = super().format(record)
        record.msg = original_msg

        return result


class StructuredLogger:
    """Logger wrapper that appends structured key-value pairs to messages."""

    def __init__(self, name: str) -> None:
        self._logger = logging.getLogger(name)
        self._name = name

    @property
    def logger(self) -> logging.Logger:
        """Access the underlying Python logger."""
        return self._logger

    def _build_message(
        self,
        message: str,
        **kwargs: Any,
    ) -> str:
        if not kwargs:
            return message

        parts = [f"{k}={v}" for k, v in kwargs.items()]
        return f"{message} | {', '.join(parts)}"

    def debug(self, message: str, **kwargs: Any) -> None:
        self._logger.debug(self._build_message(message, **kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self._logger.info(self._build_message(message, **kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self._logger.warning(self._build_message(message, **kwargs))

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        self._logger.error(self._build_message(message, **kwargs), exc_info=exc_info)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log an error with the current exception's traceback."""
        self._logger.exception(self._build_message(message, **kwargs))

    def log_performance(self, metrics: PerformanceMetrics) -> None:
        self.info(
            f"Performance: {metrics.operation}",
            **metrics.to_dict(),
        )

    def log_progress(
        self,
        stage: str,
        current: int,
        total: int,
        details: str | None = None,
    ) -> None:
        """Log progress for multi-step operations.

        Args:
            stage: Current processing stage.
            current: Current progress count.
            total: Total items to process.
            details: Optional additional details.
        """
        percentage = (current / total * 100) if total > 0 else 0
        kwargs: dict[str, Any] = {
            "current": current,
            "total": total,
            "percentage": f"{percentage:.1f}%",
        }
        if details:
            kwargs["details"] = details
        self.info(f"Progress: {stage}", **kwargs)

    def log_collaborator_call(
        self,
        collaborator: str,
        duration_seconds: float,
        success: bool = True,
        from_cache: bool | None = None,
        error_message: str | None = None,
    ) -> None:
        """Log one call to a Find/RunCells/Aggregate/LLM collaborator.

        Args:
            collaborator: Collaborator name (e.g. "find", "llm").
            duration_seconds: Time taken for the call.
            success: Whether the call succeeded.
            from_cache: Whether the result came from the disk cache.
            error_message: Error message if the call failed.
        """
        kwargs: dict[str, Any] = {
            "collaborator": collaborator,
            "duration_seconds": f"{duration_seconds:.3f}",
            "success": success,
        }
        if from_cache is not None:
            kwargs["from_cache"] = from_cache
        if error_message:
            kwargs["error"] = error_message

        level = logging.INFO if success else logging.ERROR
        self._logger.log(level, self._build_message("Collaborator call", **kwargs))


class LogContext:
    """Context manager for adding temporary context to logs.

    Usage:
        with LogContext(workflow_id="123", step=1):
            logger.info("Running...")  # includes workflow_id and step
    """

    def __init__(self, **kwargs: Any) -> None:
        self._new_context = kwargs
        self._old_context: dict[str, Any] = {}
        self._old_workflow_id: str | None = None
        self._old_request_id: str | None = None

    def __enter__(self) -> "LogContext":
        self._old_context = get_extra_context().copy()
        self._old_workflow_id = get_workflow_id()
        self._old_request_id = get_request_id()

        new_context = dict(self._new_context)
        workflow_id = new_context.pop("workflow_id", None)
        request_id = new_context.pop("request_id", None)

        if workflow_id is not None:
            set_workflow_id(workflow_id)
        if request_id is not None:
            set_request_id(request_id)

        merged = self._old_context.copy()
        merged.update(new_context)
        set_extra_context(merged)

        return self

    def __exit__(self, *args: Any) -> None:
        set_extra_context(self._old_context)
        set_workflow_id(self._old_workflow_id)
        set_request_id(self._old_request_id)


@contextmanager
def timed_operation(
    logger: StructuredLogger,
    operation: str,
) -> Generator[PerformanceMetrics, None, None]:
    """Time an operation and log its metrics on exit.

    Usage:
        with timed_operation(logger, "run_cells") as metrics:
            metrics.rows_processed = 10
    """
    metrics = PerformanceMetrics(operation=operation)
    try:
        yield metrics
    finally:
        metrics.finish()
        logger.log_performance(metrics)


def configure_logging(
    level: int | str = logging.INFO,
    format_string: str | None = None,
    use_structured_formatter: bool = True,
) -> None:
    """Configure the root logger with a single console handler.

    Args:
        level: Log level (int or string like "INFO").
        format_string: Custom format string (uses default if None).
        use_structured_formatter: Whether to use the structured formatter.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setLevel(level)

    formatter: logging.Formatter
    if use_structured_formatter:
        formatter = StructuredLogFormatter(format_string)
    else:
        formatter = logging.Formatter(format_string)

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for a module.

    Example:
        logger = get_logger(__name__)
        logger.info("Sheet updated", rows=3, columns=2)
    """
    return StructuredLogger(name)


class ProgressTracker:
    """Helper for tracking and logging progress of multi-step operations.

    Usage:
        tracker = ProgressTracker(logger, "Running workflow", total=3)
        for step in steps:
            await step.run()
            tracker.update(details=step.kind.value)
        tracker.complete()
    """

    def __init__(
        self,
        logger: StructuredLogger,
        stage: str,
        total: int,
        log_interval: int = 1,
    ) -> None:
        self._logger = logger
        self._stage = stage
        self._total = total
        self._current = 0
        self._log_interval = log_interval
        self._start_time = time.time()

    @property
    def current(self) -> int:
        return self._current

    def update(
        self,
        increment: int = 1,
        details: str | None = None,
    ) -> None:
        self._current += increment
        if self._current % self._log_interval == 0 or self._current == self._total:
            self._logger.log_progress(
                self._stage,
                self._current,
                self._total,
                details,
            )

    def complete(self) -> float:
        """Mark progress as complete and return the elapsed seconds."""
        duration = time.time() - self._start_time
        self._logger.info(
            f"Completed: {self._stage}",
            total_items=self._total,
            duration_seconds=f"{duration:.2f}",
        )
        return duration
