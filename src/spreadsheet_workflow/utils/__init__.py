"""Utilities package for the spreadsheet workflow service.

This package provides:
- Centralized exception classes (exceptions.py)
- Structured logging utilities (logging.py)
- Model-response parsing helpers (response_parser.py)
"""

from spreadsheet_workflow.utils.exceptions import (
    CollaboratorError,
    ErrorCode,
    GridError,
    HTTPStatusMixin,
    LLMError,
    StorageError,
    SWFError,
    ValidationError,
    WorkflowError,
)
from spreadsheet_workflow.utils.logging import (
    LogContext,
    StructuredLogger,
    get_logger,
    get_request_id,
    set_request_id,
)

__all__ = [
    # Exceptions
    "CollaboratorError",
    "ErrorCode",
    "GridError",
    "HTTPStatusMixin",
    "LLMError",
    "StorageError",
    "SWFError",
    "ValidationError",
    "WorkflowError",
    # Logging
    "LogContext",
    "StructuredLogger",
    "get_logger",
    "get_request_id",
    "set_request_id",
]
