"""Centralized exception classes for the spreadsheet workflow service.

Every error carries a unique error code and the HTTP status the API should
answer with, so handlers can turn any of them into a structured response.

Exception Hierarchy:
    SWFError (base)
    ├── GridError
    │   ├── CellOutOfRangeError
    │   └── GridShapeError
    ├── WorkflowError
    │   ├── StepNotFoundError
    │   ├── InvalidStepTransitionError
    │   ├── UnsupportedStepOperationError
    │   └── WorkflowNotFoundError
    ├── StorageError
    │   └── EntityNotFoundError
    ├── CollaboratorError
    │   └── LLMError
    │       └── LLMConfigurationError
    └── ValidationError

Error Codes:
    - E1xxx: Grid errors
    - E2xxx: Workflow errors
    - E3xxx: Storage errors
    - E5xxx: Collaborator / LLM errors
    - E9xxx: Internal errors
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Enumeration of all error codes used in the application."""

    # Grid errors (E1xxx)
    CELL_OUT_OF_RANGE = "E1001"
    GRID_SHAPE_MISMATCH = "E1002"

    # Workflow errors (E2xxx)
    STEP_NOT_FOUND = "E2001"
    INVALID_STEP_TRANSITION = "E2002"
    UNSUPPORTED_STEP_OPERATION = "E2003"
    WORKFLOW_NOT_FOUND = "E2004"
    INVALID_STEP_DATA = "E2005"

    # Storage errors (E3xxx)
    ENTITY_NOT_FOUND = "E3001"
    STORAGE_READ_ERROR = "E3002"
    STORAGE_WRITE_ERROR = "E3003"

    # Collaborator errors (E5xxx)
    COLLABORATOR_FAILED = "E5001"
    LLM_API_ERROR = "E5002"
    LLM_NOT_CONFIGURED = "E5003"

    # Internal errors (E9xxx)
    INTERNAL_ERROR = "E9001"
    VALIDATION_FAILED = "E9002"


class HTTPStatusMixin:
    """Mixin that provides the HTTP status code for an exception."""

    http_status: int = 500

    def get_http_status(self) -> int:
        return self.http_status


class SWFError(Exception, HTTPStatusMixin):
    """Base exception for all spreadsheet workflow errors.

    Attributes:
        message: Human-readable error message.
        error_code: Unique error code from ErrorCode enum.
        details: Optional dictionary with additional error details.
        http_status: HTTP status code for API responses (default 500).
    """

    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert the exception to a dictionary for API responses."""
        result: dict[str, Any] = {
            "error_code": self.error_code.value,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code.value}] {self.message}"


# =============================================================================
# Grid Errors (E1xxx)
# =============================================================================


class GridError(SWFError):
    """Base class for grid errors."""

    http_status: int = 400


class CellOutOfRangeError(GridError):
    """Raised when a cell address falls outside the header range."""

    def __init__(
        self,
        row: int,
        col: int,
        column_count: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        details.update({"row": row, "col": col, "column_count": column_count})
        super().__init__(
            message=(
                f"Cell ({row}, {col}) is out of range for a grid with "
                f"{column_count} columns"
            ),
            error_code=ErrorCode.CELL_OUT_OF_RANGE,
            details=details,
        )
        self.row = row
        self.col = col


class GridShapeError(GridError):
    """Raised when a row's length differs from the header count."""

    def __init__(
        self,
        row: int,
        row_length: int,
        header_count: int,
    ) -> None:
        super().__init__(
            message=(
                f"Row {row} has {row_length} cells but the grid has "
                f"{header_count} headers"
            ),
            error_code=ErrorCode.GRID_SHAPE_MISMATCH,
            details={
                "row": row,
                "row_length": row_length,
                "header_count": header_count,
            },
        )


# =============================================================================
# Workflow Errors (E2xxx)
# =============================================================================


class WorkflowError(SWFError):
    """Base class for workflow errors."""

    http_status: int = 400

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INVALID_STEP_TRANSITION,
        step_index: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if step_index is not None:
            details["step_index"] = step_index
        super().__init__(message, error_code, details)
        self.step_index = step_index


class StepNotFoundError(WorkflowError):
    """Raised when a step index does not exist."""

    http_status: int = 404

    def __init__(self, step_index: int, step_count: int) -> None:
        super().__init__(
            message=f"Step {step_index} not found (workflow has {step_count} steps)",
            error_code=ErrorCode.STEP_NOT_FOUND,
            step_index=step_index,
            details={"step_count": step_count},
        )


class InvalidStepTransitionError(WorkflowError):
    """Raised when a step cannot be appended from the requested source."""

    http_status: int = 409

    def __init__(
        self,
        message: str,
        step_index: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_STEP_TRANSITION,
            step_index=step_index,
            details=details,
        )


class UnsupportedStepOperationError(WorkflowError):
    """Raised when a step kind does not implement an operation."""

    def __init__(self, kind: str, operation: str) -> None:
        super().__init__(
            message=f"Step kind '{kind}' does not support '{operation}'",
            error_code=ErrorCode.UNSUPPORTED_STEP_OPERATION,
            details={"kind": kind, "operation": operation},
        )
        self.kind = kind
        self.operation = operation


class WorkflowNotFoundError(WorkflowError):
    """Raised when a workflow ID is not registered."""

    http_status: int = 404

    def __init__(self, workflow_id: str) -> None:
        super().__init__(
            message=f"Workflow not found: {workflow_id}",
            error_code=ErrorCode.WORKFLOW_NOT_FOUND,
            details={"workflow_id": workflow_id},
        )
        self.workflow_id = workflow_id


# =============================================================================
# Storage Errors (E3xxx)
# =============================================================================


class StorageError(SWFError):
    """Base class for persistence errors."""

    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.STORAGE_WRITE_ERROR,
        key: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if key:
            details["key"] = key
        super().__init__(message, error_code, details)
        self.key = key


class EntityNotFoundError(StorageError):
    """Raised when a spreadsheet entity is not found."""

    http_status: int = 404

    def __init__(self, entity_id: str) -> None:
        super().__init__(
            message=f"Spreadsheet entity not found: {entity_id}",
            error_code=ErrorCode.ENTITY_NOT_FOUND,
            details={"entity_id": entity_id},
        )
        self.entity_id = entity_id


# =============================================================================
# Collaborator Errors (E5xxx)
# =============================================================================


class CollaboratorError(SWFError):
    """Raised when a Find/RunCells/Aggregate/LLM call fails."""

    http_status: int = 502

    def __init__(
        self,
        message: str,
        collaborator: str,
        error_code: ErrorCode = ErrorCode.COLLABORATOR_FAILED,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        details["collaborator"] = collaborator
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, error_code, details)
        self.collaborator = collaborator
        self.status_code = status_code


class LLMError(CollaboratorError):
    """Raised when the text-generation service fails."""

    def __init__(
        self,
        message: str,
        model: str | None = None,
        error_code: ErrorCode = ErrorCode.LLM_API_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if model:
            details["model"] = model
        super().__init__(
            message=message,
            collaborator="llm",
            error_code=error_code,
            details=details,
        )
        self.model = model


class LLMConfigurationError(LLMError):
    """Raised when the LLM client is used without an API key."""

    http_status: int = 503

    def __init__(self, message: str = "OpenAI API key not configured") -> None:
        super().__init__(
            message=message,
            error_code=ErrorCode.LLM_NOT_CONFIGURED,
            details={"missing": "openai_api_key"},
        )


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(SWFError):
    """General validation error for request data."""

    http_status: int = 400

    def __init__(
        self,
        message: str,
        field: str | None = None,
        errors: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        if errors:
            details["validation_errors"] = errors
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_FAILED,
            details=details,
        )
