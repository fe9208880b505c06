"""Pydantic models for API requests and responses.

Collaborator endpoints keep the camelCase JSON field names the spreadsheet
front end sends (``prevRow``, ``aggregationPrompt``...); Python code uses the
snake_case attribute names.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from spreadsheet_workflow.utils.exceptions import ErrorCode
from spreadsheet_workflow.workflow.steps import StepKind


class CamelModel(BaseModel):
    """Base model serialized with camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: str
    version: str


class CellModel(CamelModel):
    """Wire form of a single cell."""

    value: str = ""
    row: int = Field(default=0, ge=0)
    col: int = Field(default=0, ge=0)


# =============================================================================
# Collaborator contracts
# =============================================================================


class FindRequest(CamelModel):
    """Request body for ``/api/findall``."""

    query: str = Field(..., description="Free-text entity search query")
    sheet_level: bool = Field(
        default=True, description="Whether results name whole sheets"
    )


class FindResponse(CamelModel):
    success: bool = True
    results: list[str] = Field(default_factory=list)
    query: str
    total: int = 0


class RunCellsRequest(CamelModel):
    """Request body for ``/api/runCells``."""

    input: str = Field(..., description="Column-0 value identifying the row")
    columns: dict[str, str] = Field(
        default_factory=dict,
        description="Remaining headers mapped to the row's current values",
    )


class RunCellsResponse(CamelModel):
    success: bool = True
    results: dict[str, str] = Field(default_factory=dict)
    input: str


class AggregateData(CamelModel):
    """Sub-sheet cells plus the row of the source sheet it was built from."""

    cells: list[list[CellModel]] = Field(default_factory=list)
    prev_row: list[CellModel] = Field(default_factory=list)


class AggregateRequest(CamelModel):
    """Request body for ``/api/aggregate``."""

    data: AggregateData
    columns: list[str] = Field(
        default_factory=list, description="Headers of the aggregation sheet"
    )
    prev_table_headers: list[str] = Field(
        default_factory=list, description="Headers of the aggregated sub-sheet"
    )
    aggregation_prompt: str = Field(
        default="", description="Free-text aggregation instruction"
    )
    sheet_name: str = Field(default="", description="Fallback sheet name")
    sheet_index: int = Field(default=0, ge=0)


class AggregateResponse(CamelModel):
    success: bool = True
    sheet_name: str
    count: int = 0
    last_updated: datetime | None = None
    aggregated_insights: dict[str, str] = Field(default_factory=dict)


class LLMPipeRequest(CamelModel):
    """Request body for ``/api/llm``."""

    inputs: list[str] = Field(default_factory=list)
    prompt: str = Field(default="", description="Instruction shared by every input")


class LLMOutput(CamelModel):
    text: str
    from_cache: bool = False


class LLMPipeResponse(CamelModel):
    """One output per input; ``None`` marks an input whose completion failed."""

    success: bool = True
    outputs: list[LLMOutput | None] = Field(default_factory=list)
    prompt: str


class ChatMessage(CamelModel):
    role: Literal["user", "assistant", "system"] = "user"
    content: str


class OrchestrateRequest(CamelModel):
    """Request body for ``/api/orchestrate``."""

    messages: list[ChatMessage] = Field(default_factory=list)


class ToolCallParams(CamelModel):
    query: str | None = None
    headers: list[str] | None = None


class ToolCall(CamelModel):
    type: Literal["findall_sheets", "update_headers"]
    params: ToolCallParams = Field(default_factory=ToolCallParams)


class OrchestrateResponse(CamelModel):
    response: str
    tool_calls: list[ToolCall] = Field(default_factory=list)


# =============================================================================
# Workflow endpoints
# =============================================================================


class SubSheetModel(CamelModel):
    """A 3D sub-sheet as sent and returned by the workflow endpoints."""

    name: str = ""
    origin: list[str] = Field(default_factory=list)
    rows: list[list[str]] = Field(default_factory=list)
    entity_id: str | None = None


class StepModel(CamelModel):
    """Serializable view of one workflow step."""

    step_id: str
    kind: StepKind
    title: str | None = None
    headers: list[str] = Field(default_factory=list)
    rows: list[list[str]] | None = None
    sheets: list[SubSheetModel] | None = None
    prompt: str | None = None
    active_index: int | None = None
    visible_indices: list[int] | None = None


class CreateWorkflowRequest(CamelModel):
    create_initial_sheet: bool = Field(
        default=True, description="Start with one blank single sheet"
    )


class WorkflowResponse(CamelModel):
    workflow_id: str
    state: Literal["empty", "active"]
    created_at: datetime
    steps: list[StepModel] = Field(default_factory=list)


class AppendStepRequest(CamelModel):
    kind: StepKind = Field(..., description="Kind of the step to append")
    source_index: int | None = Field(
        default=None, description="Index of the source step (defaults to the last)"
    )


class EditStepRequest(CamelModel):
    """New data for a step.

    ``rows`` (with optional ``headers``) replace a grid-backed step's data;
    ``sheets`` replace a 3D stack's sub-sheets; ``prompt`` updates the
    aggregation or LLM instruction.
    """

    headers: list[str] | None = None
    rows: list[list[str]] | None = None
    sheets: list[SubSheetModel] | None = None
    prompt: str | None = None


class RunStepRequest(CamelModel):
    operation: Literal["run", "find", "cells", "aggregation", "llm"] = "run"


class StepOutcomeModel(CamelModel):
    index: int
    kind: StepKind
    success: bool
    error: str | None = None


class RunAllResponse(CamelModel):
    workflow_id: str
    outcomes: list[StepOutcomeModel] = Field(default_factory=list)
    workflow: WorkflowResponse


class StepChatResponse(CamelModel):
    """Assistant reply whose tool calls were applied to a 3D step."""

    response: str
    tool_calls: list[ToolCall] = Field(default_factory=list)
    messages: list[str] = Field(default_factory=list)
    workflow: WorkflowResponse


class ErrorDetail(BaseModel):
    """Error detail model for API error responses.

    This model provides structured error responses with:
    - Human-readable error message
    - Machine-readable error code
    - Optional additional details for debugging
    - Optional request ID for correlation
    """

    detail: str = Field(..., description="Human-readable error message")
    error_code: str | None = Field(
        default=None,
        description="Machine-readable error code (e.g., 'E1001')",
    )
    details: dict[str, Any] | None = Field(
        default=None,
        description="Additional error details for debugging",
    )
    request_id: str | None = Field(
        default=None,
        description="Request ID for error correlation",
    )

    @classmethod
    def from_error_code(
        cls,
        error_code: ErrorCode,
        detail: str,
        details: dict[str, Any] | None = None,
        request_id: str | None = None,
    ) -> "ErrorDetail":
        """Create an ErrorDetail from an ErrorCode enum value."""
        return cls(
            detail=detail,
            error_code=error_code.value,
            details=details,
            request_id=request_id,
        )
