"""FastAPI application for the spreadsheet workflow service.

Two groups of endpoints:

- ``/api/*``: the Find, RunCells, Aggregate, LLM and orchestrate
  collaborators, with the camelCase JSON shapes the spreadsheet front end
  uses.
- ``/workflows/*``: create a workflow, append and edit steps, and run them. A
  3D step also takes chat messages whose tool calls add sheets or rename
  headers.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from spreadsheet_workflow.config import settings, validate_settings_on_startup
from spreadsheet_workflow.models import (
    AggregateRequest,
    AggregateResponse,
    AppendStepRequest,
    CreateWorkflowRequest,
    EditStepRequest,
    ErrorDetail,
    FindRequest,
    FindResponse,
    HealthResponse,
    LLMPipeRequest,
    LLMPipeResponse,
    OrchestrateRequest,
    OrchestrateResponse,
    RunAllResponse,
    RunCellsRequest,
    RunCellsResponse,
    RunStepRequest,
    StepChatResponse,
    StepOutcomeModel,
    SubSheetModel,
    WorkflowResponse,
)
from spreadsheet_workflow.services.aggregation import AggregationService
from spreadsheet_workflow.services.assistant import plan
from spreadsheet_workflow.services.find import FindService
from spreadsheet_workflow.services.llm_client import LLMClient
from spreadsheet_workflow.services.llm_pipe import LLMPipeService
from spreadsheet_workflow.services.run_cells import RunCellsService
from spreadsheet_workflow.services.workflow_manager import (
    WorkflowManager,
    get_workflow_manager,
)
from spreadsheet_workflow.sheets.aggregation import AggregationSheet
from spreadsheet_workflow.sheets.assistant import apply_tool_calls
from spreadsheet_workflow.sheets.grid import Cell, Grid
from spreadsheet_workflow.sheets.llm_pipe import LLMPipeSheet
from spreadsheet_workflow.sheets.three_d import SubSheet, ThreeDStack, sheet_name
from spreadsheet_workflow.utils.exceptions import (
    ErrorCode,
    SWFError,
    UnsupportedStepOperationError,
    ValidationError,
)
from spreadsheet_workflow.utils.logging import (
    clear_context,
    configure_logging,
    get_logger,
    get_request_id,
    set_request_id,
    set_workflow_id,
)
from spreadsheet_workflow.workflow.orchestrator import Workflow
from spreadsheet_workflow.workflow.steps import RunnableStep

# Configure structured logging using settings
configure_logging(
    level=settings.log_level_int,
    use_structured_formatter=True,
)
logger = get_logger(__name__)

API_VERSION = "0.1.0"


def _workflow_response(workflow: Workflow) -> WorkflowResponse:
    return WorkflowResponse.model_validate(workflow.to_dict())


def _sub_sheets(headers: list[str], sheets: list[SubSheetModel]) -> list[SubSheet]:
    subs = []
    for index, payload in enumerate(sheets):
        origin = [Cell(value, index, col) for col, value in enumerate(payload.origin)]
        subs.append(
            SubSheet(
                name=payload.name or sheet_name(origin, index),
                grid=Grid.from_values(headers, payload.rows),
                origin=origin,
                entity_id=payload.entity_id,
            )
        )
    return subs


def apply_step_edit(
    workflow: Workflow, index: int, step: RunnableStep, body: EditStepRequest
) -> None:
    """Apply an edit request to a step, cascading through the workflow."""
    if body.prompt is not None:
        if isinstance(step, AggregationSheet):
            step.aggregation_prompt = body.prompt
        elif isinstance(step, LLMPipeSheet):
            step.prompt = body.prompt
        else:
            raise ValidationError(
                f"Step kind '{step.kind.value}' has no prompt", field="prompt"
            )

    if isinstance(step, ThreeDStack):
        if body.rows is not None:
            raise ValidationError("3D steps are edited through 'sheets'", field="rows")
        if body.headers is not None:
            step.set_headers(body.headers)
        if body.sheets is not None:
            workflow.edit_step(index, _sub_sheets(step.headers, body.sheets))
        return

    if body.sheets is not None:
        raise ValidationError(
            f"Step kind '{step.kind.value}' is edited through 'rows'", field="sheets"
        )
    if body.rows is not None or body.headers is not None:
        headers = body.headers if body.headers is not None else step.get_headers()
        rows = body.rows if body.rows is not None else step.snapshot().values()
        if not headers:
            raise ValidationError("A step needs at least one header", field="headers")
        workflow.edit_step(index, Grid.from_values(headers, rows))


def create_app(
    llm_client: LLMClient | None = None,
    workflow_manager: WorkflowManager | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        llm_client: Completion client for the collaborator endpoints.
            Defaults to the process-wide client.
        workflow_manager: Registry for the workflow endpoints. Defaults to
            the global registry.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> Any:
        logger.info("Application startup", version=API_VERSION)
        try:
            yield
        finally:
            logger.info("Application shutdown")

    app = FastAPI(
        title="Spreadsheet Workflow API",
        description=(
            "Chain spreadsheet steps (single sheet, 3D stack, aggregation, "
            "LLM pipe) and fill their cells with a language model."
        ),
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.state.find_service = FindService(llm_client)
    app.state.run_cells_service = RunCellsService(llm_client)
    app.state.aggregation_service = AggregationService(llm_client)
    app.state.llm_pipe_service = LLMPipeService(llm_client)
    app.state.workflow_manager = workflow_manager

    def manager() -> WorkflowManager:
        return app.state.workflow_manager or get_workflow_manager()

    # Configure CORS using settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Validate settings on startup
    validate_settings_on_startup(settings)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next: Any) -> Any:
        """Assign a request ID, expose it in logs and echo it back."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        set_request_id(request_id)
        request.state.request_id = request_id

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_context()

    @app.exception_handler(SWFError)
    async def swf_exception_handler(request: Request, exc: SWFError) -> JSONResponse:
        """Turn any SWFError into a structured error response."""
        request_id = getattr(request.state, "request_id", get_request_id())
        logger.error(
            f"SWF Error: {exc.message}",
            error_code=exc.error_code.value,
            http_status=exc.http_status,
        )
        return JSONResponse(
            status_code=exc.http_status,
            content=ErrorDetail(
                detail=exc.message,
                error_code=exc.error_code.value,
                details=exc.details if exc.details else None,
                request_id=request_id,
            ).model_dump(exclude_none=True),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        request_id = getattr(request.state, "request_id", get_request_id())
        logger.warning(
            f"HTTP Error: {exc.detail}",
            status_code=exc.status_code,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorDetail(
                detail=str(exc.detail),
                request_id=request_id,
            ).model_dump(exclude_none=True),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all handler that hides internals unless debug is on."""
        request_id = getattr(request.state, "request_id", get_request_id())
        logger.exception(
            f"Unexpected error: {type(exc).__name__}",
            error_type=type(exc).__name__,
        )
        if settings.debug:
            detail = f"Internal server error: {type(exc).__name__}: {exc}"
        else:
            detail = "Internal server error. Please try again later."

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorDetail(
                detail=detail,
                error_code=ErrorCode.INTERNAL_ERROR.value,
                request_id=request_id,
            ).model_dump(exclude_none=True),
        )

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(request: Request) -> dict[str, Any]:
        """Check the health status of the service."""
        request_id = getattr(request.state, "request_id", None)
        logger.debug("Health check requested", request_id=request_id)
        return {
            "status": "healthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "version": API_VERSION,
        }

    # =========================================================================
    # Collaborator endpoints
    # =========================================================================

    @app.post("/api/findall", response_model=FindResponse, tags=["Collaborators"])
    async def findall(body: FindRequest) -> FindResponse:
        """List entity names matching a query."""
        results = await app.state.find_service.find(body.query, body.sheet_level)
        return FindResponse(
            success=True, results=results, query=body.query, total=len(results)
        )

    @app.post("/api/runCells", response_model=RunCellsResponse, tags=["Collaborators"])
    async def run_cells(body: RunCellsRequest) -> RunCellsResponse:
        """Fill a row's columns from its identifying value."""
        results = await app.state.run_cells_service.run_cells(body.input, body.columns)
        return RunCellsResponse(success=True, results=results, input=body.input)

    @app.post(
        "/api/aggregate", response_model=AggregateResponse, tags=["Collaborators"]
    )
    async def aggregate(body: AggregateRequest) -> AggregateResponse:
        """Summarize one sub-sheet into a single row."""
        response: AggregateResponse = await app.state.aggregation_service.aggregate(body)
        return response

    @app.post("/api/llm", response_model=LLMPipeResponse, tags=["Collaborators"])
    async def llm(body: LLMPipeRequest) -> LLMPipeResponse:
        """Apply one instruction to every input."""
        outputs = await app.state.llm_pipe_service.run(body.inputs, body.prompt)
        return LLMPipeResponse(success=True, outputs=outputs, prompt=body.prompt)

    @app.post(
        "/api/orchestrate", response_model=OrchestrateResponse, tags=["Collaborators"]
    )
    async def orchestrate(body: OrchestrateRequest) -> OrchestrateResponse:
        """Reply to the chat assistant with optional sheet tool calls."""
        return plan(body.messages)

    # =========================================================================
    # Workflow endpoints
    # =========================================================================

    @app.post(
        "/workflows",
        response_model=WorkflowResponse,
        status_code=status.HTTP_201_CREATED,
        tags=["Workflows"],
    )
    async def create_workflow(
        body: CreateWorkflowRequest | None = None,
    ) -> WorkflowResponse:
        """Create a workflow, by default with one blank single sheet."""
        request_body = body or CreateWorkflowRequest()
        workflow = manager().create_workflow(request_body.create_initial_sheet)
        return _workflow_response(workflow)

    @app.get("/workflows", response_model=list[WorkflowResponse], tags=["Workflows"])
    async def list_workflows() -> list[WorkflowResponse]:
        return [_workflow_response(w) for w in manager().list_workflows()]

    @app.get(
        "/workflows/{workflow_id}",
        response_model=WorkflowResponse,
        tags=["Workflows"],
        responses={404: {"model": ErrorDetail, "description": "Workflow not found"}},
    )
    async def get_workflow(workflow_id: str) -> WorkflowResponse:
        set_workflow_id(workflow_id)
        return _workflow_response(manager().get_workflow(workflow_id))

    @app.delete(
        "/workflows/{workflow_id}",
        status_code=status.HTTP_204_NO_CONTENT,
        tags=["Workflows"],
        responses={404: {"model": ErrorDetail, "description": "Workflow not found"}},
    )
    async def delete_workflow(workflow_id: str) -> None:
        set_workflow_id(workflow_id)
        manager().delete_workflow(workflow_id)

    @app.post(
        "/workflows/{workflow_id}/steps",
        response_model=WorkflowResponse,
        status_code=status.HTTP_201_CREATED,
        tags=["Workflows"],
        responses={
            404: {"model": ErrorDetail, "description": "Workflow or step not found"},
            409: {"model": ErrorDetail, "description": "Step cannot be appended"},
        },
    )
    async def append_step(workflow_id: str, body: AppendStepRequest) -> WorkflowResponse:
        """Append a step derived from ``sourceIndex`` (the last step by default)."""
        set_workflow_id(workflow_id)
        workflow = manager().get_workflow(workflow_id)
        workflow.append_step(body.kind, body.source_index)
        return _workflow_response(workflow)

    @app.put(
        "/workflows/{workflow_id}/steps/{index}",
        response_model=WorkflowResponse,
        tags=["Workflows"],
        responses={
            400: {"model": ErrorDetail, "description": "Invalid step data"},
            404: {"model": ErrorDetail, "description": "Workflow or step not found"},
        },
    )
    async def edit_step(
        workflow_id: str, index: int, body: EditStepRequest
    ) -> WorkflowResponse:
        """Replace a step's data; the following step is recomputed."""
        set_workflow_id(workflow_id)
        workflow = manager().get_workflow(workflow_id)
        apply_step_edit(workflow, index, workflow.step(index), body)
        return _workflow_response(workflow)

    @app.post(
        "/workflows/{workflow_id}/steps/{index}/run",
        response_model=WorkflowResponse,
        tags=["Workflows"],
    )
    async def run_step(
        workflow_id: str, index: int, body: RunStepRequest | None = None
    ) -> WorkflowResponse:
        """Run one step's remote actions."""
        set_workflow_id(workflow_id)
        workflow = manager().get_workflow(workflow_id)
        operation = body.operation if body is not None else "run"
        await workflow.run_step(index, operation)
        return _workflow_response(workflow)

    @app.post(
        "/workflows/{workflow_id}/steps/{index}/chat",
        response_model=StepChatResponse,
        tags=["Workflows"],
        responses={
            400: {"model": ErrorDetail, "description": "Step is not a 3D sheet"},
            404: {"model": ErrorDetail, "description": "Workflow or step not found"},
        },
    )
    async def chat_with_step(
        workflow_id: str, index: int, body: OrchestrateRequest
    ) -> StepChatResponse:
        """Plan an assistant reply and apply its tool calls to a 3D step."""
        set_workflow_id(workflow_id)
        workflow = manager().get_workflow(workflow_id)
        step = workflow.step(index)
        if not isinstance(step, ThreeDStack):
            raise UnsupportedStepOperationError(step.kind.value, "chat")

        reply = plan(body.messages)
        messages = await apply_tool_calls(
            step, reply.tool_calls, workflow.collaborators
        )
        return StepChatResponse(
            response=reply.response,
            tool_calls=reply.tool_calls,
            messages=messages,
            workflow=_workflow_response(workflow),
        )

    @app.post(
        "/workflows/{workflow_id}/run",
        response_model=RunAllResponse,
        tags=["Workflows"],
    )
    async def run_workflow(workflow_id: str) -> RunAllResponse:
        """Run every step in order."""
        set_workflow_id(workflow_id)
        workflow = manager().get_workflow(workflow_id)
        report = await workflow.run_all()
        return RunAllResponse(
            workflow_id=workflow_id,
            outcomes=[
                StepOutcomeModel.model_validate(outcome.to_dict())
                for outcome in report.outcomes
            ],
            workflow=_workflow_response(workflow),
        )

    @app.post(
        "/workflows/{workflow_id}/clear",
        response_model=WorkflowResponse,
        tags=["Workflows"],
    )
    async def clear_workflow(workflow_id: str) -> WorkflowResponse:
        """Drop every step, leaving one blank single sheet."""
        set_workflow_id(workflow_id)
        workflow = manager().get_workflow(workflow_id)
        workflow.clear()
        return _workflow_response(workflow)

    logger.info("FastAPI application created successfully")
    return app


# Create the application instance
app = create_app()
