"""Client side of the Find, RunCells, Aggregate and LLM collaborators.

Sheet views only depend on the :class:`Collaborators` protocol.
:class:`LocalCollaborators` calls the services in-process;
:class:`HttpCollaborators` calls the JSON API over HTTP.
"""

import time
from types import TracebackType
from typing import Any, Protocol, TypeVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from spreadsheet_workflow.config import settings
from spreadsheet_workflow.models import (
    AggregateRequest,
    AggregateResponse,
    FindRequest,
    FindResponse,
    LLMPipeRequest,
    LLMPipeResponse,
    RunCellsRequest,
    RunCellsResponse,
)
from spreadsheet_workflow.services.aggregation import AggregationService
from spreadsheet_workflow.services.find import FindService
from spreadsheet_workflow.services.llm_client import LLMClient
from spreadsheet_workflow.services.llm_pipe import LLMPipeService
from spreadsheet_workflow.services.run_cells import RunCellsService
from spreadsheet_workflow.utils.exceptions import CollaboratorError
from spreadsheet_workflow.utils.logging import get_logger

logger = get_logger(__name__)

ResponseT = TypeVar("ResponseT", bound=BaseModel)


class Collaborators(Protocol):
    """Remote operations a sheet view can trigger."""

    async def find(self, query: str, sheet_level: bool = True) -> list[str]: ...

    async def run_cells(
        self, input_value: str, columns: dict[str, str]
    ) -> dict[str, str]: ...

    async def aggregate(self, request: AggregateRequest) -> AggregateResponse: ...

    async def complete(self, inputs: list[str], prompt: str) -> list[str | None]: ...


class LocalCollaborators:
    """Collaborators backed by the in-process services."""

    def __init__(self, llm_client: LLMClient | None = None) -> None:
        self.find_service = FindService(llm_client)
        self.run_cells_service = RunCellsService(llm_client)
        self.aggregation_service = AggregationService(llm_client)
        self.llm_pipe_service = LLMPipeService(llm_client)

    async def find(self, query: str, sheet_level: bool = True) -> list[str]:
        return await self.find_service.find(query, sheet_level)

    async def run_cells(
        self, input_value: str, columns: dict[str, str]
    ) -> dict[str, str]:
        return await self.run_cells_service.run_cells(input_value, columns)

    async def aggregate(self, request: AggregateRequest) -> AggregateResponse:
        return await self.aggregation_service.aggregate(request)

    async def complete(self, inputs: list[str], prompt: str) -> list[str | None]:
        outputs = await self.llm_pipe_service.run(inputs, prompt)
        return [output.text if output is not None else None for output in outputs]


class HttpCollaborators:
    """Collaborators reached through the JSON API.

    Non-2xx responses, network errors, malformed bodies and
    ``success: false`` payloads all raise CollaboratorError.

    Usage:
        async with HttpCollaborators("http://localhost:8000") as collaborators:
            names = await collaborators.find("coffee roasters")
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url or settings.collaborator_base_url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else settings.collaborator_timeout_seconds,
        )

    async def __aenter__(self) -> "HttpCollaborators":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(
        self,
        collaborator: str,
        path: str,
        payload: BaseModel,
        response_model: type[ResponseT],
    ) -> ResponseT:
        start_time = time.time()
        try:
            response = await self._client.post(
                path, json=payload.model_dump(mode="json", by_alias=True)
            )
            response.raise_for_status()
            body: Any = response.json()
        except httpx.HTTPStatusError as e:
            logger.log_collaborator_call(
                collaborator,
                time.time() - start_time,
                success=False,
                error_message=f"HTTP {e.response.status_code}",
            )
            raise CollaboratorError(
                f"{collaborator} returned HTTP {e.response.status_code}",
                collaborator=collaborator,
                status_code=e.response.status_code,
            ) from e
        except (httpx.RequestError, ValueError) as e:
            logger.log_collaborator_call(
                collaborator,
                time.time() - start_time,
                success=False,
                error_message=str(e),
            )
            raise CollaboratorError(
                f"{collaborator} request failed: {e}",
                collaborator=collaborator,
                details={"original_error": str(e)},
            ) from e

        if isinstance(body, dict) and body.get("success") is False:
            raise CollaboratorError(
                f"{collaborator} reported failure",
                collaborator=collaborator,
                status_code=response.status_code,
                details={"error": body.get("error")},
            )

        try:
            parsed = response_model.model_validate(body)
        except PydanticValidationError as e:
            raise CollaboratorError(
                f"{collaborator} returned an unexpected body",
                collaborator=collaborator,
                details={"validation_errors": [err["msg"] for err in e.errors()]},
            ) from e

        logger.log_collaborator_call(collaborator, time.time() - start_time)
        return parsed

    async def find(self, query: str, sheet_level: bool = True) -> list[str]:
        response = await self._post(
            "find",
            "/api/findall",
            FindRequest(query=query, sheet_level=sheet_level),
            FindResponse,
        )
        return response.results

    async def run_cells(
        self, input_value: str, columns: dict[str, str]
    ) -> dict[str, str]:
        response = await self._post(
            "run_cells",
            "/api/runCells",
            RunCellsRequest(input=input_value, columns=columns),
            RunCellsResponse,
        )
        return response.results

    async def aggregate(self, request: AggregateRequest) -> AggregateResponse:
        return await self._post("aggregate", "/api/aggregate", request, AggregateResponse)

    async def complete(self, inputs: list[str], prompt: str) -> list[str | None]:
        response = await self._post(
            "llm",
            "/api/llm",
            LLMPipeRequest(inputs=inputs, prompt=prompt),
            LLMPipeResponse,
        )
        return [output.text if output is not None else None for output in response.outputs]
