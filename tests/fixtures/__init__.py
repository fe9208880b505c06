"""Test doubles shared across the test suite.

Example usage:
    from tests.fixtures import FakeCollaborators

    collaborators = FakeCollaborators()
    collaborators.default_find_results = ["Acme", "Globex"]
    sheet = SingleSheet(collaborators, headers=["Company", "CEO"])
"""

import asyncio

from spreadsheet_workflow.models import AggregateRequest, AggregateResponse
from spreadsheet_workflow.utils.exceptions import CollaboratorError


class FakeCollaborators:
    """Records every call and answers from canned data.

    ``fail_on`` holds ``"<operation>"`` to fail every call of that kind, or
    ``"<operation>:<key>"`` to fail one query, input, sheet name or prompt.
    RunCells answers ``"<column> of <input>"`` for inputs without canned
    values; Aggregate answers ``"<column> summary"``. When ``gate`` is set,
    every call is recorded and then waits for the event before answering.
    """

    def __init__(self) -> None:
        self.find_results: dict[str, list[str]] = {}
        self.default_find_results: list[str] = []
        self.cell_values: dict[str, dict[str, str]] = {}
        self.insights: dict[str, dict[str, str]] = {}
        self.llm_outputs: list[str | None] | None = None
        self.fail_on: set[str] = set()
        self.gate: asyncio.Event | None = None

        self.find_calls: list[tuple[str, bool]] = []
        self.run_cells_calls: list[tuple[str, dict[str, str]]] = []
        self.aggregate_calls: list[AggregateRequest] = []
        self.complete_calls: list[tuple[list[str], str]] = []

    async def _wait(self) -> None:
        if self.gate is not None:
            await self.gate.wait()

    def _maybe_fail(self, operation: str, key: str) -> None:
        if operation in self.fail_on or f"{operation}:{key}" in self.fail_on:
            raise CollaboratorError(f"{operation} failed for {key}", collaborator=operation)

    async def find(self, query: str, sheet_level: bool = True) -> list[str]:
        self.find_calls.append((query, sheet_level))
        await self._wait()
        self._maybe_fail("find", query)
        return list(self.find_results.get(query, self.default_find_results))

    async def run_cells(
        self, input_value: str, columns: dict[str, str]
    ) -> dict[str, str]:
        self.run_cells_calls.append((input_value, dict(columns)))
        await self._wait()
        self._maybe_fail("run_cells", input_value)
        if input_value in self.cell_values:
            return dict(self.cell_values[input_value])
        return {name: f"{name} of {input_value}" for name in columns}

    async def aggregate(self, request: AggregateRequest) -> AggregateResponse:
        self.aggregate_calls.append(request)
        await self._wait()
        origin = request.data.prev_row
        name = origin[0].value if origin and origin[0].value else request.sheet_name
        self._maybe_fail("aggregate", name)
        insights = self.insights.get(
            name, {column: f"{column} summary" for column in request.columns[1:]}
        )
        return AggregateResponse(
            sheet_name=name,
            count=len(request.data.cells),
            aggregated_insights=insights,
        )

    async def complete(self, inputs: list[str], prompt: str) -> list[str | None]:
        self.complete_calls.append((list(inputs), prompt))
        await self._wait()
        self._maybe_fail("complete", prompt)
        if self.llm_outputs is not None:
            return list(self.llm_outputs)
        return [f"answer {index}" for index in range(len(inputs))]


async def settle() -> None:
    """Give started tasks a few loop iterations to reach their first await."""
    for _ in range(5):
        await asyncio.sleep(0)
