"""Aggregation view: one summary row per sub-sheet of a 3D stack."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from spreadsheet_workflow.models import AggregateData, AggregateRequest, CellModel
from spreadsheet_workflow.sheets.grid import Cell, Grid
from spreadsheet_workflow.sheets.single import SingleSheet
from spreadsheet_workflow.utils.logging import get_logger, timed_operation
from spreadsheet_workflow.workflow.steps import StepKind

if TYPE_CHECKING:
    from spreadsheet_workflow.services.collaborators import Collaborators
    from spreadsheet_workflow.sheets.three_d import SubSheet, ThreeDStack

logger = get_logger(__name__)

DEFAULT_AGGREGATION_TITLE = "Aggregation"


def _cell_models(cells: Sequence[Cell]) -> list[CellModel]:
    return [CellModel(value=c.value, row=c.row, col=c.col) for c in cells]


def aggregation_grid(headers: Sequence[str], sheets: Sequence[SubSheet]) -> Grid:
    """Initial rows: one per sub-sheet, column 0 holding its name."""
    return Grid.from_values(headers, [[sub.name] for sub in sheets])


class AggregationSheet(SingleSheet):
    """Single sheet whose rows summarize the sub-sheets of a bound stack."""

    kind = StepKind.AGGREGATION

    def __init__(
        self,
        collaborators: Collaborators,
        stack: ThreeDStack,
        aggregation_prompt: str = "",
        headers: Sequence[str] | None = None,
        title: str = DEFAULT_AGGREGATION_TITLE,
        step_id: str | None = None,
    ) -> None:
        columns = list(headers) if headers is not None else stack.get_headers()
        super().__init__(
            collaborators,
            headers=columns,
            title=title,
            grid=aggregation_grid(columns, stack.sheets),
            step_id=step_id,
        )
        self.stack = stack
        self.aggregation_prompt = aggregation_prompt

    @property
    def is_aggregation(self) -> bool:
        return True

    async def run(self) -> None:
        await self.run_aggregation()

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["prompt"] = self.aggregation_prompt
        return data

    def build_request(self, index: int, sub: SubSheet) -> AggregateRequest:
        return AggregateRequest(
            data=AggregateData(
                cells=[_cell_models(row) for row in sub.grid.rows],
                prev_row=_cell_models(sub.origin),
            ),
            columns=self.get_headers(),
            prev_table_headers=self.stack.get_headers(),
            aggregation_prompt=self.aggregation_prompt,
            sheet_name=f"Sheet {index + 1}",
            sheet_index=index,
        )

    async def _aggregate_one(self, index: int, sub: SubSheet) -> dict[str, str] | None:
        try:
            response = await self.collaborators.aggregate(self.build_request(index, sub))
        except Exception as e:
            logger.error(
                "Aggregation failed", sheet_index=index, sheet=sub.name, error=str(e)
            )
            return None

        return response.aggregated_insights

    def _previous_values(self, index: int, sub: SubSheet) -> list[str]:
        """Row values to keep when the sub-sheet's aggregation fails."""
        grid = self.grid
        if index < grid.row_count and grid.first_value(index) == sub.name:
            return [sub.name, *grid.row_values(index)[1:]]
        return [sub.name]

    async def run_aggregation(self) -> int:
        """Aggregate every sub-sheet of the bound stack concurrently.

        The result has exactly one row per sub-sheet, in stack order. Column
        0 is the sub-sheet's name; other columns come from the collaborator's
        insights by header name. Rows are laid out over the stack and headers
        as they are when the answers arrive; a sub-sheet that failed or was
        added meanwhile keeps its previous row when there is one.

        Returns:
            Number of sub-sheets aggregated successfully.
        """
        with self._exclusive("aggregation") as acquired:
            if not acquired:
                return 0
            return await self._aggregate_all()

    async def _aggregate_all(self) -> int:
        subs = self.stack.sheets
        with timed_operation(logger, "aggregation") as metrics:
            results = await asyncio.gather(
                *(self._aggregate_one(index, sub) for index, sub in enumerate(subs))
            )
            metrics.sheets_processed = len(subs)
            metrics.api_calls = len(subs)
            metrics.failures = sum(1 for values in results if values is None)

        insights_by_key = {
            sub.key: insights for sub, insights in zip(subs, results) if insights is not None
        }
        headers = self.get_headers()
        rows = []
        for index, sub in enumerate(self.stack.sheets):
            insights = insights_by_key.get(sub.key)
            if insights is None:
                rows.append(self._previous_values(index, sub))
            else:
                rows.append([sub.name, *(insights.get(h, "") for h in headers[1:])])
        self._commit(self.grid.with_rows(rows))
        return len(insights_by_key)
