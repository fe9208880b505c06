"""LLM-pipe view: each source row as text, plus the model's answer."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from spreadsheet_workflow.sheets.grid import Cell, Grid
from spreadsheet_workflow.sheets.single import SingleSheet, match_row
from spreadsheet_workflow.utils.logging import get_logger, timed_operation
from spreadsheet_workflow.workflow.steps import StepKind

if TYPE_CHECKING:
    from spreadsheet_workflow.services.collaborators import Collaborators

logger = get_logger(__name__)

LLM_HEADERS: tuple[str, str] = ("Row Content", "LLM Output")
DEFAULT_LLM_TITLE = "LLM Response"


def format_row_content(headers: Sequence[str], row: Sequence[Cell]) -> str:
    """Render a row as ``header: value`` lines."""
    return "\n".join(
        f"{header}: {row[index].value if index < len(row) else ''}"
        for index, header in enumerate(headers)
    )


class LLMPipeSheet(SingleSheet):
    """Two-column sheet sent to the completion collaborator row by row.

    Headers are fixed: column 0 holds the row content, column 1 the output.
    """

    kind = StepKind.LLM_PIPE

    def __init__(
        self,
        collaborators: Collaborators,
        grid: Grid | None = None,
        prompt: str = "",
        title: str = DEFAULT_LLM_TITLE,
        step_id: str | None = None,
    ) -> None:
        super().__init__(
            collaborators,
            headers=LLM_HEADERS,
            title=title,
            grid=grid if grid is not None else Grid.blank(LLM_HEADERS),
            step_id=step_id,
        )
        self.prompt = prompt

    def replace_data(self, data: Grid, notify: bool = True) -> None:
        super().replace_data(data.with_headers(LLM_HEADERS), notify)

    async def run(self) -> None:
        await self.run_llm()

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["prompt"] = self.prompt
        return data

    # Headers never change on this view.

    def add_column(self, name: str | None = None) -> None:
        logger.debug("Ignoring add_column on an LLM pipe", step_id=self.step_id)

    def delete_column(self, col: int) -> None:
        logger.debug("Ignoring delete_column on an LLM pipe", step_id=self.step_id)

    def rename_header(self, col: int, name: str) -> None:
        logger.debug("Ignoring rename_header on an LLM pipe", step_id=self.step_id)

    async def run_find(self) -> bool:
        return await super(SingleSheet, self).run_find()

    async def run_cells(self) -> int:
        return await super(SingleSheet, self).run_cells()

    async def run_llm(self) -> int:
        """Send every row's content with the shared prompt in one request.

        Each returned text fills the output column of the current row with
        the same content, so rows re-derived while the request was in flight
        only receive answers for content that is still there. A None output
        leaves the row alone; a failed request leaves the grid unchanged.

        Returns:
            Number of rows whose output was written.
        """
        with self._exclusive("llm") as acquired:
            if not acquired:
                return 0

            inputs = self.grid.column_values(0)
            with timed_operation(logger, "run_llm") as metrics:
                metrics.rows_processed = len(inputs)
                metrics.api_calls = 1
                try:
                    outputs = await self.collaborators.complete(inputs, self.prompt)
                except Exception as e:
                    metrics.failures = len(inputs)
                    logger.error(
                        "LLM pipe request failed", step_id=self.step_id, error=str(e)
                    )
                    return 0

            grid = self.grid
            claimed: set[int] = set()
            written = 0
            for row, (content, text) in enumerate(zip(inputs, outputs)):
                if text is None:
                    continue
                position = match_row(grid, row, content, claimed)
                if position is None:
                    logger.debug("Dropping output for a row that changed", row=row)
                    continue
                claimed.add(position)
                grid = grid.with_cell(position, 1, text)
                written += 1

            if written:
                self._commit(grid)
            return written
