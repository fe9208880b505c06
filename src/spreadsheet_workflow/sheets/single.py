"""Single-sheet view: one grid, its headers and the Find/RunCells actions.

The row-level helpers at the bottom of this module are shared with the 3D
stack, which runs the same actions once per sub-sheet.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from spreadsheet_workflow.sheets.grid import DEFAULT_HEADERS, Cell, Grid
from spreadsheet_workflow.utils.logging import get_logger, timed_operation
from spreadsheet_workflow.workflow.steps import RunnableStep, StepKind

if TYPE_CHECKING:
    from spreadsheet_workflow.services.collaborators import Collaborators

logger = get_logger(__name__)

DEFAULT_TITLE = "Datasheet"


class SingleSheet(RunnableStep):
    """An editable grid backed by the Find and RunCells collaborators."""

    kind = StepKind.SINGLE

    def __init__(
        self,
        collaborators: Collaborators,
        headers: Sequence[str] = DEFAULT_HEADERS,
        title: str = DEFAULT_TITLE,
        grid: Grid | None = None,
        step_id: str | None = None,
    ) -> None:
        super().__init__(step_id)
        self.collaborators = collaborators
        self.title = title
        self._grid = grid.copy() if grid is not None else Grid.blank(headers)

    @property
    def is_aggregation(self) -> bool:
        return False

    @property
    def grid(self) -> Grid:
        return self._grid

    def _commit(self, grid: Grid, notify: bool = True) -> None:
        self._grid = grid
        if notify:
            self._notify()

    # ------------------------------------------------------------------
    # RunnableStep
    # ------------------------------------------------------------------

    def get_headers(self) -> list[str]:
        return list(self._grid.headers)

    def source_rows(self) -> tuple[list[str], list[list[Cell]]]:
        grid = self._grid.copy()
        return grid.headers, grid.rows

    def snapshot(self) -> Grid:
        return self._grid.copy()

    def replace_data(self, data: Grid, notify: bool = True) -> None:
        data.validate()
        self._commit(data.copy(), notify)

    async def run(self) -> None:
        await self.run_find()
        await self.run_cells()

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "kind": self.kind.value,
            "title": self.title,
            "headers": self.get_headers(),
            "rows": self._grid.values(),
        }

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def set_cell(self, row: int, col: int, value: str) -> None:
        self._commit(self._grid.with_cell(row, col, value))

    def add_column(self, name: str | None = None) -> None:
        self._commit(self._grid.with_column_added(name))

    def delete_column(self, col: int) -> None:
        if self._grid.column_count <= 1:
            logger.debug("Ignoring delete of the last column", step_id=self.step_id)
            return
        self._commit(self._grid.with_column_deleted(col))

    def add_row(self) -> None:
        self._commit(self._grid.with_row_added())

    def delete_row(self, row: int) -> None:
        self._commit(self._grid.with_row_deleted(row))

    def rename_header(self, col: int, name: str) -> None:
        self._commit(self._grid.with_header_renamed(col, name))

    def clear(self) -> None:
        self._commit(self._grid.cleared())

    # ------------------------------------------------------------------
    # Remote actions
    # ------------------------------------------------------------------

    @property
    def find_query(self) -> str:
        """Column-0 header, or the title when that header is blank."""
        header = self._grid.headers[0].strip() if self._grid.headers else ""
        return header or self.title

    async def run_find(self) -> bool:
        """Replace all rows with one row per Find result.

        Results land on the grid as it is when the call returns.

        Returns:
            True when the grid was replaced. An empty result, a failed call
            or a Find already in flight leaves the grid unchanged and
            returns False.
        """
        with self._exclusive("find") as acquired:
            if not acquired:
                return False
            names = await find_rows(self.collaborators, self.find_query)
            if names is None:
                return False
            self._commit(self._grid.with_rows([[name] for name in names]))
            return True

    async def run_cells(self) -> int:
        """Fill every row with a non-empty column 0 through RunCells.

        Each answer is written onto the current grid, into the row that
        still carries the same column-0 value. Rows deleted or re-keyed
        while their call was in flight are left alone.

        Returns:
            Number of rows that were updated.
        """
        with self._exclusive("cells") as acquired:
            if not acquired:
                return 0
            results = await fill_rows(self.collaborators, self._grid)
            grid, updated = apply_row_results(self._grid, results)
            if updated:
                self._commit(grid)
            return updated

    async def run_aggregation(self) -> int:
        logger.warning(
            "Aggregation requested on a sheet that is not an aggregation",
            step_id=self.step_id,
        )
        return 0


# =============================================================================
# Row-level helpers
# =============================================================================


async def find_rows(
    collaborators: Collaborators,
    query: str,
    sheet_level: bool = True,
) -> list[str] | None:
    """Return the Find results for ``query``, or None.

    None means the call failed or found nothing; the failure is logged.
    """
    try:
        results = await collaborators.find(query, sheet_level=sheet_level)
    except Exception as e:
        logger.error("Find failed", query=query, error=str(e))
        return None

    if not results:
        logger.warning("Find returned no results", query=query)
        return None

    return results


def row_columns(grid: Grid, row: int) -> dict[str, str]:
    """Headers after column 0 mapped to the row's current values."""
    values = grid.row_values(row)
    return {header: values[col] for col, header in enumerate(grid.headers) if col > 0}


@dataclass(frozen=True)
class RowResult:
    """RunCells answer for one row, keyed by the row's column-0 value."""

    row: int
    input_value: str
    values: dict[str, str]


def match_row(grid: Grid, row: int, key: str, claimed: set[int]) -> int | None:
    """Current position of the row that held ``key`` in column 0 at ``row``.

    The original position wins while it still holds ``key``; otherwise the
    first unclaimed row with that value. None when no row matches.
    """
    if row < grid.row_count and row not in claimed and grid.first_value(row) == key:
        return row
    return next(
        (
            index
            for index in range(grid.row_count)
            if index not in claimed and grid.first_value(index) == key
        ),
        None,
    )


def apply_row_results(grid: Grid, results: Sequence[RowResult]) -> tuple[Grid, int]:
    """Write RunCells answers onto ``grid`` by column-0 identity.

    Only headers present in an answer are written, so columns added while
    the call was in flight keep their values.
    """
    claimed: set[int] = set()
    updated = grid
    count = 0
    for result in results:
        position = match_row(updated, result.row, result.input_value, claimed)
        if position is None:
            logger.debug("Dropping answer for a changed row", input=result.input_value)
            continue
        claimed.add(position)
        current = updated.row_values(position)
        values = [
            result.values.get(header, current[col]) if col > 0 else current[col]
            for col, header in enumerate(updated.headers)
        ]
        updated = updated.with_row_values(position, values)
        count += 1
    return updated, count


async def fill_row(
    collaborators: Collaborators, grid: Grid, row: int
) -> RowResult | None:
    """Return the row's answer, or None when it is skipped or fails."""
    input_value = grid.first_value(row)
    if not input_value:
        return None

    columns = row_columns(grid, row)
    if not columns:
        return None

    try:
        results = await collaborators.run_cells(input_value, columns)
    except Exception as e:
        logger.error("RunCells failed", row=row, input=input_value, error=str(e))
        return None

    return RowResult(
        row=row,
        input_value=input_value,
        values={header: results.get(header, "") for header in columns},
    )


async def fill_rows(collaborators: Collaborators, grid: Grid) -> list[RowResult]:
    """Run every row of ``grid`` through RunCells concurrently.

    Returns:
        One answer per row that was sent and succeeded, in row order.
    """
    with timed_operation(logger, "run_cells") as metrics:
        answers = await asyncio.gather(
            *(fill_row(collaborators, grid, row) for row in range(grid.row_count))
        )
        results = [answer for answer in answers if answer is not None]
        metrics.rows_processed = grid.row_count
        if grid.column_count > 1:
            metrics.api_calls = sum(
                1 for row in range(grid.row_count) if grid.first_value(row)
            )
        metrics.failures = metrics.api_calls - len(results)
    return results
