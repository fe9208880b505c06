"""Cell and grid model shared by every sheet view.

A grid is an ordered list of rows under a header list. Column ``i`` of every
row belongs to header ``i``. Mutations never touch the receiver: each
``with_*`` method returns a new grid, and views swap their reference, so two
workflow steps can never alias the same rows.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field, replace

from spreadsheet_workflow.utils.exceptions import CellOutOfRangeError, GridShapeError

DEFAULT_HEADERS: tuple[str, ...] = ("Input",)


@dataclass(frozen=True)
class Cell:
    """A single addressable cell."""

    value: str = ""
    row: int = 0
    col: int = 0

    def to_dict(self) -> dict[str, str | int]:
        return {"value": self.value, "row": self.row, "col": self.col}


def blank_row(row: int, width: int) -> list[Cell]:
    return [Cell("", row, col) for col in range(width)]


def reindex(rows: Sequence[Sequence[Cell]]) -> list[list[Cell]]:
    """Renumber ``row``/``col`` fields so they match their positions."""
    return [
        [replace(cell, row=row_index, col=col_index) for col_index, cell in enumerate(row)]
        for row_index, row in enumerate(rows)
    ]


@dataclass
class Grid:
    """Rectangular table of cells with a header row."""

    headers: list[str] = field(default_factory=lambda: list(DEFAULT_HEADERS))
    rows: list[list[Cell]] = field(default_factory=list)

    @classmethod
    def blank(cls, headers: Sequence[str] = DEFAULT_HEADERS, row_count: int = 1) -> Grid:
        width = len(headers)
        return cls(
            headers=list(headers),
            rows=[blank_row(row, width) for row in range(max(row_count, 1))],
        )

    @classmethod
    def from_values(
        cls, headers: Sequence[str], values: Sequence[Sequence[str]]
    ) -> Grid:
        """Build a grid from plain strings, padding or truncating each row."""
        width = len(headers)
        rows = []
        for row_index, row_values in enumerate(values):
            padded = list(row_values)[:width] + [""] * (width - len(row_values))
            rows.append(
                [Cell(str(value), row_index, col) for col, value in enumerate(padded)]
            )
        if not rows:
            rows = [blank_row(0, width)]
        return cls(headers=list(headers), rows=rows)

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_count(self) -> int:
        return len(self.headers)

    def copy(self) -> Grid:
        # Cells are frozen, so copying the row lists is enough.
        return Grid(headers=list(self.headers), rows=[list(row) for row in self.rows])

    def values(self) -> list[list[str]]:
        return [[cell.value for cell in row] for row in self.rows]

    def row_values(self, row: int) -> list[str]:
        return [cell.value for cell in self.rows[row]]

    def column_values(self, col: int) -> list[str]:
        return [row[col].value if col < len(row) else "" for row in self.rows]

    def first_value(self, row: int) -> str:
        """Column-0 value of a row, "" when the row is empty."""
        cells = self.rows[row]
        return cells[0].value if cells else ""

    def records(self) -> list[dict[str, str]]:
        """Rows as ``header -> value`` dictionaries."""
        return [
            {header: (row[i].value if i < len(row) else "") for i, header in enumerate(self.headers)}
            for row in self.rows
        ]

    def validate(self) -> None:
        """Raise GridShapeError when a row's width differs from the headers."""
        for index, row in enumerate(self.rows):
            if len(row) != len(self.headers):
                raise GridShapeError(index, len(row), len(self.headers))

    # ------------------------------------------------------------------
    # Mutations (each returns a new grid)
    # ------------------------------------------------------------------

    def with_cell(self, row: int, col: int, value: str) -> Grid:
        """Set one cell, growing the grid with blank rows up to ``row``."""
        if not 0 <= col < len(self.headers) or row < 0:
            raise CellOutOfRangeError(row, col, len(self.headers))

        grid = self.copy()
        while len(grid.rows) <= row:
            grid.rows.append(blank_row(len(grid.rows), len(grid.headers)))
        grid.rows[row][col] = Cell(value, row, col)
        return grid

    def with_column_added(self, name: str | None = None) -> Grid:
        """Append a column named ``Column N`` unless a name is given."""
        new_index = len(self.headers)
        header = name if name is not None else f"Column {new_index + 1}"
        return Grid(
            headers=[*self.headers, header],
            rows=[
                [*row, Cell("", row_index, new_index)]
                for row_index, row in enumerate(self.rows)
            ],
        )

    def with_column_deleted(self, col: int) -> Grid:
        """Remove a column; the last remaining column is never removed."""
        if len(self.headers) <= 1:
            return self.copy()
        if not 0 <= col < len(self.headers):
            raise CellOutOfRangeError(0, col, len(self.headers))

        headers = [h for i, h in enumerate(self.headers) if i != col]
        rows = [[cell for i, cell in enumerate(row) if i != col] for row in self.rows]
        return Grid(headers=headers, rows=reindex(rows))

    def with_row_added(self) -> Grid:
        grid = self.copy()
        grid.rows.append(blank_row(len(grid.rows), len(grid.headers)))
        return grid

    def with_row_deleted(self, row: int) -> Grid:
        """Remove a row; deleting the only row leaves one blank row."""
        if not 0 <= row < len(self.rows):
            raise CellOutOfRangeError(row, 0, len(self.headers))

        rows = [r for i, r in enumerate(self.rows) if i != row]
        if not rows:
            rows = [blank_row(0, len(self.headers))]
        return Grid(headers=list(self.headers), rows=reindex(rows))

    def with_header_renamed(self, col: int, name: str) -> Grid:
        if not 0 <= col < len(self.headers):
            raise CellOutOfRangeError(0, col, len(self.headers))
        grid = self.copy()
        grid.headers[col] = name
        return grid

    def with_headers(self, headers: Sequence[str]) -> Grid:
        """Replace the header list, padding or truncating every row to fit."""
        width = len(headers)
        rows = [
            [*row[:width], *[Cell("", i, c) for c in range(len(row), width)]]
            for i, row in enumerate(self.rows)
        ]
        return Grid(headers=list(headers), rows=reindex(rows))

    def with_rows(self, values: Sequence[Sequence[str]]) -> Grid:
        """Replace every row with plain values under the current headers."""
        return Grid.from_values(self.headers, values)

    def with_row_values(self, row: int, values: Sequence[str]) -> Grid:
        """Replace a single row's values, keeping its width."""
        width = len(self.headers)
        padded = list(values)[:width] + [""] * (width - len(values))
        grid = self.copy()
        grid.rows[row] = [Cell(str(value), row, col) for col, value in enumerate(padded)]
        return grid

    def cleared(self) -> Grid:
        return Grid.blank(self.headers, 1)
