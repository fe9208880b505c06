"""3D sheet stack: one sub-sheet per row of a source sheet.

All sub-sheets share one header list. Each keeps the source row it was
generated from (its *origin*); the origin's column-0 value names the
sub-sheet and identifies it when the stack is re-derived.

A stack may be bound to a :class:`SpreadsheetStorage`. Sub-sheets then map
to storage entities, edits are written through, and deleting an entity
removes its sub-sheet.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from spreadsheet_workflow.config import settings
from spreadsheet_workflow.sheets.grid import DEFAULT_HEADERS, Cell, Grid
from spreadsheet_workflow.sheets.single import apply_row_results, fill_rows, find_rows
from spreadsheet_workflow.utils.exceptions import CellOutOfRangeError
from spreadsheet_workflow.utils.logging import get_logger, timed_operation
from spreadsheet_workflow.workflow.steps import RunnableStep, StepKind

if TYPE_CHECKING:
    from spreadsheet_workflow.services.collaborators import Collaborators
    from spreadsheet_workflow.storage.spreadsheet_storage import SpreadsheetStorage

logger = get_logger(__name__)

SHEET_HEADER = "Sheet"


def sheet_name(origin: Sequence[Cell], index: int) -> str:
    """Origin column-0 value, or ``Sheet N`` (1-based) when it is blank."""
    value = origin[0].value.strip() if origin else ""
    return value or f"Sheet {index + 1}"


@dataclass
class SubSheet:
    """One sheet of a stack and the source row it came from."""

    name: str
    grid: Grid
    origin: list[Cell] = field(default_factory=list)
    entity_id: str | None = None
    key: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def identity(self) -> str:
        """Key used to carry a sub-sheet across re-derivations."""
        return self.origin[0].value if self.origin else self.name

    def copy(self) -> SubSheet:
        return SubSheet(
            name=self.name,
            grid=self.grid.copy(),
            origin=list(self.origin),
            entity_id=self.entity_id,
            key=self.key,
        )


def build_sub_sheets(
    rows: Sequence[Sequence[Cell]], headers: Sequence[str]
) -> list[SubSheet]:
    """One blank sub-sheet per source row."""
    return [
        SubSheet(name=sheet_name(row, index), grid=Grid.blank(headers), origin=list(row))
        for index, row in enumerate(rows)
    ]


class ThreeDStack(RunnableStep):
    """Ordered stack of sub-sheets sharing one header list."""

    kind = StepKind.THREE_D

    def __init__(
        self,
        collaborators: Collaborators,
        headers: Sequence[str] = DEFAULT_HEADERS,
        sheets: Sequence[SubSheet] | None = None,
        source_headers: Sequence[str] = (),
        window_size: int | None = None,
        step_id: str | None = None,
    ) -> None:
        super().__init__(step_id)
        self.collaborators = collaborators
        self._headers = list(headers)
        self.source_headers = list(source_headers)
        self._sheets: list[SubSheet] = []
        self.window_size = window_size or settings.sheet_window_size
        self.window_start = 0
        self.active_index = 0
        self.storage: SpreadsheetStorage | None = None
        self._set_sheets([s.copy() for s in sheets] if sheets else [])

    @classmethod
    def from_rows(
        cls,
        collaborators: Collaborators,
        source_headers: Sequence[str],
        rows: Sequence[Sequence[Cell]],
        headers: Sequence[str] = DEFAULT_HEADERS,
        **kwargs: Any,
    ) -> ThreeDStack:
        """Build one sub-sheet per source row.

        ``source_headers`` only label the origins; the stack's own headers
        default to a single ``Input`` column.
        """
        return cls(
            collaborators,
            headers=headers,
            sheets=build_sub_sheets(rows, headers),
            source_headers=source_headers,
            **kwargs,
        )

    @classmethod
    def from_storage(
        cls, collaborators: Collaborators, storage: SpreadsheetStorage, **kwargs: Any
    ) -> ThreeDStack:
        """Restore a stack from persisted state and stay bound to it."""
        state = storage.get_state()
        headers = state.headers or list(DEFAULT_HEADERS)
        sheets = [
            SubSheet(
                name=entity.name,
                grid=storage.get_entity_grid(entity.id).with_headers(headers),
                origin=[Cell(entity.name, index, 0)],
                entity_id=entity.id,
            )
            for index, entity in enumerate(state.entities)
        ]
        stack = cls(collaborators, headers=headers, sheets=sheets, **kwargs)
        stack.storage = storage
        if not state.entities:
            stack._sync_storage()
        storage.add_delete_listener(stack.remove_entity)
        return stack

    # ------------------------------------------------------------------
    # Internal state
    # ------------------------------------------------------------------

    def _set_sheets(self, sheets: list[SubSheet]) -> None:
        if not sheets:
            sheets = [SubSheet(name="Sheet 1", grid=Grid.blank(self._headers))]
        self._sheets = [
            replace(s, grid=s.grid.with_headers(self._headers))
            if s.grid.headers != self._headers
            else s
            for s in sheets
        ]
        self._clamp_window()

    def _commit(self, sheets: list[SubSheet], notify: bool = True) -> None:
        self._set_sheets(sheets)
        self._sync_storage()
        if notify:
            self._notify()

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self._sheets):
            raise CellOutOfRangeError(index, 0, len(self._headers))

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    @property
    def headers(self) -> list[str]:
        return list(self._headers)

    @property
    def sheets(self) -> list[SubSheet]:
        return [s.copy() for s in self._sheets]

    @property
    def sheet_count(self) -> int:
        return len(self._sheets)

    def sheet_names(self) -> list[str]:
        return [s.name for s in self._sheets]

    def sheet(self, index: int) -> SubSheet:
        self._check_index(index)
        return self._sheets[index].copy()

    # ------------------------------------------------------------------
    # RunnableStep
    # ------------------------------------------------------------------

    def get_headers(self) -> list[str]:
        return self.headers

    def source_rows(self) -> tuple[list[str], list[list[Cell]]]:
        """Every sub-sheet row, prefixed with the sub-sheet's name."""
        rows: list[list[Cell]] = []
        for sub in self._sheets:
            for values in sub.grid.values():
                row_index = len(rows)
                rows.append(
                    [
                        Cell(value, row_index, col)
                        for col, value in enumerate([sub.name, *values])
                    ]
                )
        return [SHEET_HEADER, *self._headers], rows

    def snapshot(self) -> list[SubSheet]:
        return self.sheets

    def replace_data(self, data: Sequence[SubSheet], notify: bool = True) -> None:
        for sub in data:
            sub.grid.validate()
        self._commit([s.copy() for s in data], notify)

    async def run(self) -> None:
        await self.run_find()
        await self.run_cells()

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "kind": self.kind.value,
            "headers": self.headers,
            "sheets": [
                {
                    "name": s.name,
                    "origin": [cell.value for cell in s.origin],
                    "rows": s.grid.values(),
                    "entity_id": s.entity_id,
                }
                for s in self._sheets
            ],
            "active_index": self.active_index,
            "visible_indices": self.visible_indices(),
        }

    # ------------------------------------------------------------------
    # Shared-header mutations
    # ------------------------------------------------------------------

    def rename_header(self, col: int, name: str) -> None:
        if not 0 <= col < len(self._headers):
            raise CellOutOfRangeError(0, col, len(self._headers))
        self._headers[col] = name
        self._commit(self._sheets)

    def add_column(self, name: str | None = None) -> None:
        self._headers.append(name if name is not None else f"Column {len(self._headers) + 1}")
        self._commit(self._sheets)

    def delete_column(self, col: int) -> None:
        if len(self._headers) <= 1:
            return
        if not 0 <= col < len(self._headers):
            raise CellOutOfRangeError(0, col, len(self._headers))
        del self._headers[col]
        self._commit(
            [replace(s, grid=s.grid.with_column_deleted(col)) for s in self._sheets]
        )

    def set_headers(self, headers: Sequence[str]) -> None:
        """Replace the shared header list, keeping values by column position."""
        if not headers:
            return
        self._headers = list(headers)
        self._commit(self._sheets)

    # ------------------------------------------------------------------
    # Per-sub-sheet mutations
    # ------------------------------------------------------------------

    def _update_sheet(self, index: int, grid: Grid) -> None:
        self._check_index(index)
        sheets = list(self._sheets)
        sheets[index] = replace(sheets[index], grid=grid)
        self._commit(sheets)

    def set_cell(self, index: int, row: int, col: int, value: str) -> None:
        self._check_index(index)
        self._update_sheet(index, self._sheets[index].grid.with_cell(row, col, value))

    def add_row(self, index: int) -> None:
        self._check_index(index)
        self._update_sheet(index, self._sheets[index].grid.with_row_added())

    def delete_row(self, index: int, row: int) -> None:
        self._check_index(index)
        self._update_sheet(index, self._sheets[index].grid.with_row_deleted(row))

    def add_sheet(self, name: str | None = None) -> SubSheet:
        """Append a blank sub-sheet and make it the active one."""
        index = len(self._sheets)
        sheet_title = name or f"Sheet {index + 1}"
        sub = SubSheet(
            name=sheet_title,
            grid=Grid.blank(self._headers),
            origin=[Cell(sheet_title, index, 0)],
        )
        self._commit([*self._sheets, sub])
        self.select(len(self._sheets) - 1)
        return self._sheets[-1].copy()

    def delete_sheet(self, index: int) -> None:
        """Remove a sub-sheet; removing the last one leaves one blank sheet."""
        self._check_index(index)
        self._commit([s for i, s in enumerate(self._sheets) if i != index])

    def clear_sheets(self) -> None:
        """Drop every sub-sheet, leaving exactly one empty one."""
        self._commit([])

    def remove_entity(self, entity_id: str) -> None:
        """Drop the sub-sheet backed by a deleted storage entity."""
        sheets = [s for s in self._sheets if s.entity_id != entity_id]
        if len(sheets) == len(self._sheets):
            return
        logger.info("Removing sub-sheet of deleted entity", entity_id=entity_id)
        self._commit(sheets)

    # ------------------------------------------------------------------
    # Visible window
    # ------------------------------------------------------------------

    def select(self, index: int) -> None:
        """Make a sub-sheet active, shifting the window so it is visible."""
        self._check_index(index)
        self.active_index = index
        if index < self.window_start:
            self.window_start = index
        elif index >= self.window_start + self.window_size:
            self.window_start = index - self.window_size + 1

    def visible_indices(self) -> list[int]:
        end = min(self.window_start + self.window_size, len(self._sheets))
        return list(range(self.window_start, end))

    def _clamp_window(self) -> None:
        last = max(len(self._sheets) - 1, 0)
        self.active_index = min(self.active_index, last)
        self.window_start = min(self.window_start, max(len(self._sheets) - self.window_size, 0))
        self.window_start = min(self.window_start, self.active_index)

    # ------------------------------------------------------------------
    # Remote actions
    # ------------------------------------------------------------------

    def find_query(self, index: int) -> str:
        header = self._headers[0].strip() if self._headers else ""
        return f"{header} {self._sheets[index].name}".strip()

    def _replace_grids(self, grids: dict[str, Grid]) -> int:
        """Swap in new grids by sub-sheet key.

        Sub-sheets deleted while their call was in flight are skipped.
        """
        updated = sum(1 for s in self._sheets if s.key in grids)
        if updated:
            self._commit(
                [replace(s, grid=grids[s.key]) if s.key in grids else s for s in self._sheets]
            )
        return updated

    async def run_find(self) -> bool:
        """Run Find for every sub-sheet concurrently.

        Returns:
            True when at least one sub-sheet was filled.
        """
        with self._exclusive("find") as acquired:
            if not acquired:
                return False

            subs = list(self._sheets)
            with timed_operation(logger, "three_d_find") as metrics:
                found = await asyncio.gather(
                    *(
                        find_rows(self.collaborators, self.find_query(index))
                        for index in range(len(subs))
                    )
                )
                metrics.sheets_processed = len(subs)
                metrics.api_calls = len(subs)
                metrics.failures = sum(1 for names in found if names is None)

            current = {s.key: s.grid for s in self._sheets}
            grids = {
                sub.key: current[sub.key].with_rows([[name] for name in names])
                for sub, names in zip(subs, found)
                if names and sub.key in current
            }
            return self._replace_grids(grids) > 0

    async def run_cells(self) -> int:
        """Run RunCells over every sub-sheet concurrently.

        Answers are applied to each sub-sheet's current rows by column-0
        value, as on a single sheet.

        Returns:
            Total number of rows updated across all sub-sheets.
        """
        with self._exclusive("cells") as acquired:
            if not acquired:
                return 0

            subs = list(self._sheets)
            answers = await asyncio.gather(
                *(fill_rows(self.collaborators, sub.grid) for sub in subs)
            )

            current = {s.key: s.grid for s in self._sheets}
            grids: dict[str, Grid] = {}
            total = 0
            for sub, results in zip(subs, answers):
                if sub.key not in current:
                    continue
                grid, updated = apply_row_results(current[sub.key], results)
                if updated:
                    grids[sub.key] = grid
                    total += updated
            self._replace_grids(grids)
            return total

    # ------------------------------------------------------------------
    # Storage binding
    # ------------------------------------------------------------------

    def bind_storage(self, storage: SpreadsheetStorage) -> None:
        """Persist this stack, replacing whatever the storage held."""
        self.storage = storage
        storage.reset(self._headers)
        self._sheets = [replace(s, entity_id=None) for s in self._sheets]
        self._sync_storage()
        storage.add_delete_listener(self.remove_entity)

    def unbind_storage(self) -> None:
        if self.storage is not None:
            self.storage.remove_delete_listener(self.remove_entity)
        self.storage = None

    def _delete_entity_quietly(self, entity_id: str) -> None:
        if self.storage is None:
            return
        self.storage.remove_delete_listener(self.remove_entity)
        try:
            self.storage.delete_entity(entity_id)
        finally:
            self.storage.add_delete_listener(self.remove_entity)

    def _sync_storage(self) -> None:
        if self.storage is None:
            return

        storage = self.storage
        live_ids = {s.entity_id for s in self._sheets if s.entity_id}
        for entity in storage.get_state().entities:
            if entity.id not in live_ids:
                self._delete_entity_quietly(entity.id)

        if storage.headers != self._headers:
            storage.update_headers(self._headers)

        sheets = []
        for sub in self._sheets:
            if sub.entity_id is None:
                sub = replace(sub, entity_id=storage.create_entity(sub.name).id)
            else:
                storage.update_entity(sub.entity_id, name=sub.name)
            storage.replace_entity_rows(sub.entity_id, sub.grid)
            sheets.append(sub)
        self._sheets = sheets
