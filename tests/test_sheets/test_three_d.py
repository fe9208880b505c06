"""Tests for the 3D sheet stack."""

import asyncio

import pytest

from spreadsheet_workflow.sheets.grid import Cell, Grid
from spreadsheet_workflow.sheets.three_d import (
    SubSheet,
    ThreeDStack,
    build_sub_sheets,
    sheet_name,
)
from spreadsheet_workflow.storage.spreadsheet_storage import SpreadsheetStorage
from spreadsheet_workflow.utils.exceptions import CellOutOfRangeError
from tests.fixtures import FakeCollaborators, settle


def origin_rows(*names: str) -> list[list[Cell]]:
    return [[Cell(name, index, 0), Cell("", index, 1)] for index, name in enumerate(names)]


@pytest.fixture
def stack(collaborators: FakeCollaborators) -> ThreeDStack:
    return ThreeDStack.from_rows(
        collaborators,
        ["Company", "Notes"],
        origin_rows("Acme", "Globex", "Initech"),
        headers=["Product", "Price"],
    )


class TestConstruction:
    """Tests for building a stack from source rows."""

    def test_one_sub_sheet_per_row(self, stack: ThreeDStack) -> None:
        assert stack.sheet_names() == ["Acme", "Globex", "Initech"]
        assert stack.source_headers == ["Company", "Notes"]
        assert stack.sheet(1).origin == origin_rows("Acme", "Globex", "Initech")[1]
        for sub in stack.sheets:
            assert sub.grid.headers == ["Product", "Price"]
            assert sub.grid.values() == [["", ""]]

    def test_blank_origin_gets_placeholder_name(self) -> None:
        assert sheet_name([Cell("  ", 0, 0)], 4) == "Sheet 5"
        assert sheet_name([], 0) == "Sheet 1"

    def test_default_headers(self, collaborators: FakeCollaborators) -> None:
        stack = ThreeDStack.from_rows(collaborators, ["Input"], origin_rows("Acme"))
        assert stack.get_headers() == ["Input"]

    def test_empty_source_leaves_one_blank_sheet(
        self, collaborators: FakeCollaborators
    ) -> None:
        stack = ThreeDStack.from_rows(collaborators, ["Input"], [])
        assert stack.sheet_names() == ["Sheet 1"]

    def test_sub_sheet_identity(self) -> None:
        (sub,) = build_sub_sheets(origin_rows("Acme"), ["Input"])
        assert sub.identity == "Acme"
        assert sub.copy().key == sub.key


class TestEditing:
    """Tests for shared-header and per-sheet edits."""

    def test_add_column_applies_to_every_sheet(self, stack: ThreeDStack) -> None:
        stack.add_column()
        assert stack.headers == ["Product", "Price", "Column 3"]
        for sub in stack.sheets:
            assert sub.grid.headers == stack.headers
            assert all(len(row) == 3 for row in sub.grid.rows)

    def test_delete_only_column_is_noop(self, collaborators: FakeCollaborators) -> None:
        stack = ThreeDStack.from_rows(collaborators, ["Input"], origin_rows("Acme"))
        stack.delete_column(0)
        assert stack.headers == ["Input"]

    def test_add_then_delete_column_round_trips(self, stack: ThreeDStack) -> None:
        stack.set_cell(0, 0, 1, "9.99")
        before = [s.grid for s in stack.sheets]
        stack.add_column()
        stack.delete_column(2)
        assert [s.grid for s in stack.sheets] == before

    def test_set_cell_targets_one_sheet(self, stack: ThreeDStack) -> None:
        stack.set_cell(1, 2, 0, "Widget")
        assert stack.sheet(1).grid.values() == [["", ""], ["", ""], ["Widget", ""]]
        assert stack.sheet(0).grid.values() == [["", ""]]

    def test_bad_sheet_index(self, stack: ThreeDStack) -> None:
        with pytest.raises(CellOutOfRangeError):
            stack.set_cell(7, 0, 0, "x")

    def test_rows_per_sheet(self, stack: ThreeDStack) -> None:
        stack.add_row(2)
        stack.add_row(2)
        stack.delete_row(2, 0)
        assert stack.sheet(2).grid.row_count == 2

    def test_set_headers_keeps_values_by_position(self, stack: ThreeDStack) -> None:
        stack.set_cell(0, 0, 0, "Widget")
        stack.set_headers(["Item"])
        assert stack.headers == ["Item"]
        assert stack.sheet(0).grid.values() == [["Widget"]]

    def test_add_sheet_selects_it(self, stack: ThreeDStack) -> None:
        sub = stack.add_sheet("Umbrella")
        assert sub.name == "Umbrella"
        assert stack.sheet_count == 4
        assert stack.active_index == 3

    def test_delete_last_sheet_leaves_one_blank(
        self, collaborators: FakeCollaborators
    ) -> None:
        stack = ThreeDStack.from_rows(collaborators, ["Input"], origin_rows("Acme"))
        stack.delete_sheet(0)
        assert stack.sheet_names() == ["Sheet 1"]

    def test_clear_sheets_leaves_one_blank(self, stack: ThreeDStack) -> None:
        stack.clear_sheets()
        assert stack.sheet_count == 1
        assert stack.sheet(0).grid.headers == ["Product", "Price"]

    def test_source_rows_prefix_sheet_name(self, stack: ThreeDStack) -> None:
        stack.set_cell(0, 0, 0, "Widget")
        headers, rows = stack.source_rows()
        assert headers == ["Sheet", "Product", "Price"]
        assert [[cell.value for cell in row] for row in rows] == [
            ["Acme", "Widget", ""],
            ["Globex", "", ""],
            ["Initech", "", ""],
        ]

    def test_replace_data_copies_input(self, stack: ThreeDStack) -> None:
        subs = [SubSheet(name="Solo", grid=Grid.blank(["Product", "Price"]))]
        stack.replace_data(subs)
        subs[0].name = "Changed"
        assert stack.sheet_names() == ["Solo"]


class TestVisibleWindow:
    """Tests for the active/visible sub-sheet window."""

    def test_default_window(self, stack: ThreeDStack) -> None:
        assert stack.visible_indices() == [0, 1, 2]

    def test_selecting_outside_window_shifts_it(
        self, collaborators: FakeCollaborators
    ) -> None:
        stack = ThreeDStack.from_rows(
            collaborators, ["Input"], origin_rows("A", "B", "C", "D", "E"), window_size=2
        )
        stack.select(3)
        assert stack.visible_indices() == [2, 3]
        stack.select(0)
        assert stack.visible_indices() == [0, 1]

    def test_hidden_sheets_stay_editable(self, collaborators: FakeCollaborators) -> None:
        stack = ThreeDStack.from_rows(
            collaborators, ["Input"], origin_rows("A", "B", "C", "D"), window_size=1
        )
        stack.set_cell(3, 0, 0, "hidden edit")
        assert stack.visible_indices() == [0]
        assert stack.sheet(3).grid.values() == [["hidden edit"]]

    def test_window_shrinks_with_sheets(self, stack: ThreeDStack) -> None:
        stack.select(2)
        stack.delete_sheet(2)
        assert stack.active_index == 1
        assert stack.visible_indices() == [0, 1]


class TestRemoteActions:
    """Tests for fan-out Find and RunCells."""

    async def test_find_runs_once_per_sheet(
        self, collaborators: FakeCollaborators, stack: ThreeDStack
    ) -> None:
        collaborators.find_results = {
            "Product Acme": ["Anvil", "Rocket"],
            "Product Globex": ["Doomsday device"],
        }

        assert await stack.run_find() is True

        assert sorted(query for query, _ in collaborators.find_calls) == [
            "Product Acme",
            "Product Globex",
            "Product Initech",
        ]
        assert stack.sheet(0).grid.column_values(0) == ["Anvil", "Rocket"]
        assert stack.sheet(1).grid.column_values(0) == ["Doomsday device"]
        assert stack.sheet(2).grid.values() == [["", ""]]

    async def test_find_failure_is_isolated(
        self, collaborators: FakeCollaborators, stack: ThreeDStack
    ) -> None:
        collaborators.default_find_results = ["Thing"]
        collaborators.fail_on.add("find:Product Globex")

        await stack.run_find()

        assert stack.sheet(0).grid.column_values(0) == ["Thing"]
        assert stack.sheet(1).grid.values() == [["", ""]]
        assert stack.sheet(2).grid.column_values(0) == ["Thing"]

    async def test_cells_fill_every_sheet(
        self, collaborators: FakeCollaborators, stack: ThreeDStack
    ) -> None:
        stack.set_cell(0, 0, 0, "Anvil")
        stack.set_cell(2, 0, 0, "Stapler")
        stack.set_cell(2, 1, 0, "Printer")

        assert await stack.run_cells() == 3

        assert stack.sheet(0).grid.values() == [["Anvil", "Price of Anvil"]]
        assert stack.sheet(1).grid.values() == [["", ""]]
        assert stack.sheet(2).grid.values() == [
            ["Stapler", "Price of Stapler"],
            ["Printer", "Price of Printer"],
        ]

    async def test_run_is_find_then_cells(
        self, collaborators: FakeCollaborators, stack: ThreeDStack
    ) -> None:
        collaborators.default_find_results = ["Item"]
        await stack.run()
        for sub in stack.sheets:
            assert sub.grid.values() == [["Item", "Price of Item"]]

    async def test_edits_during_cells_are_kept(
        self, collaborators: FakeCollaborators, stack: ThreeDStack
    ) -> None:
        stack.set_cell(0, 0, 0, "Anvil")
        stack.set_cell(2, 0, 0, "Stapler")
        collaborators.gate = asyncio.Event()

        task = asyncio.create_task(stack.run_cells())
        await settle()
        stack.set_cell(0, 1, 0, "Hammer")
        stack.delete_sheet(2)
        collaborators.gate.set()

        assert await task == 1
        assert stack.sheet_names() == ["Acme", "Globex"]
        assert stack.sheet(0).grid.values() == [["Anvil", "Price of Anvil"], ["Hammer", ""]]

    async def test_find_skips_sheets_deleted_meanwhile(
        self, collaborators: FakeCollaborators, stack: ThreeDStack
    ) -> None:
        collaborators.default_find_results = ["Thing"]
        collaborators.gate = asyncio.Event()

        task = asyncio.create_task(stack.run_find())
        await settle()
        stack.delete_sheet(0)
        assert await stack.run_find() is False
        collaborators.gate.set()

        assert await task is True
        assert len(collaborators.find_calls) == 3
        assert stack.sheet_names() == ["Globex", "Initech"]
        assert [sub.grid.column_values(0) for sub in stack.sheets] == [["Thing"], ["Thing"]]


class TestStorageBinding:
    """Tests for a stack bound to persisted state."""

    def test_bind_writes_entities(
        self, stack: ThreeDStack, storage: SpreadsheetStorage
    ) -> None:
        stack.set_cell(0, 0, 0, "Anvil")
        stack.bind_storage(storage)

        state = storage.get_state()
        assert state.headers == ["Product", "Price"]
        assert [entity.name for entity in state.entities] == ["Acme", "Globex", "Initech"]
        assert state.entities[0].rows == {"0": {"Product": "Anvil", "Price": ""}}
        assert all(sub.entity_id for sub in stack.sheets)

    def test_edits_are_written_through(
        self, stack: ThreeDStack, storage: SpreadsheetStorage
    ) -> None:
        stack.bind_storage(storage)
        stack.rename_header(1, "Cost")
        stack.set_cell(1, 0, 1, "12")

        entity_id = stack.sheet(1).entity_id
        assert entity_id is not None
        assert storage.headers == ["Product", "Cost"]
        assert storage.get_entity(entity_id).rows == {
            "0": {"Product": "", "Cost": "12"}
        }

    def test_deleting_sheet_deletes_entity(
        self, stack: ThreeDStack, storage: SpreadsheetStorage
    ) -> None:
        stack.bind_storage(storage)
        stack.delete_sheet(0)
        assert [e.name for e in storage.get_state().entities] == ["Globex", "Initech"]

    def test_deleting_entity_removes_sheet(
        self, stack: ThreeDStack, storage: SpreadsheetStorage
    ) -> None:
        stack.bind_storage(storage)
        entity_id = stack.sheet(1).entity_id
        assert entity_id is not None

        storage.delete_entity(entity_id)

        assert stack.sheet_names() == ["Acme", "Initech"]

    def test_unbind_stops_cascade(
        self, stack: ThreeDStack, storage: SpreadsheetStorage
    ) -> None:
        stack.bind_storage(storage)
        entity_id = stack.sheet(0).entity_id
        assert entity_id is not None
        stack.unbind_storage()

        storage.delete_entity(entity_id)

        assert stack.sheet_count == 3

    def test_restore_from_storage(
        self,
        collaborators: FakeCollaborators,
        stack: ThreeDStack,
        storage: SpreadsheetStorage,
    ) -> None:
        stack.set_cell(2, 0, 0, "Stapler")
        stack.bind_storage(storage)
        stack.unbind_storage()

        restored = ThreeDStack.from_storage(collaborators, storage)

        assert restored.headers == ["Product", "Price"]
        assert restored.sheet_names() == ["Acme", "Globex", "Initech"]
        assert restored.sheet(2).grid.values() == [["Stapler", ""]]
        assert restored.storage is storage
