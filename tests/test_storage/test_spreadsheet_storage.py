"""Tests for SpreadsheetStorage."""

import pytest

from spreadsheet_workflow.sheets.grid import Grid
from spreadsheet_workflow.storage.spreadsheet_storage import SpreadsheetStorage
from spreadsheet_workflow.storage.store import InMemoryStateStore
from spreadsheet_workflow.utils.exceptions import EntityNotFoundError


@pytest.fixture
def company_storage(storage: SpreadsheetStorage) -> SpreadsheetStorage:
    storage.reset(["Product", "Price"])
    return storage


class TestEntities:
    """Tests for entity CRUD."""

    def test_create_and_get(self, company_storage: SpreadsheetStorage) -> None:
        entity = company_storage.create_entity("Acme")

        fetched = company_storage.get_entity(entity.id)
        assert fetched.name == "Acme"
        assert fetched.rows == {}

    def test_get_unknown_entity(self, company_storage: SpreadsheetStorage) -> None:
        with pytest.raises(EntityNotFoundError) as exc_info:
            company_storage.get_entity("missing")
        assert exc_info.value.entity_id == "missing"

    def test_returned_entities_are_copies(
        self, company_storage: SpreadsheetStorage
    ) -> None:
        entity = company_storage.create_entity("Acme")
        entity.name = "Changed"

        assert company_storage.get_entity(entity.id).name == "Acme"

    def test_update_unknown_entity_is_ignored(
        self, company_storage: SpreadsheetStorage
    ) -> None:
        company_storage.update_entity("missing", name="Ghost")
        company_storage.update_sub_entity("missing", "0", "Product", "Anvil")
        assert company_storage.get_state().entities == []

    def test_rename(self, company_storage: SpreadsheetStorage) -> None:
        entity = company_storage.create_entity("Acme")
        company_storage.update_entity(entity.id, name="Acme Corp")
        assert company_storage.get_entity(entity.id).name == "Acme Corp"

    def test_delete_notifies_listeners(
        self, company_storage: SpreadsheetStorage
    ) -> None:
        deleted: list[str] = []
        company_storage.add_delete_listener(deleted.append)
        entity = company_storage.create_entity("Acme")

        company_storage.delete_entity(entity.id)
        company_storage.delete_entity(entity.id)

        assert deleted == [entity.id]
        assert company_storage.get_state().entities == []

    def test_removed_listener_is_not_called(
        self, company_storage: SpreadsheetStorage
    ) -> None:
        deleted: list[str] = []
        company_storage.add_delete_listener(deleted.append)
        company_storage.remove_delete_listener(deleted.append)

        company_storage.delete_entity(company_storage.create_entity("Acme").id)
        assert deleted == []


class TestRows:
    """Tests for row-level operations."""

    def test_initialize_rows_keeps_existing(
        self, company_storage: SpreadsheetStorage
    ) -> None:
        entity = company_storage.create_entity("Acme")
        company_storage.update_sub_entity(entity.id, "0", "Product", "Anvil")

        company_storage.initialize_entity_rows(entity.id, 2)

        rows = company_storage.get_entity(entity.id).rows
        assert rows["0"]["Product"] == "Anvil"
        assert rows["1"] == {"Product": "", "Price": ""}

    def test_entity_data_orders_rows_numerically(
        self, company_storage: SpreadsheetStorage
    ) -> None:
        entity = company_storage.create_entity("Acme")
        for key, product in [("10", "Rocket"), ("2", "Magnet"), ("0", "Anvil")]:
            company_storage.update_sub_entity(entity.id, key, "Product", product)

        data = company_storage.get_entity_data(entity.id)

        assert [row[0].value for row in data] == ["Anvil", "Magnet", "Rocket"]
        assert [row[0].row for row in data] == [0, 1, 2]
        assert data[1][1].value == ""

    def test_entity_data_for_unknown_id(
        self, company_storage: SpreadsheetStorage
    ) -> None:
        assert company_storage.get_entity_data("missing") == []

    def test_entity_grid_has_a_blank_row_when_empty(
        self, company_storage: SpreadsheetStorage
    ) -> None:
        entity = company_storage.create_entity("Acme")
        grid = company_storage.get_entity_grid(entity.id)

        assert grid.headers == ["Product", "Price"]
        assert grid.values() == [["", ""]]

    def test_replace_rows(self, company_storage: SpreadsheetStorage) -> None:
        entity = company_storage.create_entity("Acme")
        grid = Grid.from_values(["Product", "Price"], [["Anvil", "10"], ["Magnet", "5"]])

        company_storage.replace_entity_rows(entity.id, grid)

        assert company_storage.get_entity_grid(entity.id).values() == [
            ["Anvil", "10"],
            ["Magnet", "5"],
        ]


class TestHeaders:
    """Tests for header changes."""

    def test_update_headers_rekeys_rows(
        self, company_storage: SpreadsheetStorage
    ) -> None:
        entity = company_storage.create_entity("Acme")
        company_storage.update_sub_entity(entity.id, "0", "Product", "Anvil")
        company_storage.update_sub_entity(entity.id, "0", "Price", "10")

        company_storage.update_headers(["Product", "Stock"])

        assert company_storage.headers == ["Product", "Stock"]
        assert company_storage.get_entity(entity.id).rows == {
            "0": {"Product": "Anvil", "Stock": ""}
        }

    def test_reset_drops_entities(self, company_storage: SpreadsheetStorage) -> None:
        company_storage.create_entity("Acme")
        company_storage.reset(["Name"])

        assert company_storage.get_state().entities == []
        assert company_storage.headers == ["Name"]


class TestPersistence:
    """Tests for saving through the underlying store."""

    def test_state_survives_a_new_instance(self) -> None:
        store = InMemoryStateStore()
        first = SpreadsheetStorage(store, storage_key="sheets")
        first.reset(["Product"])
        entity = first.create_entity("Acme")
        first.update_sub_entity(entity.id, "0", "Product", "Anvil")

        second = SpreadsheetStorage(store, storage_key="sheets")

        assert second.headers == ["Product"]
        assert second.get_entity(entity.id).rows == {"0": {"Product": "Anvil"}}

    def test_serialized_with_camel_case_keys(
        self, company_storage: SpreadsheetStorage
    ) -> None:
        company_storage.create_entity("Acme")
        data = company_storage.to_dict()

        assert data["headers"] == ["Product", "Price"]
        assert set(data["entities"][0]) == {"id", "name", "rows"}

    def test_saved_blob_layout(self) -> None:
        store = InMemoryStateStore()
        storage = SpreadsheetStorage(store, storage_key="test_state")
        storage.reset(["Product"])
        entity = storage.create_entity("Acme")
        storage.update_sub_entity(entity.id, "0", "Product", "Anvil")

        blob = store.load("test_state")

        assert blob is not None
        assert set(blob) == {"headers", "entities"}
        assert set(blob["entities"][0]) == {"id", "name", "rows"}
        assert blob["entities"][0]["rows"] == {"0": {"Product": "Anvil"}}

    def test_default_storage_key(self) -> None:
        assert SpreadsheetStorage(InMemoryStateStore()).storage_key == "spreadsheet_state"
