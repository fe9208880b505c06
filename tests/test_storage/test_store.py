"""Tests for the key/value state stores."""

from pathlib import Path

import pytest

from spreadsheet_workflow.storage.store import InMemoryStateStore, JsonFileStateStore
from spreadsheet_workflow.utils.exceptions import ErrorCode, StorageError


class TestInMemoryStateStore:
    """Tests for InMemoryStateStore."""

    def test_missing_key(self) -> None:
        assert InMemoryStateStore().load("nothing") is None

    def test_loaded_blob_is_detached(self) -> None:
        store = InMemoryStateStore()
        store.save("state", {"headers": ["Company"]})

        loaded = store.load("state")
        assert loaded is not None
        loaded["headers"].append("CEO")

        assert store.load("state") == {"headers": ["Company"]}


class TestJsonFileStateStore:
    """Tests for JsonFileStateStore."""

    def test_save_creates_directory(self, tmp_path: Path) -> None:
        store = JsonFileStateStore(tmp_path / "nested" / "dir")
        store.save("state", {"headers": ["Company"], "entities": []})

        assert (tmp_path / "nested" / "dir" / "state.json").exists()
        assert store.load("state") == {"headers": ["Company"], "entities": []}

    def test_no_temp_file_left_behind(self, tmp_path: Path) -> None:
        store = JsonFileStateStore(tmp_path)
        store.save("state", {"a": 1})
        store.save("state", {"a": 2})

        assert sorted(p.name for p in tmp_path.iterdir()) == ["state.json"]
        assert store.load("state") == {"a": 2}

    def test_missing_file(self, tmp_path: Path) -> None:
        assert JsonFileStateStore(tmp_path).load("state") is None

    def test_corrupt_file(self, tmp_path: Path) -> None:
        (tmp_path / "state.json").write_text("{not json", encoding="utf-8")

        with pytest.raises(StorageError) as exc_info:
            JsonFileStateStore(tmp_path).load("state")

        assert exc_info.value.error_code == ErrorCode.STORAGE_READ_ERROR
        assert exc_info.value.key == "state"
