"""Persistence for the spreadsheet state blob."""

from spreadsheet_workflow.storage.spreadsheet_storage import (
    GlobalState,
    SpreadsheetEntity,
    SpreadsheetStorage,
)
from spreadsheet_workflow.storage.store import (
    InMemoryStateStore,
    JsonFileStateStore,
    StateStore,
)

__all__ = [
    "GlobalState",
    "InMemoryStateStore",
    "JsonFileStateStore",
    "SpreadsheetEntity",
    "SpreadsheetStorage",
    "StateStore",
]
