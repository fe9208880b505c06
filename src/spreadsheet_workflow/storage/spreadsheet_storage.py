"""Persisted spreadsheet state: shared headers plus one entity per sheet.

The whole state is one JSON blob stored under a fixed key. Each entity keeps
its rows as ``row key -> {header -> value}`` so a header change can re-key
every row without knowing column positions.
"""

import threading
import uuid
from collections.abc import Callable, Sequence
from typing import Any

from pydantic import Field

from spreadsheet_workflow.config import settings
from spreadsheet_workflow.models import CamelModel
from spreadsheet_workflow.sheets.grid import Cell, Grid, blank_row
from spreadsheet_workflow.storage.store import StateStore
from spreadsheet_workflow.utils.exceptions import EntityNotFoundError
from spreadsheet_workflow.utils.logging import get_logger

logger = get_logger(__name__)

EntityRows = dict[str, dict[str, str]]
DeleteListener = Callable[[str], None]


class SpreadsheetEntity(CamelModel):
    """One persisted sheet."""

    id: str
    name: str
    rows: EntityRows = Field(default_factory=dict)


class GlobalState(CamelModel):
    headers: list[str] = Field(default_factory=list)
    entities: list[SpreadsheetEntity] = Field(default_factory=list)


def _sorted_row_keys(rows: EntityRows) -> list[str]:
    return sorted(
        rows, key=lambda key: (0, int(key), "") if key.isdigit() else (1, 0, key)
    )


class SpreadsheetStorage:
    """Read and write the spreadsheet blob through a StateStore.

    Every mutation saves the whole state. Updates addressed to an unknown
    entity id are ignored.
    """

    def __init__(self, store: StateStore, storage_key: str | None = None) -> None:
        self.store = store
        self.storage_key = storage_key or settings.storage_key
        self._lock = threading.RLock()
        self._delete_listeners: list[DeleteListener] = []
        self._state = self._load_state()

    def _load_state(self) -> GlobalState:
        stored = self.store.load(self.storage_key)
        if stored:
            return GlobalState.model_validate(stored)
        return GlobalState()

    def _save_state(self) -> None:
        self.store.save(
            self.storage_key, self._state.model_dump(mode="json", by_alias=True)
        )

    def _find(self, entity_id: str) -> SpreadsheetEntity | None:
        return next((e for e in self._state.entities if e.id == entity_id), None)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_delete_listener(self, listener: DeleteListener) -> None:
        """Register a callback invoked with the id of each deleted entity."""
        self._delete_listeners.append(listener)

    def remove_delete_listener(self, listener: DeleteListener) -> None:
        if listener in self._delete_listeners:
            self._delete_listeners.remove(listener)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def get_state(self) -> GlobalState:
        with self._lock:
            return self._state.model_copy(deep=True)

    @property
    def headers(self) -> list[str]:
        return list(self._state.headers)

    def reset(self, headers: Sequence[str]) -> None:
        """Drop every entity and start over with ``headers``."""
        with self._lock:
            self._state = GlobalState(headers=list(headers))
            self._save_state()

    def update_headers(self, headers: Sequence[str]) -> None:
        """Replace the headers and re-key every row.

        Values whose header survives are kept; new headers start blank and
        dropped headers lose their values.
        """
        with self._lock:
            self._state.headers = list(headers)
            for entity in self._state.entities:
                entity.rows = {
                    row_key: {header: row.get(header, "") for header in headers}
                    for row_key, row in entity.rows.items()
                }
            self._save_state()

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def create_entity(self, name: str) -> SpreadsheetEntity:
        entity = SpreadsheetEntity(id=str(uuid.uuid4()), name=name)
        with self._lock:
            self._state.entities.append(entity)
            self._save_state()
        logger.debug("Entity created", entity_id=entity.id, name=name)
        return entity.model_copy(deep=True)

    def get_entity(self, entity_id: str) -> SpreadsheetEntity:
        """Return a copy of an entity.

        Raises:
            EntityNotFoundError: If no entity has this id.
        """
        with self._lock:
            entity = self._find(entity_id)
            if entity is None:
                raise EntityNotFoundError(entity_id)
            return entity.model_copy(deep=True)

    def update_entity(
        self,
        entity_id: str,
        name: str | None = None,
        rows: EntityRows | None = None,
    ) -> None:
        with self._lock:
            entity = self._find(entity_id)
            if entity is None:
                return
            if name is not None:
                entity.name = name
            if rows is not None:
                entity.rows = {k: dict(v) for k, v in rows.items()}
            self._save_state()

    def delete_entity(self, entity_id: str) -> None:
        """Remove an entity and notify delete listeners."""
        with self._lock:
            before = len(self._state.entities)
            self._state.entities = [
                e for e in self._state.entities if e.id != entity_id
            ]
            removed = len(self._state.entities) != before
            self._save_state()

        if removed:
            logger.debug("Entity deleted", entity_id=entity_id)
            for listener in list(self._delete_listeners):
                listener(entity_id)

    def update_sub_entity(
        self, entity_id: str, row_key: str, column_name: str, value: str
    ) -> None:
        """Set one cell of an entity, creating the row when needed."""
        with self._lock:
            entity = self._find(entity_id)
            if entity is None:
                return
            entity.rows.setdefault(row_key, {})[column_name] = value
            self._save_state()

    def initialize_entity_rows(self, entity_id: str, row_count: int) -> None:
        """Create blank rows ``0..row_count-1`` that do not exist yet."""
        with self._lock:
            entity = self._find(entity_id)
            if entity is None:
                return
            for index in range(row_count):
                entity.rows.setdefault(
                    str(index), {header: "" for header in self._state.headers}
                )
            self._save_state()

    def replace_entity_rows(self, entity_id: str, grid: Grid) -> None:
        """Overwrite an entity's rows with a grid's values."""
        rows = {
            str(index): dict(record) for index, record in enumerate(grid.records())
        }
        self.update_entity(entity_id, rows=rows)

    def get_entity_data(self, entity_id: str) -> list[list[Cell]]:
        """Return an entity's rows as cells under the shared headers.

        Unknown ids yield an empty list.
        """
        with self._lock:
            entity = self._find(entity_id)
            if entity is None:
                return []
            headers = list(self._state.headers)
            rows = entity.rows
            return [
                [
                    Cell(rows[row_key].get(header, ""), row_index, col)
                    for col, header in enumerate(headers)
                ]
                for row_index, row_key in enumerate(_sorted_row_keys(rows))
            ]

    def get_entity_grid(self, entity_id: str) -> Grid:
        """Return an entity as a grid, with one blank row when it has none."""
        rows = self.get_entity_data(entity_id)
        headers = self.headers
        return Grid(headers=headers, rows=rows or [blank_row(0, len(headers))])

    def to_dict(self) -> dict[str, Any]:
        return self.get_state().model_dump(mode="json", by_alias=True)
