"""Key/value stores holding JSON-serializable state blobs."""

import json
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from spreadsheet_workflow.config import settings
from spreadsheet_workflow.utils.exceptions import ErrorCode, StorageError
from spreadsheet_workflow.utils.logging import get_logger

logger = get_logger(__name__)


class StateStore(ABC):
    """Load and save whole JSON blobs by key."""

    @abstractmethod
    def load(self, key: str) -> dict[str, Any] | None:
        """Return the blob stored under ``key``, or None."""

    @abstractmethod
    def save(self, key: str, data: dict[str, Any]) -> None:
        """Replace the blob stored under ``key``."""


class InMemoryStateStore(StateStore):
    """Thread-safe store that keeps blobs in a dictionary."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = threading.RLock()

    def load(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def save(self, key: str, data: dict[str, Any]) -> None:
        # Stored serialized so callers never share mutable state with the store.
        with self._lock:
            self._data[key] = json.dumps(data)


class JsonFileStateStore(StateStore):
    """Store that writes one ``{key}.json`` file per blob."""

    def __init__(self, directory: str | Path | None = None) -> None:
        self.directory = Path(directory or settings.storage_dir)
        self._lock = threading.RLock()

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def load(self, key: str) -> dict[str, Any] | None:
        path = self._path(key)
        with self._lock:
            if not path.exists():
                return None
            try:
                data: dict[str, Any] = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                raise StorageError(
                    f"Failed to read state: {e}",
                    error_code=ErrorCode.STORAGE_READ_ERROR,
                    key=key,
                ) from e
        return data

    def save(self, key: str, data: dict[str, Any]) -> None:
        path = self._path(key)
        tmp_path = path.with_suffix(".json.tmp")
        with self._lock:
            try:
                self.directory.mkdir(parents=True, exist_ok=True)
                tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
                tmp_path.replace(path)
            except OSError as e:
                raise StorageError(
                    f"Failed to write state: {e}",
                    error_code=ErrorCode.STORAGE_WRITE_ERROR,
                    key=key,
                ) from e
        logger.debug("State saved", key=key, path=str(path))
