from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from spreadsheet_workflow.services.llm_client import LLMClient, reset_llm_client
from spreadsheet_workflow.services.workflow_manager import reset_workflow_manager
from spreadsheet_workflow.storage.spreadsheet_storage import SpreadsheetStorage
from spreadsheet_workflow.storage.store import InMemoryStateStore
from tests.fixtures import FakeCollaborators


@pytest.fixture(autouse=True)
def reset_globals() -> Iterator[None]:
    """Keep process-wide singletons from leaking between tests."""
    reset_llm_client()
    reset_workflow_manager()
    yield
    reset_llm_client()
    reset_workflow_manager()


@pytest.fixture
def collaborators() -> FakeCollaborators:
    return FakeCollaborators()


@pytest.fixture
def storage() -> SpreadsheetStorage:
    """Spreadsheet storage backed by an in-memory store."""
    return SpreadsheetStorage(InMemoryStateStore(), storage_key="test_state")


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def make_llm_client(cache_dir: Path) -> Callable[[list[str]], LLMClient]:
    """Build an LLM client whose chat model replays ``responses`` in order."""

    def factory(responses: list[str]) -> LLMClient:
        return LLMClient(
            api_key="test-key",
            model="test-model",
            cache_dir=cache_dir,
            chat_model=FakeListChatModel(responses=responses),
        )

    return factory
