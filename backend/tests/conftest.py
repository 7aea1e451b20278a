"""Shared fixtures: temporary stores, initialized notebooks and a manual clock."""

from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio

from backend.src.services.local_store import LocalStore
from backend.src.services.notebook import NotebookService
from backend.tests.fakes import ManualScheduler


@pytest.fixture
def manual_scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def store(tmp_path: Path) -> LocalStore:
    """Fresh SQLite-backed store in a temp directory."""
    return LocalStore.at_path(tmp_path / "cogniflow.db")


@pytest_asyncio.fixture
async def notebook(store: LocalStore) -> NotebookService:
    """Initialized, empty notebook."""
    service = NotebookService(store, seed_on_empty=False)
    await service.initialize()
    return service


@pytest_asyncio.fixture
async def seeded_notebook(store: LocalStore) -> NotebookService:
    """Notebook loaded with the starter workspace."""
    service = NotebookService(store)
    await service.initialize()
    return service
