"""Unit test fixtures: cache clearing and in-process service components."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from credbuzz_service.config import clear_settings_cache
from credbuzz_service.core.state import reset_app_state
from credbuzz_service.oracle import StaticReviewOracle
from credbuzz_service.services.blob_store import BlobStore
from credbuzz_service.services.database import Database
from credbuzz_service.services.ledger import Ledger
from credbuzz_service.services.task_manager import TaskManager
from credbuzz_service.services.task_store import TaskStore
from tests.helpers import STATIC_REVIEW

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _clear_caches():
    """Clear settings cache and app state between tests."""
    clear_settings_cache()
    reset_app_state()
    yield
    clear_settings_cache()
    reset_app_state()


@pytest.fixture
def database(tmp_path: Path) -> Iterator[Database]:
    db = Database(str(tmp_path / "credbuzz.db"))
    yield db
    db.close()


@pytest.fixture
def ledger(database: Database) -> Ledger:
    return Ledger(database, starting_balance=50)


@pytest.fixture
def task_store(database: Database, ledger: Ledger) -> TaskStore:
    # Depends on ledger so the accounts table exists for foreign keys.
    return TaskStore(database)


@pytest.fixture
def blob_store(tmp_path: Path) -> BlobStore:
    return BlobStore(
        storage_path=str(tmp_path / "uploads"),
        max_file_size=1024,
        max_files_per_submission=3,
    )


@pytest.fixture
def task_manager(
    database: Database,
    task_store: TaskStore,
    ledger: Ledger,
    blob_store: BlobStore,
) -> TaskManager:
    return TaskManager(
        database=database,
        store=task_store,
        ledger=ledger,
        blob_store=blob_store,
        oracle=StaticReviewOracle(STATIC_REVIEW),
    )
