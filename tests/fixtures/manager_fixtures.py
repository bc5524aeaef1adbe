"""File manager fixtures backed by SQLite and the in-memory store."""
from datetime import datetime, timedelta, timezone

import pytest

from file_alloc.adapters.storage import MemoryFileStore
from file_alloc.alloc_table import FileAllocTable
from file_alloc.manager import FileManager
from tests.consts import TEST_FILE_BUCKET

UPLOAD_BASE_URL = "memory://uploads/"


@pytest.fixture
def memory_store():
    return MemoryFileStore(base_url=UPLOAD_BASE_URL)


@pytest.fixture
def alloc_table(database):
    return FileAllocTable(database, TEST_FILE_BUCKET)


@pytest.fixture
def file_manager(alloc_table, memory_store):
    return FileManager(alloc_table, memory_store)


def days_ago(days: float) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=days)
