"""Database fixtures for tests."""
import pytest
from database.local import Database, init_db

TEST_DB = "test_files.db"


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / TEST_DB)
    init_db(path)
    return path


@pytest.fixture
def database(db_path):
    db = Database(db_path)
    yield db
    db.close()


@pytest.fixture
def conn(database):
    return database.ambient
