import sqlite3
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "files.db"

# Ordered along the lifecycle; the last two are terminal
FILE_STATUSES = ("created", "uploading", "uploaded", "ready", "rejected")

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def init_db(db_path: str = DEFAULT_DB_PATH) -> None:
    """Initialize database with the files alloc table."""
    conn = None
    try:
        conn = sqlite3.connect(db_path)
        cursor = conn.cursor()

        statuses = ", ".join(f"'{status}'" for status in FILE_STATUSES)
        cursor.execute(f'''
            CREATE TABLE IF NOT EXISTS files (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                bucket VARCHAR(100) NOT NULL,
                bucketname VARCHAR(500) NOT NULL UNIQUE,
                status VARCHAR(20) NOT NULL DEFAULT 'created'
                    CHECK (status IN ({statuses})),
                size INTEGER NULL,                      -- Set once the object is confirmed in the store
                hash VARCHAR(128) NULL,
                creation TIMESTAMP NULL DEFAULT CURRENT_TIMESTAMP  -- UTC, anchors expiry
            )
        ''')
        cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_files_bucket_status
            ON files(bucket, status)
        ''')
        cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_files_hash
            ON files(hash)
        ''')

        conn.commit()
        logger.info(f"Files table initialized in database: {db_path}")
    finally:
        if conn:
            conn.close()


def to_db_timestamp(value: datetime) -> str:
    """Format a datetime the way SQLite's CURRENT_TIMESTAMP does (UTC).

    Naive datetimes are taken to be UTC already.
    """
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime(TIMESTAMP_FORMAT)


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Database:
    """SQLite connection provider for the alloc table.

    Two kinds of connections are handed out:

    - the ambient connection, in autocommit mode, shared by single-call
      operations;
    - one short-lived connection per transaction, opened with
      ``BEGIN IMMEDIATE`` so that a transaction holds the write lock for
      its whole duration.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, timeout: float = 30.0):
        self.db_path = db_path
        self.timeout = timeout
        self._ambient: Optional[sqlite3.Connection] = None

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        return conn

    @property
    def ambient(self) -> sqlite3.Connection:
        if self._ambient is None:
            self._ambient = self.connect()
        return self._ambient

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside one transaction.

        Commits when the block exits normally, rolls back and re-raises
        otherwise.
        """
        conn = self.connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def close(self) -> None:
        if self._ambient is not None:
            self._ambient.close()
            self._ambient = None
