"""Query shapes for the `files` alloc table.

Every function takes an open sqlite3 connection as first argument and the
logical bucket as second, so it runs unchanged on the ambient connection or
inside a transaction.
"""

import sqlite3
import uuid
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from .local import FILE_STATUSES, to_db_timestamp

logger = logging.getLogger(__name__)

MAX_INSERT_ATTEMPTS = 5


def _row_to_dict(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    return dict(row) if row is not None else None


def _load_keys(conn: sqlite3.Connection, bucketnames: Iterable[str]) -> None:
    """Fill the connection's temp key table with a set of bucketnames.

    Used instead of `IN (?, ?, ...)` so key sets are not bounded by
    SQLite's host parameter limit.
    """
    conn.execute('CREATE TEMP TABLE IF NOT EXISTS file_keys (bucketname TEXT PRIMARY KEY)')
    conn.execute('DELETE FROM temp.file_keys')
    conn.executemany(
        'INSERT OR IGNORE INTO temp.file_keys (bucketname) VALUES (?)',
        ((name,) for name in bucketnames),
    )


def generate_bucketname() -> str:
    return uuid.uuid4().hex


def query_file(conn: sqlite3.Connection, bucket: str, bucketname: str) -> Optional[Dict[str, Any]]:
    cursor = conn.execute('''
        SELECT * FROM files
        WHERE bucket = ? AND bucketname = ?
    ''', (bucket, bucketname))
    return _row_to_dict(cursor.fetchone())


def query_files(conn: sqlite3.Connection, bucket: str, bucketnames: Iterable[str]) -> List[Dict[str, Any]]:
    _load_keys(conn, bucketnames)
    cursor = conn.execute('''
        SELECT * FROM files
        WHERE bucket = ?
          AND bucketname IN (SELECT bucketname FROM temp.file_keys)
        ORDER BY id
    ''', (bucket,))
    return [dict(row) for row in cursor.fetchall()]


def query_files_for_all(conn: sqlite3.Connection, bucket: str) -> List[Dict[str, Any]]:
    cursor = conn.execute('''
        SELECT * FROM files
        WHERE bucket = ?
        ORDER BY id
    ''', (bucket,))
    return [dict(row) for row in cursor.fetchall()]


def query_files_by_hash(conn: sqlite3.Connection, bucket: str, hash: str) -> List[Dict[str, Any]]:
    cursor = conn.execute('''
        SELECT * FROM files
        WHERE bucket = ? AND hash = ?
        ORDER BY id
    ''', (bucket, hash))
    return [dict(row) for row in cursor.fetchall()]


def create_file(
    conn: sqlite3.Connection,
    bucket: str,
    bucketname: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """Insert a new entry in `created` status.

    With an explicit bucketname a collision returns None. Without one, a
    fresh token is generated and the insert retried on collision, up to
    MAX_INSERT_ATTEMPTS times.
    """
    if bucketname:
        try:
            conn.execute('''
                INSERT INTO files (bucket, bucketname)
                VALUES (?, ?)
            ''', (bucket, bucketname))
        except sqlite3.IntegrityError:
            return None
        return query_file(conn, bucket, bucketname)

    return try_insert_unique(conn, bucket)


def try_insert_unique(conn: sqlite3.Connection, bucket: str) -> Optional[Dict[str, Any]]:
    for attempt in range(1, MAX_INSERT_ATTEMPTS + 1):
        bucketname = generate_bucketname()
        try:
            conn.execute('''
                INSERT INTO files (bucket, bucketname)
                VALUES (?, ?)
            ''', (bucket, bucketname))
        except sqlite3.IntegrityError:
            logger.warning(f"Generated bucketname collided (attempt {attempt}/{MAX_INSERT_ATTEMPTS})")
            continue
        return query_file(conn, bucket, bucketname)
    return None


def update_set_uploaded(conn: sqlite3.Connection, bucket: str, bucketname: str) -> Optional[Dict[str, Any]]:
    """Move an entry from `created` to `uploaded`; None when it was not `created`."""
    cursor = conn.execute('''
        UPDATE files
        SET status = 'uploaded'
        WHERE bucket = ? AND bucketname = ?
          AND status = 'created'
    ''', (bucket, bucketname))
    if cursor.rowcount == 1:
        return query_file(conn, bucket, bucketname)
    return None


def update_set_datetime(conn: sqlite3.Connection, bucket: str, bucketname: str, creation: datetime) -> int:
    cursor = conn.execute('''
        UPDATE files
        SET creation = ?
        WHERE bucket = ? AND bucketname = ?
    ''', (to_db_timestamp(creation), bucket, bucketname))
    return cursor.rowcount


def allowed_predecessors(status: str) -> List[str]:
    """Statuses an entry may be in for a write of `status` to apply.

    Terminal statuses never move and no write moves an entry backwards.
    """
    if status not in FILE_STATUSES:
        raise ValueError(f"Invalid file status: {status}")
    rank = {name: index for index, name in enumerate(FILE_STATUSES[:3])}
    target = rank.get(status, len(rank))
    return [name for name, index in rank.items() if index <= target]


def update_set_status(
    conn: sqlite3.Connection,
    bucket: str,
    bucketname: str,
    status: str,
    size: Optional[int] = None,
    hash: Optional[str] = None,
) -> int:
    predecessors = allowed_predecessors(status)
    placeholders = ", ".join("?" for _ in predecessors)
    cursor = conn.execute(f'''
        UPDATE files
        SET status = ?,
            size = COALESCE(?, size),
            hash = COALESCE(?, hash)
        WHERE bucket = ? AND bucketname = ?
          AND status IN ({placeholders})
    ''', (status, size, hash, bucket, bucketname, *predecessors))
    return cursor.rowcount


def update_set_done(conn: sqlite3.Connection, bucket: str, bucketname: str,
                    size: Optional[int] = None, hash: Optional[str] = None) -> int:
    return update_set_status(conn, bucket, bucketname, "ready", size, hash)


def update_set_rejected(conn: sqlite3.Connection, bucket: str, bucketname: str,
                        size: Optional[int] = None, hash: Optional[str] = None) -> int:
    return update_set_status(conn, bucket, bucketname, "rejected", size, hash)


def delete_by_bucketname(conn: sqlite3.Connection, bucket: str, bucketname: str) -> int:
    cursor = conn.execute('''
        DELETE FROM files
        WHERE bucket = ? AND bucketname = ?
    ''', (bucket, bucketname))
    return cursor.rowcount


def delete_by_bucketnames(conn: sqlite3.Connection, bucket: str, bucketnames: Iterable[str]) -> int:
    _load_keys(conn, bucketnames)
    cursor = conn.execute('''
        DELETE FROM files
        WHERE bucket = ?
          AND bucketname IN (SELECT bucketname FROM temp.file_keys)
    ''', (bucket,))
    return cursor.rowcount


def keep_by_bucketnames(conn: sqlite3.Connection, bucket: str, bucketnames: Iterable[str]) -> int:
    """Delete every entry of the bucket whose bucketname is not in the given set."""
    _load_keys(conn, bucketnames)
    cursor = conn.execute('''
        DELETE FROM files
        WHERE bucket = ?
          AND bucketname NOT IN (SELECT bucketname FROM temp.file_keys)
    ''', (bucket,))
    return cursor.rowcount


def delete_all_files(conn: sqlite3.Connection, bucket: str) -> int:
    cursor = conn.execute('''
        DELETE FROM files
        WHERE bucket = ?
    ''', (bucket,))
    return cursor.rowcount


def delete_old_files(conn: sqlite3.Connection, bucket: str, num_days: int) -> int:
    """Delete uploads abandoned before reaching `uploaded` for at least num_days."""
    cursor = conn.execute('''
        DELETE FROM files
        WHERE bucket = ?
          AND status IN ('created', 'uploading')
          AND julianday('now') - julianday(creation) >= ?
    ''', (bucket, num_days))
    return cursor.rowcount


def query_for_unprocessed(conn: sqlite3.Connection, bucket: str, num_days: int) -> List[Dict[str, Any]]:
    cursor = conn.execute('''
        SELECT * FROM files
        WHERE bucket = ?
          AND status IN ('created', 'uploading', 'uploaded')
          AND (
                julianday('now') - julianday(creation) >= ?
                OR creation IS NULL
              )
        ORDER BY id
    ''', (bucket, num_days))
    return [dict(row) for row in cursor.fetchall()]
