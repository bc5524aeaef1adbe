"""
Transactional access to the `files` alloc table.

`FileAllocTable` hands out `FileOperations` bundles bound either to one
SQLite transaction (`transact`) or to the ambient autocommit connection
(`open`). The bundle is scoped to the logical bucket of the table.
"""

import logging
import sqlite3
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar, Union

from database import files as db_files
from database.local import Database, from_db_timestamp
from file_alloc.errors import DuplicateEntryError
from file_alloc.schemas import FileEntry, FileStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


def to_entry(row: Optional[Dict[str, Any]]) -> Optional[FileEntry]:
    if row is None:
        return None
    row = dict(row)
    row["creation"] = from_db_timestamp(row.get("creation"))
    return FileEntry(**row)


class FileOperations:
    """Atomic operations on the entries of one bucket."""

    def __init__(self, conn: sqlite3.Connection, bucket: str):
        self.conn = conn
        self.bucket = bucket

    async def create_entry(self, bucketname: Optional[str] = None) -> FileEntry:
        """Insert an entry in `created` status.

        Raises:
            DuplicateEntryError: the explicit bucketname is taken, or no
                free generated name was found
        """
        row = db_files.create_file(self.conn, self.bucket, bucketname)
        if row is None:
            raise DuplicateEntryError(bucketname or "<generated>")
        return to_entry(row)

    async def set_available(self, bucketname: str) -> Optional[FileEntry]:
        """`created` -> `uploaded`; None when the entry was not `created`."""
        return to_entry(db_files.update_set_uploaded(self.conn, self.bucket, bucketname))

    async def set_status(self, bucketname: str, status: Union[FileStatus, str],
                         size: Optional[int] = None, hash: Optional[str] = None) -> bool:
        status = FileStatus(status)
        return db_files.update_set_status(self.conn, self.bucket, bucketname, status.value, size, hash) == 1

    async def set_ready(self, bucketname: str, size: Optional[int] = None, hash: Optional[str] = None) -> bool:
        return db_files.update_set_done(self.conn, self.bucket, bucketname, size, hash) == 1

    async def set_rejected(self, bucketname: str, size: Optional[int] = None, hash: Optional[str] = None) -> bool:
        return db_files.update_set_rejected(self.conn, self.bucket, bucketname, size, hash) == 1

    async def set_creation(self, bucketname: str, creation: datetime) -> bool:
        return db_files.update_set_datetime(self.conn, self.bucket, bucketname, creation) == 1

    async def get_entry(self, bucketname: str) -> Optional[FileEntry]:
        return to_entry(db_files.query_file(self.conn, self.bucket, bucketname))

    async def get_entries(self, bucketnames: Iterable[str]) -> List[FileEntry]:
        return [to_entry(row) for row in db_files.query_files(self.conn, self.bucket, bucketnames)]

    async def get_all_entries(self) -> List[FileEntry]:
        return [to_entry(row) for row in db_files.query_files_for_all(self.conn, self.bucket)]

    async def get_entries_by_hash(self, hash: str) -> List[FileEntry]:
        return [to_entry(row) for row in db_files.query_files_by_hash(self.conn, self.bucket, hash)]

    async def get_unprocessed_entries(self, num_days: int) -> List[FileEntry]:
        """Entries not yet `ready`/`rejected`, older than num_days or undated."""
        return [to_entry(row) for row in db_files.query_for_unprocessed(self.conn, self.bucket, num_days)]

    async def delete_entry(self, bucketname: str) -> bool:
        return db_files.delete_by_bucketname(self.conn, self.bucket, bucketname) == 1

    async def delete_entries(self, bucketnames: Iterable[str]) -> int:
        return db_files.delete_by_bucketnames(self.conn, self.bucket, bucketnames)

    remove_entries = delete_entries

    async def keep_entries(self, bucketnames: Iterable[str]) -> int:
        """Delete every entry whose bucketname is not in `bucketnames`."""
        return db_files.keep_by_bucketnames(self.conn, self.bucket, bucketnames)

    async def delete_all_entries(self) -> int:
        return db_files.delete_all_files(self.conn, self.bucket)

    async def delete_old_entries(self, num_days: int) -> int:
        """Delete `created`/`uploading` entries at least num_days old."""
        return db_files.delete_old_files(self.conn, self.bucket, num_days)


class FileAllocTable:
    """Alloc table of one logical bucket."""

    def __init__(self, database: Database, bucket: str):
        self.database = database
        self.bucket = bucket

    async def transact(self, unit_of_work: Callable[[FileOperations], Awaitable[T]]) -> T:
        """Run `unit_of_work` inside one transaction and return its result.

        Commits when it returns, rolls back and re-raises when it raises.
        """
        with self.database.transaction() as conn:
            return await unit_of_work(FileOperations(conn, self.bucket))

    async def open(self) -> FileOperations:
        return FileOperations(self.database.ambient, self.bucket)
