"""
Lifecycle orchestrator for the files of one logical bucket.

`FileManager` ties the alloc table (metadata) to the object store (bytes):
it reserves entries and upload URLs, moves entries along
``created -> uploaded -> ready | rejected``, runs the validation and
processing hooks of a `FilePolicy`, and reconciles the two stores.

The two stores have no shared transaction. Consistency comes from the
guarded status updates being safe to retry, and from the reconciliation
passes that remove what one side holds and the other does not:

- `clean_file_store`: objects without an entry
- `clean_database`: entries without an object
- `clean_old_files`: entries whose upload never completed
- `process_missed_new_files`: uploads whose processing job was lost
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Union

from file_alloc.adapters.storage import BaseFileStore
from file_alloc.alloc_table import FileAllocTable, FileOperations
from file_alloc.errors import StoreDeleteError
from file_alloc.policies import DefaultFilePolicy, FilePolicy
from file_alloc.schemas import (
    NOT_FOUND_CODES,
    REJECTION_CODES,
    EntryCreated,
    FileEntry,
    FileStatus,
    ProcessResult,
    ReprocessReport,
    ResultCode,
    StoredObject,
)
from file_alloc.utils.decorators import async_log_execution_time

logger = logging.getLogger(__name__)

DEFAULT_NUM_DAYS = 3


class FileManager:
    def __init__(
        self,
        alloc_table: FileAllocTable,
        file_store: BaseFileStore,
        policy: Optional[FilePolicy] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.alloc_table = alloc_table
        self.file_store = file_store
        self.policy = policy or DefaultFilePolicy()
        self.logger = logger or logging.getLogger(__name__)

    @property
    def bucket(self) -> str:
        return self.alloc_table.bucket

    async def create_entry(self, bucketname: Optional[str] = None) -> EntryCreated:
        """Reserve an entry and return it with a pre-signed upload URL.

        Both happen in one transaction: when the store cannot issue the URL
        the insert is rolled back.
        """
        async def unit_of_work(ops: FileOperations) -> EntryCreated:
            entry = await ops.create_entry(bucketname)
            upload_url = await self.file_store.get_post_url(entry.bucketname)
            return EntryCreated(entry=entry, upload_url=upload_url)

        return await self.alloc_table.transact(unit_of_work)

    async def get_file_signed_url(self, bucketname: str) -> str:
        return await self.file_store.get_signed_url(bucketname)

    async def delete_files(self, *bucketnames: str) -> int:
        """Delete objects then entries, in one metadata transaction.

        Store objects go first: if the store refuses, StoreDeleteError rolls
        the transaction back and the entries are kept, so a later call can
        retry.
        """
        async def unit_of_work(ops: FileOperations) -> int:
            ok = await self.file_store.delete_objects(bucketnames)
            if not ok:
                raise StoreDeleteError(bucketnames)
            return await ops.delete_entries(bucketnames)

        return await self.alloc_table.transact(unit_of_work)

    async def remove_files(self, *bucketnames: str) -> int:
        """Delete entries only, for objects already gone from the store."""
        ops = await self.alloc_table.open()
        return await ops.remove_entries(bucketnames)

    async def set_file_available(self, bucketname: str) -> Optional[FileEntry]:
        """Mark an upload as complete; None when the entry was not `created`."""
        self.logger.debug(f"Setting file available {bucketname}")
        ops = await self.alloc_table.open()
        return await ops.set_available(bucketname)

    async def set_file_status(self, bucketname: str, status: Union[FileStatus, str],
                              size: Optional[int] = None, hash: Optional[str] = None) -> bool:
        ops = await self.alloc_table.open()
        return await ops.set_status(bucketname, status, size, hash)

    async def set_file_rejected(self, bucketname: str, size: Optional[int] = None,
                                hash: Optional[str] = None) -> bool:
        self.logger.debug(f"Setting file rejected {bucketname}")
        ops = await self.alloc_table.open()
        return await ops.set_rejected(bucketname, size, hash)

    async def get_entries(self, bucketnames: Optional[Iterable[str]] = None) -> List[FileEntry]:
        ops = await self.alloc_table.open()
        if bucketnames is None:
            return await ops.get_all_entries()
        return await ops.get_entries(bucketnames)

    async def get_entries_by_hash(self, hash: str) -> List[FileEntry]:
        ops = await self.alloc_table.open()
        return await ops.get_entries_by_hash(hash)

    async def read_file(self, bucketname: str) -> Optional[StoredObject]:
        return await self.file_store.get_object(bucketname)

    async def update_creation_time(self, bucketname: str, datetime: Optional[datetime] = None) -> bool:
        ops = await self.alloc_table.open()
        when = datetime if datetime is not None else _utcnow()
        return await ops.set_creation(bucketname, when)

    async def process_file(self, bucketname: str) -> ProcessResult:
        """Validate and process one uploaded file.

        Each step commits on its own, so a crash part way leaves the entry
        in a state the next call picks up from.
        """
        ops = await self.alloc_table.open()

        self.logger.debug(f"Processing file {bucketname}")
        entry = await ops.get_entry(bucketname)

        if entry is None:
            self.logger.debug(f"File {bucketname} not found in entries")
            return ProcessResult(status=ResultCode.ERROR_FILE_NOT_FOUND, bucketname=bucketname)

        if entry.status.is_terminal:
            self.logger.debug(f"File {bucketname} already processed")
            return ProcessResult(status=ResultCode.ERROR_FILE_ALREADY_PROCESSED, entry=entry, bucketname=bucketname)

        stored = await self.file_store.get_object(bucketname)

        if stored is None:
            self.logger.debug(f"File {bucketname} not found in file store, deleting entry")
            await ops.delete_entry(bucketname)
            return ProcessResult(status=ResultCode.ERROR_FILE_NOT_FOUND, entry=entry, bucketname=bucketname)

        status = await self.policy.validate(entry, stored)

        if status in REJECTION_CODES:
            self.logger.debug(f"File {bucketname} flagged as invalid, setting it as rejected")
            await ops.set_rejected(bucketname, stored.size, stored.hash)
            entry = await ops.get_entry(bucketname) or entry
            return ProcessResult(status=status, entry=entry, bucketname=bucketname)

        status = await self.policy.process(entry, stored)

        # processing may have rewritten the object
        info = await self.file_store.get_object_info(bucketname)

        if info is None:
            self.logger.debug(f"File {bucketname} vanished from file store during processing, deleting entry")
            await ops.delete_entry(bucketname)
            return ProcessResult(status=ResultCode.ERROR_FILE_NOT_FOUND, entry=entry, bucketname=bucketname)

        if status == ResultCode.SUCCESS_FILE_PROCESSED:
            self.logger.debug(f"File {bucketname} processed successfully")
            await ops.set_ready(bucketname, info.size, info.hash)
            entry = await ops.get_entry(bucketname) or entry
        else:
            self.logger.debug(f"File {bucketname} processed with errors")

        return ProcessResult(status=status, entry=entry, bucketname=bucketname)

    @async_log_execution_time
    async def process_missed_new_files(self, num_days: int = DEFAULT_NUM_DAYS) -> ReprocessReport:
        """Run `process_file` over entries that never reached a final status.

        No enclosing transaction: every file commits on its own and a
        failing file does not stop the batch.
        """
        self.logger.info(f"Processing files that were not processed for validation since {num_days} day(s)")

        ops = await self.alloc_table.open()
        entries = await ops.get_unprocessed_entries(num_days)

        if entries:
            self.logger.info(f"Starting process of {len(entries)} pending file(s)")
        else:
            self.logger.info("No file to process, all clean")

        report = ReprocessReport()
        for i, entry in enumerate(entries, start=1):
            bucketname = entry.bucketname
            try:
                result = await self.process_file(bucketname)
            except Exception:
                self.logger.exception(f"({i}/{len(entries)})\t\t{bucketname}\tfailed")
                report.failed.append(bucketname)
                continue

            if result.status == ResultCode.SUCCESS_FILE_PROCESSED:
                report.accepted.append(bucketname)
            elif result.status in NOT_FOUND_CODES:
                report.not_found.append(bucketname)
            elif result.status in REJECTION_CODES:
                report.rejected.append(bucketname)

            self.logger.info(f"({i}/{len(entries)})\t\t{bucketname}\t{result.status.value}")

        if entries:
            self.logger.info(
                f"Processed {len(entries)} file(s) with {len(report.accepted)} accepted file(s) "
                f"and {len(report.rejected)} rejected file(s)"
            )
        return report

    @async_log_execution_time
    async def clean_file_store(self) -> Optional[List[str]]:
        """Delete store objects that have no entry.

        Returns the keys removed, or None when the store could not be
        listed (nothing is deleted then) or reported a failed deletion.
        """
        self.logger.info("Removing files from file store not in database")

        async def unit_of_work(ops: FileOperations) -> Optional[List[str]]:
            self.logger.info("Getting all files from database")
            entries = await ops.get_all_entries()
            bucketnames = {entry.bucketname for entry in entries}

            if bucketnames:
                self.logger.info(f"{len(bucketnames)} file(s) in database")
            else:
                self.logger.info("No file in database, removing all files from file store")

            keys = await self.file_store.list_objects()
            if keys is None:
                self.logger.error("Unable to list files from file store")
                return None

            if keys:
                self.logger.info(f"{len(keys)} file(s) in file store")
            else:
                self.logger.info("No file in file store")

            to_remove = [key for key in keys if key not in bucketnames]
            if not to_remove:
                self.logger.info("No file to remove, all clean")
                return []

            self.logger.info(f"Removing {len(to_remove)} file(s) from file store")
            if not await self.file_store.delete_objects(to_remove):
                self.logger.error(f"Unable to remove {len(to_remove)} file(s) from file store")
                return None
            return to_remove

        return await self.alloc_table.transact(unit_of_work)

    @async_log_execution_time
    async def clean_database(self) -> Optional[int]:
        """Delete entries whose object is not in the store.

        An empty store removes every entry of the bucket. Returns the
        number of entries removed, or None when the store could not be
        listed (nothing is deleted then).
        """
        self.logger.info("Cleaning database for files not in file store")
        self.logger.info("Listing files from file store")

        keys = await self.file_store.list_objects()
        if keys is None:
            self.logger.error("Unable to list files from file store")
            return None

        async def unit_of_work(ops: FileOperations) -> int:
            if not keys:
                self.logger.info("No files in file store, purging all files from database")
                removed = await ops.delete_all_entries()
            else:
                removed = await ops.keep_entries(keys)

            if removed > 0:
                self.logger.info(f"Removed {removed} files from database")
            else:
                self.logger.info("No file to remove, all clean")
            return removed

        return await self.alloc_table.transact(unit_of_work)

    @async_log_execution_time
    async def clean_old_files(self, num_days: int = DEFAULT_NUM_DAYS) -> int:
        """Delete entries still `created`/`uploading` after num_days."""
        self.logger.info(f"Cleaning database from old files not uploaded since {num_days} day(s)")

        async def unit_of_work(ops: FileOperations) -> int:
            removed = await ops.delete_old_entries(num_days)
            if removed > 0:
                self.logger.info(
                    f"Deleted {removed} file(s) from database that were not uploaded "
                    f"more than {num_days} days ago"
                )
            else:
                self.logger.info("No file to remove, all clean")
            return removed

        return await self.alloc_table.transact(unit_of_work)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
