"""Validation and processing hooks run by `FileManager.process_file`.

A policy sees the entry and the object fetched from the store, and answers
with a `ResultCode`. Concrete file types subclass `FilePolicy`.
"""

import logging

from file_alloc.schemas import FileEntry, ResultCode, StoredObject

logger = logging.getLogger(__name__)


class FilePolicy:
    """Strategy interface for the two overridable pipeline steps."""

    async def validate(self, entry: FileEntry, stored: StoredObject) -> ResultCode:
        """Return SUCCESS_FILE_VALIDATED, or ERROR_FILE_INVALID / ERROR_FILE_INFECTED."""
        raise NotImplementedError

    async def process(self, entry: FileEntry, stored: StoredObject) -> ResultCode:
        """Return SUCCESS_FILE_PROCESSED, or any error code to leave the entry untouched."""
        raise NotImplementedError


class DefaultFilePolicy(FilePolicy):
    """Accepts every file as is."""

    async def validate(self, entry: FileEntry, stored: StoredObject) -> ResultCode:
        return ResultCode.SUCCESS_FILE_VALIDATED

    async def process(self, entry: FileEntry, stored: StoredObject) -> ResultCode:
        return ResultCode.SUCCESS_FILE_PROCESSED


class MaxSizePolicy(DefaultFilePolicy):
    """Rejects objects larger than `max_size` bytes."""

    def __init__(self, max_size: int):
        self.max_size = max_size

    async def validate(self, entry: FileEntry, stored: StoredObject) -> ResultCode:
        if stored.size is not None and stored.size > self.max_size:
            logger.info(f"File {entry.bucketname} is {stored.size} bytes, over the {self.max_size} limit")
            return ResultCode.ERROR_FILE_INVALID
        return ResultCode.SUCCESS_FILE_VALIDATED
