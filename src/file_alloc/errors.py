"""Exceptions raised by the file lifecycle layer, and their HTTP translation.

Expected outcomes (missing file, already processed, rejected) are reported
as `ResultCode` values and never raised. The exceptions below cover the
conditions a caller has to deal with.
"""

import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class FileAllocError(Exception):
    """Base class for file lifecycle errors."""


class StoreAccessError(FileAllocError):
    """The object store refused access to a key or to the bucket."""

    def __init__(self, key, message="access denied by object store"):
        super().__init__(f"{message}: {key}")
        self.key = key


class StoreDeleteError(FileAllocError):
    """The object store reported a failure while deleting objects."""

    def __init__(self, keys):
        super().__init__("unable to delete file from store")
        self.keys = list(keys)


class DuplicateEntryError(FileAllocError):
    """An entry with the same bucketname already exists."""

    def __init__(self, bucketname):
        super().__init__(f"bucketname already allocated: {bucketname}")
        self.bucketname = bucketname


class UnknownBucketError(FileAllocError):
    """No file manager is registered for a logical bucket."""

    def __init__(self, bucket):
        super().__init__(f"no file manager registered for bucket '{bucket}'")
        self.bucket = bucket


ERROR_STATUS_CODES = {
    DuplicateEntryError: status.HTTP_409_CONFLICT,
    UnknownBucketError: status.HTTP_404_NOT_FOUND,
    StoreAccessError: status.HTTP_502_BAD_GATEWAY,
    StoreDeleteError: status.HTTP_502_BAD_GATEWAY,
}


async def handle_file_alloc_errors(request: Request, exc: FileAllocError) -> JSONResponse:
    """Map lifecycle errors to HTTP status codes."""
    status_code = ERROR_STATUS_CODES.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    logger.warning(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


async def handle_broad_exceptions(request: Request, call_next):
    """Turn any unhandled exception into a 500 response."""
    try:
        return await call_next(request)
    except Exception:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )
