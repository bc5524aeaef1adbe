####################################
# --- Lifecycle types & schemas --- #
####################################

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class FileStatus(str, Enum):
    """Stored status of an entry in the alloc table."""
    CREATED = "created"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    READY = "ready"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (FileStatus.READY, FileStatus.REJECTED)


class ResultCode(str, Enum):
    """Outcome codes surfaced to callers of the processing pipeline."""
    SUCCESS_FILE_VALIDATED = "SUCCESS_FILE_VALIDATED"
    SUCCESS_FILE_PROCESSED = "SUCCESS_FILE_PROCESSED"
    ERROR_FILE_NOT_FOUND = "ERROR_FILE_NOT_FOUND"
    ERROR_FILE_INVALID = "ERROR_FILE_INVALID"
    ERROR_FILE_INFECTED = "ERROR_FILE_INFECTED"
    ERROR_FILE_ALREADY_PROCESSED = "ERROR_FILE_ALREADY_PROCESSED"
    ERROR_FILE_UPLOAD_FAILED = "ERROR_FILE_UPLOAD_FAILED"


REJECTION_CODES = (ResultCode.ERROR_FILE_INVALID, ResultCode.ERROR_FILE_INFECTED)
NOT_FOUND_CODES = (ResultCode.ERROR_FILE_NOT_FOUND, ResultCode.ERROR_FILE_UPLOAD_FAILED)


class FileEntry(BaseModel):
    """A row of the alloc table."""
    id: int
    bucket: str
    bucketname: str
    status: FileStatus = FileStatus.CREATED
    size: Optional[int] = None
    hash: Optional[str] = None
    creation: Optional[datetime] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": 1,
                "bucket": "parts",
                "bucketname": "6f1c2bd8a1f54a6c9e1f0d5c2e7b9a44",
                "status": "created",
                "size": None,
                "hash": None,
                "creation": "2024-01-01T00:00:00Z",
            }
        }
    )


@dataclass
class ObjectInfo:
    """Size, hash and last-modified time of a stored object."""
    size: Optional[int]
    hash: Optional[str]
    creation: Optional[datetime] = None


@dataclass
class StoredObject(ObjectInfo):
    """A stored object together with a readable stream of its bytes."""
    stream: Any = None


@dataclass
class EntryCreated:
    entry: FileEntry
    upload_url: str


@dataclass
class ProcessResult:
    status: ResultCode
    entry: Optional[FileEntry] = None
    bucketname: Optional[str] = None


@dataclass
class ReprocessReport:
    """Outcome of a missed-file re-processing pass, grouped by result."""
    accepted: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)
    not_found: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.accepted) + len(self.rejected) + len(self.not_found) + len(self.failed)


##############################
# --- HTTP request/reply --- #
##############################

class CreateEntryRequest(BaseModel):
    """Request model for `POST /v1/files`."""
    bucketname: Optional[str] = Field(
        None,
        description="Object key to reserve. A unique key is generated when omitted.",
    )


class CreateEntryResponse(BaseModel):
    """Response model for `POST /v1/files`."""
    entry: FileEntry
    upload_url: str


class SignedUrlResponse(BaseModel):
    """Response model for `GET /v1/files/{bucketname}/url`."""
    bucketname: str
    url: str


class UploadedResponse(BaseModel):
    """Response model for `POST /v1/files/{bucketname}/uploaded`."""
    bucketname: str
    queued: bool


class DeleteFilesResponse(BaseModel):
    """Response model for `DELETE /v1/files/{bucketname}`."""
    deleted: int


class GetEntriesResponse(BaseModel):
    """Response model for `GET /v1/files`."""
    entries: List[FileEntry]


class S3EventResponse(BaseModel):
    """Response model for `POST /v1/files/events`."""
    queued: List[str]
    skipped: List[str]
