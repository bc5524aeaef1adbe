from typing import Any, Dict, Optional

from fastapi import (
    APIRouter,
    Body,
    Depends,
    HTTPException,
    Path,
    Query,
    status
)

from file_alloc.dependencies import get_file_manager, get_receiver
from file_alloc.manager import FileManager
from file_alloc.receiver import FileReceiver
from file_alloc.schemas import (
    CreateEntryRequest,
    CreateEntryResponse,
    DeleteFilesResponse,
    FileEntry,
    GetEntriesResponse,
    S3EventResponse,
    SignedUrlResponse,
    UploadedResponse,
)

router = APIRouter()


async def _require_entry(manager: FileManager, bucketname: str) -> FileEntry:
    entries = await manager.get_entries([bucketname])
    if not entries:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"File '{bucketname}' not found"
        )
    return entries[0]


@router.post("/files", response_model=CreateEntryResponse, status_code=status.HTTP_201_CREATED)
async def create_entry(
    request_body: Optional[CreateEntryRequest] = Body(None),
    manager: FileManager = Depends(get_file_manager),
) -> CreateEntryResponse:
    """
    Reserve an entry and return a pre-signed URL to upload the file to.

    The URL expires quickly; once the upload is done, notify
    `POST /v1/files/{bucketname}/uploaded`.
    """
    bucketname = request_body.bucketname if request_body else None
    created = await manager.create_entry(bucketname)
    return CreateEntryResponse(entry=created.entry, upload_url=created.upload_url)


@router.get("/files", response_model=GetEntriesResponse)
async def get_entries(
    hash: Optional[str] = Query(None, description="Only return files with this content hash"),
    manager: FileManager = Depends(get_file_manager),
) -> GetEntriesResponse:
    """List the entries of the bucket, optionally filtered by content hash."""
    if hash:
        entries = await manager.get_entries_by_hash(hash)
    else:
        entries = await manager.get_entries()
    return GetEntriesResponse(entries=entries)


@router.post("/files/events", response_model=S3EventResponse)
async def receive_s3_events(
    event: Dict[str, Any] = Body(..., description="S3 event notification"),
    receiver: FileReceiver = Depends(get_receiver),
) -> S3EventResponse:
    """Handle an S3 event notification carrying `ObjectCreated` records."""
    queued, skipped = [], []
    for record in event.get("Records", []):
        if not record.get("eventName", "").startswith("ObjectCreated"):
            continue
        info = receiver.from_s3_event(record)
        if await receiver.receive_file(info):
            queued.append(info["bucketname"])
        else:
            skipped.append(info["bucketname"])
    return S3EventResponse(queued=queued, skipped=skipped)


@router.get("/files/{bucketname}", response_model=FileEntry)
async def get_entry(
    bucketname: str = Path(..., description="Object key of the file"),
    manager: FileManager = Depends(get_file_manager),
) -> FileEntry:
    """Return the entry of one file."""
    return await _require_entry(manager, bucketname)


@router.get("/files/{bucketname}/url", response_model=SignedUrlResponse)
async def get_file_url(
    bucketname: str = Path(..., description="Object key of the file"),
    manager: FileManager = Depends(get_file_manager),
) -> SignedUrlResponse:
    """Return a short-lived download URL for a file."""
    await _require_entry(manager, bucketname)
    url = await manager.get_file_signed_url(bucketname)
    return SignedUrlResponse(bucketname=bucketname, url=url)


@router.post("/files/{bucketname}/uploaded", response_model=UploadedResponse)
async def file_uploaded(
    bucketname: str = Path(..., description="Object key of the file"),
    manager: FileManager = Depends(get_file_manager),
    receiver: FileReceiver = Depends(get_receiver),
) -> UploadedResponse:
    """
    Notify that the upload of a file completed.

    The first notification queues the file for processing; repeated
    notifications are accepted and queue nothing.
    """
    await _require_entry(manager, bucketname)
    queued = await receiver.receive_file({"bucketname": bucketname, "bucket": manager.bucket})
    return UploadedResponse(bucketname=bucketname, queued=queued)


@router.delete("/files/{bucketname}", response_model=DeleteFilesResponse)
async def delete_file(
    bucketname: str = Path(..., description="Object key of the file"),
    manager: FileManager = Depends(get_file_manager),
) -> DeleteFilesResponse:
    """Delete a file from the store and its entry from the database."""
    await _require_entry(manager, bucketname)
    deleted = await manager.delete_files(bucketname)
    return DeleteFilesResponse(deleted=deleted)
