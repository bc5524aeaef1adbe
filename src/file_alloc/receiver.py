"""Bridge from upload-complete notifications to processing jobs."""

import logging
from typing import Any, Dict, Mapping, Optional
from urllib.parse import unquote_plus

from file_alloc.adapters.queue import BaseQueue
from file_alloc.errors import UnknownBucketError
from file_alloc.manager import FileManager

logger = logging.getLogger(__name__)

QUEUE_JOB_NAME = "PROCESS_FILE"


class FileReceiver:
    """Marks uploads as complete and enqueues one processing job per file.

    Args:
        file_managers: manager of each logical bucket, keyed by bucket
        queue: where `PROCESS_FILE` jobs are submitted
        bucket_map: physical S3 bucket -> logical bucket, used to read
            S3 event notifications
    """

    def __init__(
        self,
        file_managers: Mapping[str, FileManager],
        queue: BaseQueue,
        bucket_map: Optional[Mapping[str, str]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.file_managers = file_managers
        self.queue = queue
        self.bucket_map = dict(bucket_map or {})
        self.logger = logger or logging.getLogger(__name__)

    def get_manager(self, bucket: str) -> FileManager:
        try:
            return self.file_managers[bucket]
        except KeyError:
            raise UnknownBucketError(bucket) from None

    async def receive_file(self, info: Mapping[str, Any]) -> bool:
        """Handle `{"bucketname", "bucket"}`.

        Returns True when the entry moved to `uploaded` and the job was
        queued. A repeated notification finds the entry already moved and
        queues nothing.
        """
        bucketname = info["bucketname"]
        bucket = info["bucket"]

        entry = await self.get_manager(bucket).set_file_available(bucketname)
        if entry is None:
            self.logger.info(f"File {bucketname} was not waiting for upload, no job queued")
            return False

        queued = await self.queue.submit(
            QUEUE_JOB_NAME,
            {"bucketname": bucketname, "bucket": bucket},
            job_id=bucketname,
        )
        if not queued:
            self.logger.error(f"Unable to queue processing of file {bucketname}")
        return queued

    def from_s3_event(self, record: Mapping[str, Any]) -> Dict[str, str]:
        """Read `{"bucket", "bucketname"}` from an S3 ObjectCreated record."""
        s3 = record["s3"]
        physical_bucket = s3["bucket"]["name"]
        try:
            bucket = self.bucket_map[physical_bucket]
        except KeyError:
            raise UnknownBucketError(physical_bucket) from None
        # keys arrive URL-encoded in event notifications
        bucketname = unquote_plus(s3["object"]["key"])
        return {"bucket": bucket, "bucketname": bucketname}
