import asyncio
import hashlib
import boto3
from botocore.exceptions import BotoCoreError, ClientError
import logging
import time
import uuid
from pathlib import Path
from typing import Any, Dict, Optional
import json

from file_alloc.settings import get_settings
from file_alloc.utils.decorators import async_retry

logger = logging.getLogger(__name__)


class BaseQueue:
    """Base class for job queues (to be extended by specific implementations)

    A task is a dict ``{"job_name", "job_id", "payload"}``. Submitting twice
    with the same ``job_id`` enqueues at most one job.
    """
    async def submit(self, job_name: str, payload: Dict[str, Any], job_id: Optional[str] = None) -> bool:
        raise NotImplementedError

    async def get_task(self) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def is_ready(self) -> bool:
        """Whether the queue can currently accept tasks."""
        raise NotImplementedError


class LocalQueue(BaseQueue):
    """Handles local queue using file system for IPC

    Each pending task is one JSON file named ``<millis>_<digest>.json``,
    the digest being the SHA-256 of the job id; a job id with a pending
    file is not enqueued again.
    """
    def __init__(self, queue_dir: Optional[Path] = None):
        if queue_dir is None:
            queue_dir = Path(get_settings().storage_dir) / "queue_data"
        self.queue_dir = Path(queue_dir)
        self.queue_dir.mkdir(parents=True, exist_ok=True)
        logger.info("LocalQueue initialized at: %s", self.queue_dir)

    async def is_ready(self) -> bool:
        return self.queue_dir.is_dir()

    @staticmethod
    def _file_id(job_id: str) -> str:
        return hashlib.sha256(job_id.encode("utf-8")).hexdigest()

    def _pending_files(self, file_id: str):
        suffix = f"{file_id}.json"
        return [path for path in self.queue_dir.glob("*.json") if path.name.partition("_")[2] == suffix]

    async def submit(self, job_name: str, payload: Dict[str, Any], job_id: Optional[str] = None) -> bool:
        """Write the task file unless one is already pending for the job id."""
        job_id = job_id or uuid.uuid4().hex
        file_id = self._file_id(job_id)

        if self._pending_files(file_id):
            logger.info("Job %s already queued, skipping", job_id)
            return True

        task = {"job_name": job_name, "job_id": job_id, "payload": payload}
        filepath = self.queue_dir / f"{int(time.time() * 1000):013d}_{file_id}.json"
        try:
            # Write then rename so a reader never sees a partial file
            tmp_path = filepath.with_suffix(".tmp")
            with open(tmp_path, "w") as f:
                json.dump(task, f)
            tmp_path.rename(filepath)
        except OSError as e:
            logger.error("Error adding task to queue: %s", str(e))
            return False

        logger.info("Added task to queue: %s", task)
        return True

    async def get_task(self) -> Optional[Dict[str, Any]]:
        """Get next task from queue"""
        # Task files sort by their timestamp prefix
        files = sorted(self.queue_dir.glob("*.json"))

        if not files:
            await asyncio.sleep(0.1)  # Prevent busy waiting
            return None

        task_file = files[0]
        try:
            with open(task_file, "r") as f:
                task = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Error reading task file %s: %s", task_file, str(e))
            # Move problematic file to error directory
            error_dir = self.queue_dir / "errors"
            error_dir.mkdir(exist_ok=True)
            task_file.rename(error_dir / task_file.name)
            return None

        task_file.unlink()
        logger.info("Retrieved task from queue: %s", task)
        return task


class SQSQueue(BaseQueue):
    """Handles AWS SQS FIFO queue

    The job id becomes the ``MessageDeduplicationId`` so SQS drops repeated
    submissions inside its deduplication window.
    """
    def __init__(self, queue_url: str, sqs_client=None, message_group_id: str = "file-alloc",
                 wait_time_seconds: int = 5):
        self.sqs = sqs_client if sqs_client is not None else boto3.client("sqs")
        self.queue_url = queue_url
        self.message_group_id = message_group_id
        self.wait_time_seconds = wait_time_seconds
        logger.info(f"SQSQueue initialized")
        logger.info(f"  Queue URL: {self.queue_url}")

    async def is_ready(self) -> bool:
        try:
            self.sqs.get_queue_attributes(QueueUrl=self.queue_url, AttributeNames=["QueueArn"])
        except (ClientError, BotoCoreError) as e:
            logger.error(f"SQS queue {self.queue_url} is not reachable: {str(e)}")
            return False
        return True

    async def submit(self, job_name: str, payload: Dict[str, Any], job_id: Optional[str] = None) -> bool:
        """Add a task to the SQS queue."""
        job_id = job_id or uuid.uuid4().hex
        task = {"job_name": job_name, "job_id": job_id, "payload": payload}
        try:
            response = self.sqs.send_message(
                QueueUrl=self.queue_url,
                MessageBody=json.dumps(task),
                MessageGroupId=self.message_group_id,
                MessageDeduplicationId=job_id,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error adding task to SQS queue: {str(e)}")
            return False
        logger.info(f"Task added to SQS queue with ID: {response.get('MessageId')}")
        return True

    @async_retry(max_attempts=3, delay=1.0, exceptions=(ClientError, BotoCoreError))
    async def get_task(self) -> Optional[Dict[str, Any]]:
        messages = self.sqs.receive_message(
            QueueUrl=self.queue_url,
            MaxNumberOfMessages=1,
            WaitTimeSeconds=self.wait_time_seconds,
        )
        if "Messages" in messages:
            message = messages["Messages"][0]
            self.sqs.delete_message(
                QueueUrl=self.queue_url,
                ReceiptHandle=message["ReceiptHandle"],
            )
            task = json.loads(message["Body"])
            logger.info(f"Retrieved task from SQS queue: {task}")
            return task
        return None


class QueueFactory:
    """Factory to initialize the correct queue handler based on deployment mode"""

    @staticmethod
    def get_queue_handler(settings=None) -> BaseQueue:
        settings = settings or get_settings()

        deployment_mode = settings.deployment_mode
        logger.info(f"Creating queue handler for mode: {deployment_mode}")

        if deployment_mode == "local-dev":
            return LocalQueue(Path(settings.storage_dir) / "queue_data")

        if deployment_mode in ("aws-mock", "aws-prod"):
            client_kwargs = {"region_name": settings.aws_region}
            if settings.aws_access_key_id:
                client_kwargs["aws_access_key_id"] = settings.aws_access_key_id
            if settings.aws_secret_access_key:
                client_kwargs["aws_secret_access_key"] = settings.aws_secret_access_key
            if deployment_mode == "aws-mock" and settings.aws_endpoint_url:
                client_kwargs["endpoint_url"] = settings.aws_endpoint_url
            sqs = boto3.client("sqs", **client_kwargs)
            return SQSQueue(settings.sqs_queue_url, sqs_client=sqs)

        raise ValueError(
            f"Invalid deployment_mode: {deployment_mode}. "
            f"Choose from ['local-dev', 'aws-mock', 'aws-prod']"
        )
