import asyncio
import logging
from typing import Any, Dict, Mapping, Optional

from file_alloc.adapters.queue import BaseQueue
from file_alloc.manager import FileManager
from file_alloc.receiver import QUEUE_JOB_NAME
from file_alloc.schemas import ProcessResult

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 30


class Worker:
    """Consumes `PROCESS_FILE` jobs and runs `FileManager.process_file`."""

    def __init__(self, queue: BaseQueue, managers: Mapping[str, FileManager], poll_interval: float = 1.0):
        self.queue = queue
        self.managers = managers
        self.poll_interval = poll_interval
        self.running = True
        logger.info(f"Worker initialized for bucket(s): {', '.join(managers)}")

    async def process_task(self, task: Dict[str, Any]) -> Optional[ProcessResult]:
        """Process one task; unknown jobs and buckets are logged and dropped."""
        job_name = task.get("job_name")
        if job_name != QUEUE_JOB_NAME:
            logger.warning(f"Ignoring task with unknown job name: {job_name}")
            return None

        payload = task.get("payload") or {}
        bucket = payload.get("bucket")
        bucketname = payload.get("bucketname")

        manager = self.managers.get(bucket)
        if manager is None:
            logger.error(f"No file manager for bucket '{bucket}', dropping task for {bucketname}")
            return None

        result = await manager.process_file(bucketname)
        logger.info(f"Processed {bucket}/{bucketname}: {result.status.value}")
        return result

    async def listen_for_tasks(self):
        """Poll the queue until stopped, backing off after errors."""
        logger.info("Worker started listening for tasks")
        consecutive_errors = 0

        while self.running:
            try:
                task = await self.queue.get_task()
                if task:
                    logger.info(f"Received task: {task}")
                    await self.process_task(task)
                    consecutive_errors = 0
                else:
                    await asyncio.sleep(self.poll_interval)
            except Exception as e:
                consecutive_errors += 1
                logger.error(f"Error in task processing loop: {str(e)}", exc_info=True)

                backoff_time = min(MAX_BACKOFF_SECONDS, 2 ** consecutive_errors)
                logger.warning(f"Backing off for {backoff_time} seconds after error...")
                await asyncio.sleep(backoff_time)

        logger.info("Worker stopped listening for tasks")

    def stop(self):
        """Stop the worker gracefully"""
        logger.info("Stopping worker...")
        self.running = False
