"""
CLI commands for the file processing worker.

Kept apart from file_alloc/cli.py so the worker can be deployed on its own.
"""

import click
import asyncio
import logging

from file_alloc.adapters.queue import QueueFactory
from file_alloc.dependencies import build_file_manager
from file_alloc.settings import get_settings
from file_workers.worker import Worker

logger = logging.getLogger(__name__)


@click.group()
def cli():
    """CLI commands for the file processing worker"""
    logging.basicConfig(
        level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


@cli.command()
@click.option("--poll-interval", type=float, default=1.0, show_default=True,
              help="Seconds to wait when the queue is empty")
def worker(poll_interval):
    """Start the worker"""
    settings = get_settings()
    print(f"Starting worker in {settings.deployment_mode} mode...")
    print(f"Configuration loaded:")
    print(f"  S3 bucket: {settings.s3_bucket_name}")
    print(f"  SQS queue: {settings.sqs_queue_name}")
    print(f"  Database: {settings.db_path}")
    print(f"  File bucket: {settings.file_bucket}")

    queue = QueueFactory.get_queue_handler(settings)
    print(f"Queue handler initialized: {type(queue).__name__}")

    manager = build_file_manager(settings)
    worker_instance = Worker(queue, {manager.bucket: manager}, poll_interval=poll_interval)

    try:
        print("Worker ready to process tasks")
        asyncio.run(worker_instance.listen_for_tasks())
    except KeyboardInterrupt:
        print("Received shutdown signal...")
        worker_instance.stop()
    finally:
        manager.alloc_table.database.close()
        print("Worker shutdown complete")


if __name__ == "__main__":
    cli()
