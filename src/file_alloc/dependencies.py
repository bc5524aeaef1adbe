"""Wiring of the file lifecycle objects from settings, and FastAPI dependencies."""

import logging
from typing import Optional

from fastapi import Request

from database.local import Database, init_db
from file_alloc.adapters.queue import BaseQueue, QueueFactory
from file_alloc.adapters.storage import BaseFileStore, create_file_store
from file_alloc.alloc_table import FileAllocTable
from file_alloc.manager import FileManager
from file_alloc.policies import DefaultFilePolicy, FilePolicy, MaxSizePolicy
from file_alloc.receiver import FileReceiver
from file_alloc.settings import Settings

logger = logging.getLogger(__name__)


def build_policy(settings: Settings) -> FilePolicy:
    if settings.max_file_size:
        return MaxSizePolicy(settings.max_file_size)
    return DefaultFilePolicy()


def build_file_manager(
    settings: Settings,
    database: Optional[Database] = None,
    file_store: Optional[BaseFileStore] = None,
) -> FileManager:
    """Manager of the deployment's logical bucket, creating the table if needed."""
    if database is None:
        init_db(settings.db_path)
        database = Database(settings.db_path)
    file_store = file_store or create_file_store(settings)
    alloc_table = FileAllocTable(database, settings.file_bucket)
    return FileManager(alloc_table, file_store, policy=build_policy(settings))


def build_receiver(
    settings: Settings,
    file_manager: FileManager,
    queue: Optional[BaseQueue] = None,
) -> FileReceiver:
    queue = queue or QueueFactory.get_queue_handler(settings)
    return FileReceiver(
        {file_manager.bucket: file_manager},
        queue,
        bucket_map={settings.s3_bucket_name: file_manager.bucket},
    )


def get_file_manager(request: Request) -> FileManager:
    return request.app.state.file_manager


def get_receiver(request: Request) -> FileReceiver:
    return request.app.state.receiver
