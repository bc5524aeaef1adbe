from unittest.mock import AsyncMock

import pytest

from file_alloc.adapters.queue import BaseQueue, LocalQueue
from file_alloc.errors import UnknownBucketError
from file_alloc.receiver import QUEUE_JOB_NAME, FileReceiver
from file_alloc.schemas import FileStatus
from tests.consts import TEST_BUCKET_NAME, TEST_FILE_BUCKET


def s3_record(key, bucket_name=TEST_BUCKET_NAME, event_name="ObjectCreated:Put"):
    return {
        "eventSource": "aws:s3",
        "eventName": event_name,
        "s3": {
            "bucket": {"name": bucket_name},
            "object": {"key": key, "size": 12},
        },
    }


@pytest.fixture
def queue():
    queue = AsyncMock(spec=BaseQueue)
    queue.submit.return_value = True
    return queue


@pytest.fixture
def receiver(file_manager, queue):
    return FileReceiver(
        {TEST_FILE_BUCKET: file_manager},
        queue,
        bucket_map={TEST_BUCKET_NAME: TEST_FILE_BUCKET},
    )


async def test_receive_file_marks_uploaded_and_queues(receiver, file_manager, queue):
    bucketname = (await file_manager.create_entry()).entry.bucketname

    ok = await receiver.receive_file({"bucketname": bucketname, "bucket": TEST_FILE_BUCKET})

    assert ok is True
    queue.submit.assert_awaited_once_with(
        QUEUE_JOB_NAME,
        {"bucketname": bucketname, "bucket": TEST_FILE_BUCKET},
        job_id=bucketname,
    )
    entries = await file_manager.get_entries([bucketname])
    assert entries[0].status == FileStatus.UPLOADED


async def test_repeated_notification_queues_once(receiver, file_manager, queue):
    bucketname = (await file_manager.create_entry()).entry.bucketname
    info = {"bucketname": bucketname, "bucket": TEST_FILE_BUCKET}

    assert await receiver.receive_file(info) is True
    assert await receiver.receive_file(info) is False

    assert queue.submit.await_count == 1


async def test_unknown_entry_is_not_queued(receiver, queue):
    assert await receiver.receive_file({"bucketname": "missing", "bucket": TEST_FILE_BUCKET}) is False
    queue.submit.assert_not_awaited()


async def test_unknown_bucket_raises(receiver):
    with pytest.raises(UnknownBucketError) as exc_info:
        await receiver.receive_file({"bucketname": "a", "bucket": "avatars"})
    assert exc_info.value.bucket == "avatars"


async def test_failed_submit_is_reported(receiver, file_manager, queue):
    queue.submit.return_value = False
    bucketname = (await file_manager.create_entry()).entry.bucketname

    assert await receiver.receive_file({"bucketname": bucketname, "bucket": TEST_FILE_BUCKET}) is False


async def test_local_queue_holds_one_job_per_file(file_manager, tmp_path):
    local_queue = LocalQueue(tmp_path / "queue_data")
    receiver = FileReceiver({TEST_FILE_BUCKET: file_manager}, local_queue)
    bucketname = (await file_manager.create_entry()).entry.bucketname

    # a duplicate delivery racing past the status guard still finds the pending job
    await local_queue.submit(QUEUE_JOB_NAME, {"bucketname": bucketname, "bucket": TEST_FILE_BUCKET}, job_id=bucketname)
    assert await receiver.receive_file({"bucketname": bucketname, "bucket": TEST_FILE_BUCKET}) is True

    assert len(list((tmp_path / "queue_data").glob("*.json"))) == 1
    task = await local_queue.get_task()
    assert task["job_id"] == bucketname
    assert task["payload"] == {"bucketname": bucketname, "bucket": TEST_FILE_BUCKET}


def test_from_s3_event(receiver):
    info = receiver.from_s3_event(s3_record("parts/benchy+v2%281%29.stl"))
    assert info == {"bucket": TEST_FILE_BUCKET, "bucketname": "parts/benchy v2(1).stl"}


def test_from_s3_event_unknown_bucket(receiver):
    with pytest.raises(UnknownBucketError):
        receiver.from_s3_event(s3_record("a", bucket_name="someone-elses-bucket"))


async def test_similar_bucketnames_are_queued_separately(file_manager, memory_store, tmp_path):
    local_queue = LocalQueue(tmp_path / "queue_data")
    receiver = FileReceiver({TEST_FILE_BUCKET: file_manager}, local_queue)
    for bucketname in ("scan_1", "scan-1"):
        await file_manager.create_entry(bucketname)
        await memory_store.create_object(bucketname, b"x")
        assert await receiver.receive_file({"bucketname": bucketname, "bucket": TEST_FILE_BUCKET}) is True

    queued = [(await local_queue.get_task())["job_id"] for _ in range(2)]

    assert sorted(queued) == ["scan-1", "scan_1"]
    assert await local_queue.get_task() is None
